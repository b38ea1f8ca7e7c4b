"""
安全模块：执行决策与调查阶段的只读白名单。

decide() 是纯函数：不抛异常、无副作用、无 I/O，任何输入组合都给出确定且可解释的结论。
调查阶段只允许只读 kubectl 动词，或带 --dry-run 的任意动词；白名单硬编码，不允许通过配置覆盖。
"""
from __future__ import annotations

import math
from typing import Iterable, Optional, Union

from .models import ExecutionDecision, ExecutionMode, FinalStatus, RiskLevel

DEFAULT_CONFIDENCE_THRESHOLD = 0.8
DEFAULT_MAX_RISK = RiskLevel.LOW

# === 只读白名单 ===
SAFE_OPERATIONS: tuple[str, ...] = (
    "get", "describe", "logs", "events", "top", "explain", "api-resources",
)


def has_dry_run_flag(args: Optional[Iterable[str]]) -> bool:
    if not args:
        return False
    return any(arg == "--dry-run" or arg.startswith("--dry-run=") for arg in args)


def check_read_only(args: list[str]) -> tuple[bool, str]:
    """检查 kubectl 参数向量是否只读。返回 (is_safe, reason)。"""
    if not args:
        return False, "Empty kubectl command"

    verb = args[0]
    if verb in SAFE_OPERATIONS:
        return True, "OK"
    if has_dry_run_flag(args):
        return True, "OK (dry-run)"
    return False, (
        f"Unsafe operation '{verb}' - only allowed: {', '.join(SAFE_OPERATIONS)} "
        "or any operation with --dry-run flag"
    )


# === 执行决策 ===

def _coerce_risk(value: Union[RiskLevel, str, None]) -> Optional[RiskLevel]:
    """未知风险等级返回 None，由调用方给出不执行的结论。"""
    if isinstance(value, RiskLevel):
        return value
    try:
        return RiskLevel(value)
    except (TypeError, ValueError):
        return None


def _as_number(value: object) -> float:
    """非数值按 NaN 处理，NaN 永远达不到阈值。"""
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _skip(reason: str, fallback_reason: str) -> ExecutionDecision:
    return ExecutionDecision(
        should_execute=False,
        reason=reason,
        final_status=FinalStatus.SUCCESS,
        fallback_reason=fallback_reason,
    )


def decide(
    mode: Union[ExecutionMode, str],
    confidence: float,
    risk: Union[RiskLevel, str],
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    max_risk: Union[RiskLevel, str] = DEFAULT_MAX_RISK,
) -> ExecutionDecision:
    """根据模式、置信度和风险决定是否自动执行修复。

    manual 模式一律等待人工批准；automatic 模式要求 confidence >= 阈值 且 risk <= max_risk。
    自动模式下因阈值跳过执行时 final_status 仍为 success（分析本身成功），
    由 fallback_reason 说明原因。未知风险等级、非数值或 NaN 置信度都得到不执行的结论。
    """
    if str(getattr(mode, "value", mode)) != ExecutionMode.AUTOMATIC.value:
        return ExecutionDecision(
            should_execute=False,
            reason="Manual mode selected - requiring user approval",
            final_status=FinalStatus.AWAITING_USER_APPROVAL,
        )

    risk_level = _coerce_risk(risk)
    max_level = _coerce_risk(max_risk)
    if risk_level is None or max_level is None:
        unknown = risk if risk_level is None else max_risk
        return _skip(
            f"Unknown risk level {unknown!r}",
            f"Remediation risk level ({unknown}) is not one of low, medium or high. "
            "Manual approval required.",
        )

    confidence = _as_number(confidence)
    confidence_threshold = _as_number(confidence_threshold)
    # NaN 与任何数比较都为 False，此处按未达到阈值处理
    if not confidence >= confidence_threshold:
        return _skip(
            f"Confidence {confidence:.2f} below threshold {confidence_threshold:.2f}",
            f"Analysis confidence ({confidence:.2f}) is below the required threshold "
            f"({confidence_threshold:.2f}). Manual review recommended.",
        )

    if risk_level > max_level:
        return _skip(
            f"Risk level {risk_level.value} exceeds maximum {max_level.value}",
            f"Remediation risk level ({risk_level.value}) exceeds the maximum allowed "
            f"level ({max_level.value}). Manual approval required.",
        )

    return ExecutionDecision(
        should_execute=True,
        reason=(
            f"Automatic execution approved - confidence {confidence:.2f} >= "
            f"{confidence_threshold:.2f}, risk {risk_level.value} <= {max_level.value}"
        ),
        final_status=FinalStatus.SUCCESS,
    )
