"""
修复引擎的 Pydantic 数据模型。

用于模块内部数据传递与会话持久化。对外（会话文件、接口文档）统一使用 camelCase 字段名，
Python 内部使用 snake_case。Analysis 一经 ResponseParser 接受即不可变。
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UTC = timezone.utc


class CamelModel(BaseModel):
    """snake_case 属性 + camelCase 序列化。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _require_text(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("must be a non-empty string")
    return value


NonBlankStr = Annotated[str, AfterValidator(_require_text)]


# === 枚举 ===

class RiskLevel(str, enum.Enum):
    """三级风险，全序 low < medium < high。"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def ordinal(self) -> int:
        return _RISK_ORDER[self]

    # str mixin 会按字母序比较，这里改为按风险序
    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.ordinal < other.ordinal

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.ordinal <= other.ordinal

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.ordinal > other.ordinal

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.ordinal >= other.ordinal


_RISK_ORDER = {RiskLevel.LOW: 1, RiskLevel.MEDIUM: 2, RiskLevel.HIGH: 3}


class IssueStatus(str, enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    NON_EXISTENT = "non_existent"


class ExecutionMode(str, enum.Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class SessionStatus(str, enum.Enum):
    """会话状态。只能单向前进，离开 investigating 后不会再回到该状态。"""
    INVESTIGATING = "investigating"
    ANALYSIS_COMPLETE = "analysis_complete"
    FAILED = "failed"
    EXECUTED_SUCCESSFULLY = "executed_successfully"
    EXECUTED_WITH_ERRORS = "executed_with_errors"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: SessionStatus) -> bool:
        return target in _ALLOWED_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.INVESTIGATING: frozenset(
        {SessionStatus.ANALYSIS_COMPLETE, SessionStatus.FAILED}
    ),
    SessionStatus.ANALYSIS_COMPLETE: frozenset({
        SessionStatus.EXECUTED_SUCCESSFULLY,
        SessionStatus.EXECUTED_WITH_ERRORS,
        SessionStatus.CANCELLED,
    }),
    SessionStatus.FAILED: frozenset(),
    SessionStatus.EXECUTED_SUCCESSFULLY: frozenset(),
    SessionStatus.EXECUTED_WITH_ERRORS: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}


class FinalStatus(str, enum.Enum):
    """对调用方可见的结果状态。"""
    SUCCESS = "success"
    FAILED = "failed"
    AWAITING_USER_APPROVAL = "awaiting_user_approval"


# === 分析结果（ResponseParser 产出，不可变） ===

class RemediationAction(CamelModel):
    """一条修复动作。command 可选：有些动作只是人工建议。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    description: NonBlankStr
    command: Optional[str] = None
    risk: RiskLevel
    rationale: NonBlankStr


class RemediationPlan(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    summary: NonBlankStr
    actions: list[RemediationAction]
    risk: RiskLevel

    @property
    def commands(self) -> list[str]:
        return [a.command for a in self.actions if a.command and a.command.strip()]


class Analysis(CamelModel):
    """AI 诊断结果。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    issue_status: IssueStatus
    root_cause: NonBlankStr
    confidence: float = Field(ge=0.0, le=1.0, strict=True)
    factors: list[str] = Field(min_length=1)
    remediation: RemediationPlan
    validation_intent: Optional[str] = None

    @field_validator("validation_intent")
    @classmethod
    def _blank_intent_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


# === 执行 ===

class ExecutionResult(CamelModel):
    """单条修复命令的执行结果。"""
    action: str
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class ExecutionReport(CamelModel):
    results: list[ExecutionResult] = Field(default_factory=list)
    overall_success: bool = True


class ExecutionChoice(CamelModel):
    """需要人工批准时提供给调用方的选项，不持久化。"""
    id: int
    label: str
    description: str
    risk: Optional[RiskLevel] = None


class ExecutionDecision(CamelModel):
    should_execute: bool
    reason: str
    final_status: FinalStatus
    fallback_reason: Optional[str] = None


# === 调查 ===

class ToolCallRecord(CamelModel):
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)

    def describe(self) -> str:
        if not self.args:
            return f"{self.tool}()"
        rendered = ", ".join(f"{k}={v}" for k, v in self.args.items())
        return f"{self.tool}({rendered})"


class InvestigationResult(CamelModel):
    final_message: str
    iterations: int
    tool_calls_executed: list[ToolCallRecord] = Field(default_factory=list)


class ToolCall(BaseModel):
    """AI 请求的一次工具调用。arguments 为模型给出的原始 JSON 字符串。"""
    id: str
    name: str
    arguments: str = "{}"


class ChatTurn(BaseModel):
    """AI 的一轮回复：要么请求工具调用，要么给出最终消息。"""
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return not self.tool_calls


# === 会话 ===

class Session(CamelModel):
    """一次修复尝试的持久化状态。"""
    session_id: str
    issue: str
    mode: ExecutionMode
    status: SessionStatus = SessionStatus.INVESTIGATING
    final_analysis: Optional[Analysis] = None
    execution_results: Optional[list[ExecutionResult]] = None
    investigation_iterations: int = 0
    data_gathered: list[str] = Field(default_factory=list)
    validation_session_id: Optional[str] = None
    created: datetime = Field(default_factory=_utcnow)
    updated: datetime = Field(default_factory=_utcnow)

    def summary(self) -> str:
        return f"[{self.status.value}] {self.session_id} ({self.mode.value}): {self.issue[:80]}"
