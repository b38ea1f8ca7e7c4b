"""
解析 AI 最终输出为 Analysis。

AI 的回复常在 JSON 前后夹带说明文字，有时还包在 markdown 代码块里。这里从第一个 `{`
开始扫描，跟踪是否处于字符串字面量中（处理反斜杠转义）以及花括号深度，深度回到 0 的位置
即 JSON 对象结束。字符串内的花括号不计入深度，JSON 之后的任何文字都被忽略。

任何失败（找不到匹配的花括号、JSON 语法错误、字段校验失败）都抛出一个 AnalysisParseError，
不存在部分接受。
"""
from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from kuberemedy.core.exceptions import AnalysisParseError
from .models import Analysis

logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> str:
    """返回 text 中第一个完整 JSON 对象的原文。"""
    if not text:
        raise AnalysisParseError("No JSON object found in AI response: response is empty")

    start = text.find("{")
    if start == -1:
        raise AnalysisParseError("No JSON object found in AI response")

    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        ch = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:pos + 1]

    raise AnalysisParseError(
        "Unbalanced braces in AI response: JSON object starting at "
        f"offset {start} is never closed"
    )


def _format_validation_error(exc: PydanticValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "<root>"
        problems.append(f"{loc}: {err['msg']}")
    return "; ".join(problems)


def validate_analysis(data: Any) -> Analysis:
    if not isinstance(data, dict):
        raise AnalysisParseError(
            f"Invalid analysis structure: expected a JSON object, got {type(data).__name__}"
        )
    try:
        return Analysis.model_validate(data)
    except PydanticValidationError as e:
        raise AnalysisParseError(
            f"Invalid analysis structure: {_format_validation_error(e)}",
            detail=json.dumps(data)[:2000],
        ) from e


def parse_analysis(text: str) -> Analysis:
    """提取并校验 AI 的最终分析。"""
    raw = extract_json_object(text)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise AnalysisParseError(
            f"AI response contains malformed JSON: {e.msg} (line {e.lineno}, column {e.colno})",
            detail=raw[:2000],
        ) from e

    analysis = validate_analysis(data)
    logger.debug(
        "Parsed analysis: status=%s, confidence=%.2f, actions=%d, risk=%s",
        analysis.issue_status.value,
        analysis.confidence,
        len(analysis.remediation.actions),
        analysis.remediation.risk.value,
    )
    return analysis
