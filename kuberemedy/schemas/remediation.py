"""
修复入口的请求/响应模型，对外字段为 camelCase。
"""
from typing import Optional

from pydantic import Field

from kuberemedy.remediation.models import (
    CamelModel,
    ExecutionChoice,
    ExecutionMode,
    ExecutionResult,
    IssueStatus,
    RemediationPlan,
    RiskLevel,
)

MAX_ISSUE_LENGTH = 2000


class RemediateRequest(CamelModel):
    """修复请求体。issue 必填，除非同时给出 executeChoice 和 sessionId（继续已有会话）。"""
    issue: Optional[str] = Field(default=None, max_length=MAX_ISSUE_LENGTH)
    mode: ExecutionMode = ExecutionMode.MANUAL
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_risk_level: Optional[RiskLevel] = None
    execute_choice: Optional[int] = None
    session_id: Optional[str] = None
    executed_commands: Optional[list[str]] = None


class InvestigationSummary(CamelModel):
    iterations: int
    data_gathered: list[str] = Field(default_factory=list)


class AnalysisSummary(CamelModel):
    issue_status: IssueStatus
    root_cause: str
    confidence: float
    factors: list[str]


class ValidationSummary(CamelModel):
    """执行后验证调查的结果。error 非空表示验证本身失败，不影响外层会话。"""
    status: str
    session_id: Optional[str] = None
    issue_status: Optional[IssueStatus] = None
    analysis: Optional[AnalysisSummary] = None
    remediation: Optional[RemediationPlan] = None
    message: Optional[str] = None
    error: Optional[str] = None


class RemediateResponse(CamelModel):
    """修复响应体。"""
    status: str
    session_id: str
    investigation: InvestigationSummary
    analysis: AnalysisSummary
    remediation: RemediationPlan
    execution_choices: Optional[list[ExecutionChoice]] = None
    executed: bool = False
    commands: Optional[list[str]] = None
    results: Optional[list[ExecutionResult]] = None
    fallback_reason: Optional[str] = None
    validation: Optional[ValidationSummary] = None
    message: str
    guidance: str


class SessionListResponse(CamelModel):
    session_ids: list[str]
    total: int
