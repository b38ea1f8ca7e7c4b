"""
RemediationOrchestrator：修复引擎的顶层状态机。

问题描述 → 新建会话 → 调查 → 解析分析 → 执行决策 → 执行修复 → 验证调查。

会话状态只能单向前进：
    investigating → analysis_complete | failed
    analysis_complete → executed_successfully | executed_with_errors | cancelled

执行成功且分析带有 validationIntent 时，以该文本作为新问题、在新会话中以 manual 模式
再跑一次调查。验证只有一层：深度由 MAX_VALIDATION_DEPTH 显式限制。
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from kuberemedy.core.config import Settings, settings as default_settings
from kuberemedy.core.exceptions import (
    AIServiceError,
    InvalidTransitionError,
    RemediationError,
    ValidationError,
)
from kuberemedy.schemas.remediation import (
    AnalysisSummary,
    InvestigationSummary,
    RemediateRequest,
    RemediateResponse,
    ValidationSummary,
)
from .ai_client import RemediationAIClient
from .command_executor import CommandExecutor, normalize_command
from .investigation import InvestigationDriver
from .kubectl_tools import KUBECTL_INVESTIGATION_TOOLS, KubectlToolExecutor
from .models import (
    Analysis,
    ExecutionChoice,
    ExecutionMode,
    ExecutionResult,
    FinalStatus,
    InvestigationResult,
    IssueStatus,
    RiskLevel,
    Session,
    SessionStatus,
)
from .response_parser import parse_analysis
from .safety import decide
from .session_store import FileSessionStore, SessionStore, generate_session_id

logger = logging.getLogger(__name__)

MAX_VALIDATION_DEPTH = 1

CHOICE_EXECUTE = 1
CHOICE_VIA_AGENT = 2
VALID_CHOICES = (CHOICE_EXECUTE, CHOICE_VIA_AGENT)

AGENT_EXECUTED_OUTPUT = "executed by calling agent"


def _choices(risk: RiskLevel) -> list[ExecutionChoice]:
    return [
        ExecutionChoice(
            id=CHOICE_EXECUTE,
            label="Execute automatically via MCP",
            description="Run the kubectl commands shown above automatically via MCP",
            risk=risk,
        ),
        ExecutionChoice(
            id=CHOICE_VIA_AGENT,
            label="Execute via agent",
            description=(
                "Execute the commands shown above using your command execution capabilities, "
                "then call the remediation tool again for validation"
            ),
            risk=risk,
        ),
    ]


def _analysis_summary(analysis: Analysis) -> AnalysisSummary:
    return AnalysisSummary(
        issue_status=analysis.issue_status,
        root_cause=analysis.root_cause,
        confidence=analysis.confidence,
        factors=list(analysis.factors),
    )


class RemediationOrchestrator:
    """修复入口。每次调用同一时间只做一件事（AI 调用、工具调用或 shell 命令）。"""

    def __init__(
        self,
        store: SessionStore,
        driver: InvestigationDriver,
        command_executor: CommandExecutor,
        confidence_threshold: Optional[float] = None,
        max_risk_level: Union[RiskLevel, str, None] = None,
    ) -> None:
        self.store = store
        self.driver = driver
        self.command_executor = command_executor
        self.confidence_threshold = (
            confidence_threshold
            if confidence_threshold is not None
            else default_settings.default_confidence_threshold
        )
        self.max_risk_level = RiskLevel(max_risk_level or default_settings.default_max_risk_level)

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    async def remediate(self, request: Union[RemediateRequest, dict[str, Any]]) -> RemediateResponse:
        return await self._run(self._coerce_request(request), depth=0)

    def get_session(self, session_id: str) -> Session:
        return self.store.read(session_id)

    def list_sessions(self) -> list[str]:
        return self.store.list_ids()

    def cancel(self, session_id: str) -> Session:
        """放弃一个等待决策的分析。"""
        current = self.store.read(session_id)
        if current.status.is_terminal:
            raise InvalidTransitionError(
                f"Session {session_id} is already {current.status.value} and cannot be cancelled"
            )
        session = self._transition(session_id, SessionStatus.CANCELLED)
        logger.info("Session cancelled: %s", session_id)
        return session

    @staticmethod
    def _coerce_request(request: Union[RemediateRequest, dict[str, Any]]) -> RemediateRequest:
        if isinstance(request, RemediateRequest):
            return request
        try:
            return RemediateRequest.model_validate(request)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(f"Invalid remediation request: {problems}") from e

    async def _run(self, request: RemediateRequest, depth: int) -> RemediateResponse:
        if request.execute_choice is not None or request.session_id is not None:
            if request.execute_choice is None or request.session_id is None:
                raise ValidationError(
                    "executeChoice and sessionId must be supplied together to continue a session"
                )
            if request.execute_choice not in VALID_CHOICES:
                raise ValidationError(
                    f"Invalid choice number: {request.execute_choice}",
                    detail=f"valid choices are {', '.join(str(c) for c in VALID_CHOICES)}",
                )
            return await self._continue(request, depth)

        if not request.issue or not request.issue.strip():
            raise ValidationError("issue is required unless executeChoice and sessionId are supplied")
        return await self._investigate_issue(request, depth)

    # ------------------------------------------------------------------
    # 新问题：调查 → 分析 → 决策
    # ------------------------------------------------------------------

    async def _investigate_issue(self, request: RemediateRequest, depth: int) -> RemediateResponse:
        session = self.store.create(Session(
            session_id=generate_session_id(),
            issue=request.issue.strip(),
            mode=request.mode,
        ))
        session_id = session.session_id
        logger.info("Remediation session created: %s", session.summary())

        investigation: Optional[InvestigationResult] = None
        try:
            investigation = await self.driver.run(session.issue)
            analysis = parse_analysis(investigation.final_message)
        except AIServiceError as e:
            self._mark_failed(session_id, investigation, e.message)
            e.session_id = session_id
            raise
        except Exception as e:
            # 调查中的意外错误同样终止会话，对外统一报告为 AI 服务错误
            self._mark_failed(session_id, investigation, repr(e))
            error = AIServiceError(
                f"Investigation failed unexpectedly: {type(e).__name__}", detail=str(e)
            )
            error.session_id = session_id
            raise error from e

        session = self._transition(
            session_id,
            SessionStatus.ANALYSIS_COMPLETE,
            final_analysis=analysis,
            **self._investigation_changes(investigation),
        )
        logger.info(
            "Analysis complete for %s: status=%s, confidence=%.2f, risk=%s",
            session_id,
            analysis.issue_status.value,
            analysis.confidence,
            analysis.remediation.risk.value,
        )

        if analysis.issue_status != IssueStatus.ACTIVE:
            return self._response(
                session,
                analysis,
                status=FinalStatus.SUCCESS.value,
                message=(
                    "The issue has already been resolved."
                    if analysis.issue_status == IssueStatus.RESOLVED
                    else "The reported issue does not exist in the cluster."
                ),
                guidance="No remediation is needed.",
            )

        threshold = (
            request.confidence_threshold
            if request.confidence_threshold is not None
            else self.confidence_threshold
        )
        max_risk = request.max_risk_level or self.max_risk_level
        decision = decide(
            session.mode, analysis.confidence, analysis.remediation.risk, threshold, max_risk
        )
        logger.info(
            "Execution decision for %s: execute=%s (%s)",
            session_id,
            decision.should_execute,
            decision.reason,
        )

        if decision.final_status == FinalStatus.AWAITING_USER_APPROVAL:
            return self._response(
                session,
                analysis,
                status=decision.final_status.value,
                execution_choices=_choices(analysis.remediation.risk),
                message="Analysis complete. The proposed remediation requires your approval.",
                guidance=(
                    "Review the root cause and the proposed actions, then call remediate again "
                    f"with sessionId '{session_id}' and executeChoice 1 (execute now) or "
                    "2 (execute via your own command execution)."
                ),
            )

        if not decision.should_execute:
            return self._response(
                session,
                analysis,
                status=decision.final_status.value,
                fallback_reason=decision.fallback_reason,
                message=f"Analysis complete. Automatic execution skipped: {decision.reason}.",
                guidance=(
                    f"{decision.fallback_reason} To proceed, call remediate again with sessionId "
                    f"'{session_id}' and executeChoice 1 or 2."
                ),
            )

        return await self._execute(session, analysis, depth)

    def _mark_failed(
        self, session_id: str, investigation: Optional[InvestigationResult], reason: str
    ) -> None:
        changes: dict[str, Any] = {}
        if investigation is not None:
            changes = self._investigation_changes(investigation)
        self._transition(session_id, SessionStatus.FAILED, **changes)
        logger.error("Investigation failed for %s: %s", session_id, reason)

    @staticmethod
    def _investigation_changes(investigation: InvestigationResult) -> dict[str, Any]:
        return {
            "investigation_iterations": investigation.iterations,
            "data_gathered": [call.describe() for call in investigation.tool_calls_executed],
        }

    # ------------------------------------------------------------------
    # 继续已有会话：用户选择
    # ------------------------------------------------------------------

    async def _continue(self, request: RemediateRequest, depth: int) -> RemediateResponse:
        session = self.store.read(request.session_id)
        if session.status != SessionStatus.ANALYSIS_COMPLETE or session.final_analysis is None:
            raise InvalidTransitionError(
                f"Session {session.session_id} is {session.status.value}; "
                "execution choices are only accepted after analysis is complete"
            )
        analysis = session.final_analysis
        if analysis.issue_status != IssueStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Session {session.session_id} has nothing to execute "
                f"(issue {analysis.issue_status.value})"
            )

        logger.info("Session %s continued with choice %d", session.session_id, request.execute_choice)
        if request.execute_choice == CHOICE_EXECUTE:
            return await self._execute(session, analysis, depth)
        return await self._record_agent_execution(session, analysis, request.executed_commands, depth)

    async def _record_agent_execution(
        self,
        session: Session,
        analysis: Analysis,
        executed_commands: Optional[list[str]],
        depth: int,
    ) -> RemediateResponse:
        commands = analysis.remediation.commands
        if executed_commands is None:
            return self._response(
                session,
                analysis,
                status=FinalStatus.AWAITING_USER_APPROVAL.value,
                commands=commands,
                message=f"Run the {len(commands)} remediation commands with your own command execution.",
                guidance=(
                    "Execute the commands in order, then call remediate again with sessionId "
                    f"'{session.session_id}', executeChoice 2 and executedCommands listing the "
                    "commands you ran, so the fix can be validated."
                ),
            )

        reported = [normalize_command(c) for c in executed_commands if c and c.strip()]
        if not reported:
            raise ValidationError("executedCommands must list at least one command")

        results = [
            ExecutionResult(action=command, success=True, output=AGENT_EXECUTED_OUTPUT)
            for command in reported
        ]
        session = self._transition(
            session.session_id, SessionStatus.EXECUTED_SUCCESSFULLY, execution_results=results
        )
        logger.info("Session %s: %d commands executed by calling agent", session.session_id, len(results))
        return await self._finish_execution(session, analysis, results, True, depth)

    # ------------------------------------------------------------------
    # 执行与验证
    # ------------------------------------------------------------------

    async def _execute(self, session: Session, analysis: Analysis, depth: int) -> RemediateResponse:
        report = await self.command_executor.execute_commands(
            analysis.remediation.commands, session_id=session.session_id
        )
        target = (
            SessionStatus.EXECUTED_SUCCESSFULLY
            if report.overall_success
            else SessionStatus.EXECUTED_WITH_ERRORS
        )
        session = self._transition(session.session_id, target, execution_results=report.results)
        return await self._finish_execution(
            session, analysis, report.results, report.overall_success, depth
        )

    async def _finish_execution(
        self,
        session: Session,
        analysis: Analysis,
        results: list[ExecutionResult],
        overall_success: bool,
        depth: int,
    ) -> RemediateResponse:
        validation: Optional[ValidationSummary] = None
        if overall_success and analysis.validation_intent:
            validation = await self._validate(session, analysis.validation_intent, depth)

        failed = sum(1 for r in results if not r.success)
        if overall_success:
            message = f"Executed {len(results)} remediation commands successfully."
            if validation is None:
                guidance = "Verify that the original symptom is gone."
            elif validation.error:
                guidance = f"Validation could not be completed ({validation.error}). Verify the fix manually."
            elif validation.issue_status == IssueStatus.ACTIVE:
                guidance = "Validation found the issue still active. Review the validation analysis."
            else:
                guidance = "Validation confirmed the issue is resolved."
        else:
            message = f"Executed {len(results)} remediation commands; {failed} failed."
            guidance = (
                "Review the failed commands in results. Commands are not retried; "
                "start a new remediation once the cause of the failure is addressed."
            )

        return self._response(
            session,
            analysis,
            status=(FinalStatus.SUCCESS if overall_success else FinalStatus.FAILED).value,
            executed=True,
            results=results,
            validation=validation,
            message=message,
            guidance=guidance,
        )

    async def _validate(self, session: Session, intent: str, depth: int) -> Optional[ValidationSummary]:
        if depth >= MAX_VALIDATION_DEPTH:
            logger.debug("Validation depth %d reached, skipping validation of %s", depth, session.session_id)
            return None

        logger.info("Validating remediation of %s: %s", session.session_id, intent)
        try:
            inner = await self._run(
                RemediateRequest(issue=intent, mode=ExecutionMode.MANUAL), depth=depth + 1
            )
        except RemediationError as e:
            logger.warning("Validation of %s failed: %s", session.session_id, e.message)
            if e.session_id:
                self.store.update(session.session_id, {"validation_session_id": e.session_id})
            return ValidationSummary(
                status=FinalStatus.FAILED.value,
                session_id=e.session_id,
                error=e.message,
            )

        self.store.update(session.session_id, {"validation_session_id": inner.session_id})
        return ValidationSummary(
            status=inner.status,
            session_id=inner.session_id,
            issue_status=inner.analysis.issue_status,
            analysis=inner.analysis,
            remediation=inner.remediation,
            message=inner.message,
        )

    # ------------------------------------------------------------------
    # 辅助
    # ------------------------------------------------------------------

    def _transition(self, session_id: str, target: SessionStatus, **changes: Any) -> Session:
        current = self.store.read(session_id)
        if not current.status.can_transition_to(target):
            raise InvalidTransitionError(
                f"Session {session_id} cannot move from {current.status.value} to {target.value}"
            )
        if "final_analysis" in changes and current.final_analysis is not None:
            raise InvalidTransitionError(f"Session {session_id} already has a final analysis")
        logger.debug("Session %s: %s -> %s", session_id, current.status.value, target.value)
        return self.store.update(session_id, {"status": target, **changes})

    @staticmethod
    def _response(session: Session, analysis: Analysis, **fields: Any) -> RemediateResponse:
        return RemediateResponse(
            session_id=session.session_id,
            investigation=InvestigationSummary(
                iterations=session.investigation_iterations,
                data_gathered=list(session.data_gathered),
            ),
            analysis=_analysis_summary(analysis),
            remediation=analysis.remediation,
            **fields,
        )


def build_orchestrator(
    config: Optional[Settings] = None,
    ai_client: Optional[RemediationAIClient] = None,
) -> RemediationOrchestrator:
    """按配置组装默认的文件存储、kubectl 工具和 shell 执行器。"""
    config = config or default_settings
    tool_executor = KubectlToolExecutor(
        kubectl_path=config.kubectl_path, timeout=config.kubectl_timeout_seconds
    )
    driver = InvestigationDriver(
        ai_client or RemediationAIClient(
            api_key=config.ai_api_key,
            api_base=config.ai_api_base,
            model=config.ai_model,
            max_tokens=config.ai_max_tokens,
            timeout=config.ai_timeout_seconds,
            max_retries=config.ai_max_retries,
        ),
        tool_executor.execute,
        KUBECTL_INVESTIGATION_TOOLS,
        max_iterations=config.investigation_max_iterations,
    )
    return RemediationOrchestrator(
        store=FileSessionStore(config.session_dir),
        driver=driver,
        command_executor=CommandExecutor(dry_run=config.executor_dry_run),
        confidence_threshold=config.default_confidence_threshold,
        max_risk_level=config.default_max_risk_level,
    )
