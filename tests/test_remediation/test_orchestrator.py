"""RemediationOrchestrator 集成测试：mock AI + mock 工具 + mock shell 下的完整流程。"""
from unittest.mock import AsyncMock, patch

import pytest

from kuberemedy.core.exceptions import (
    AIServiceError,
    AnalysisParseError,
    CommandFailedError,
    InvalidTransitionError,
    SessionNotFoundError,
    ValidationError,
)
from kuberemedy.remediation.models import ChatTurn, SessionStatus
from kuberemedy.remediation.orchestrator import AGENT_EXECUTED_OUTPUT
from kuberemedy.remediation.session_store import generate_session_id
from kuberemedy.schemas.remediation import RemediateRequest

from tests.helpers import final_turn, make_analysis, resolved_analysis, tool_turn

ISSUE = "pod api in namespace shop is CrashLooping"
FIX = "kubectl set resources deployment/api -n shop --limits=memory=256Mi"


def test_engine_package_documents_its_components():
    import kuberemedy.remediation as engine

    for component in ("RemediationOrchestrator", "InvestigationDriver", "SessionStore"):
        assert component in engine.__doc__


# ── 新问题 ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_manual_mode_awaits_approval(make_orchestrator, store, shell_runner):
    orch = make_orchestrator([
        tool_turn("kubectl_get", {"resource": "pods", "namespace": "shop"}),
        final_turn(make_analysis()),
    ])

    resp = await orch.remediate({"issue": ISSUE, "mode": "manual"})

    assert resp.status == "awaiting_user_approval"
    assert [c.id for c in resp.execution_choices] == [1, 2]
    assert resp.execution_choices[0].label == "Execute automatically via MCP"
    assert resp.execution_choices[1].label == "Execute via agent"
    assert resp.executed is False
    assert resp.investigation.iterations == 2
    assert resp.investigation.data_gathered == ["kubectl_get(resource=pods, namespace=shop)"]
    assert resp.analysis.confidence == 0.92
    assert resp.remediation.actions[0].command == FIX
    assert resp.session_id in resp.guidance
    shell_runner.assert_not_called()

    session = store.read(resp.session_id)
    assert session.status == SessionStatus.ANALYSIS_COMPLETE
    assert session.final_analysis.root_cause.startswith("Container exits")
    assert session.execution_results is None


@pytest.mark.asyncio
async def test_manual_is_the_default_mode(make_orchestrator):
    orch = make_orchestrator([final_turn(make_analysis())])
    resp = await orch.remediate(RemediateRequest(issue=ISSUE))
    assert resp.status == "awaiting_user_approval"


@pytest.mark.asyncio
async def test_automatic_executes_and_validates(make_orchestrator, store, shell_runner):
    orch = make_orchestrator([final_turn(make_analysis()), final_turn(resolved_analysis())])

    resp = await orch.remediate({"issue": ISSUE, "mode": "automatic"})

    assert resp.status == "success"
    assert resp.executed is True
    assert resp.execution_choices is None
    assert [r.action for r in resp.results] == [FIX]
    assert resp.results[0].success is True
    shell_runner.assert_awaited_once_with(FIX)

    assert resp.validation.status == "success"
    assert resp.validation.issue_status.value == "resolved"
    assert resp.validation.session_id != resp.session_id

    outer = store.read(resp.session_id)
    assert outer.status == SessionStatus.EXECUTED_SUCCESSFULLY
    assert outer.validation_session_id == resp.validation.session_id
    assert len(outer.execution_results) == 1
    inner = store.read(resp.validation.session_id)
    assert inner.mode.value == "manual"
    assert inner.issue == make_analysis()["validationIntent"]
    assert len(store.list_ids()) == 2


@pytest.mark.asyncio
async def test_automatic_low_confidence_skips(make_orchestrator, store, shell_runner):
    orch = make_orchestrator([final_turn(make_analysis(confidence=0.5))])

    resp = await orch.remediate({"issue": ISSUE, "mode": "automatic"})

    assert resp.status == "success"
    assert resp.executed is False
    assert "0.50" in resp.fallback_reason
    assert "0.80" in resp.fallback_reason
    assert resp.execution_choices is None
    shell_runner.assert_not_called()
    assert store.read(resp.session_id).status == SessionStatus.ANALYSIS_COMPLETE


@pytest.mark.asyncio
async def test_automatic_risk_exceeded_skips(make_orchestrator, shell_runner):
    analysis = make_analysis()
    analysis["remediation"]["risk"] = "medium"
    orch = make_orchestrator([final_turn(analysis)])

    resp = await orch.remediate({"issue": ISSUE, "mode": "automatic"})

    assert resp.executed is False
    assert "medium" in resp.fallback_reason
    shell_runner.assert_not_called()


@pytest.mark.asyncio
async def test_request_thresholds_override_defaults(make_orchestrator, shell_runner):
    analysis = make_analysis(confidence=0.5, validationIntent=None)
    analysis["remediation"]["risk"] = "medium"
    orch = make_orchestrator([final_turn(analysis)])

    resp = await orch.remediate({
        "issue": ISSUE, "mode": "automatic", "confidenceThreshold": 0.4, "maxRiskLevel": "medium",
    })

    assert resp.executed is True
    assert resp.validation is None
    shell_runner.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["manual", "automatic"])
async def test_resolved_issue_needs_nothing(make_orchestrator, store, shell_runner, mode):
    orch = make_orchestrator([final_turn(resolved_analysis())])

    resp = await orch.remediate({"issue": ISSUE, "mode": mode})

    assert resp.status == "success"
    assert resp.execution_choices is None
    assert resp.executed is False
    assert resp.fallback_reason is None
    assert "resolved" in resp.message
    shell_runner.assert_not_called()
    assert store.read(resp.session_id).status == SessionStatus.ANALYSIS_COMPLETE


@pytest.mark.asyncio
async def test_non_existent_issue(make_orchestrator):
    orch = make_orchestrator([final_turn(make_analysis(
        issueStatus="non_existent",
        remediation={"summary": "Nothing to fix", "actions": [], "risk": "low"},
    ))])
    resp = await orch.remediate({"issue": "pod ghost is failing"})
    assert resp.status == "success"
    assert "does not exist" in resp.message


@pytest.mark.asyncio
async def test_execution_with_errors(make_orchestrator, store, shell_runner):
    analysis = make_analysis()
    analysis["remediation"]["actions"].append({
        "description": "Restart the deployment",
        "command": "kubectl rollout restart deployment/api -n shop",
        "risk": "low",
        "rationale": "Pick up the new limits immediately",
    })
    shell_runner.side_effect = [CommandFailedError("Error from server (Forbidden)"), "restarted"]
    orch = make_orchestrator([final_turn(analysis)])

    resp = await orch.remediate({"issue": ISSUE, "mode": "automatic"})

    assert resp.status == "failed"
    assert resp.executed is True
    assert [r.success for r in resp.results] == [False, True]
    assert "Forbidden" in resp.results[0].error
    # 部分失败不做验证
    assert resp.validation is None
    assert store.read(resp.session_id).status == SessionStatus.EXECUTED_WITH_ERRORS


@pytest.mark.asyncio
async def test_parse_failure_marks_session_failed(make_orchestrator, store):
    orch = make_orchestrator([
        tool_turn("kubectl_get", {"resource": "pods"}),
        ChatTurn(content="I think the pod is broken but I am not sure."),
    ])

    with pytest.raises(AnalysisParseError) as exc_info:
        await orch.remediate({"issue": ISSUE})

    session_id = exc_info.value.session_id
    session = store.read(session_id)
    assert session.status == SessionStatus.FAILED
    assert session.final_analysis is None
    assert session.investigation_iterations == 2
    assert session.data_gathered == ["kubectl_get(resource=pods)"]


@pytest.mark.asyncio
async def test_ai_unreachable_marks_session_failed(make_orchestrator, store):
    orch = make_orchestrator([])

    with pytest.raises(AIServiceError, match="exhausted") as exc_info:
        await orch.remediate({"issue": ISSUE})

    assert store.read(exc_info.value.session_id).status == SessionStatus.FAILED


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    RuntimeError("socket closed"),
    AttributeError("'str' object has no attribute 'get'"),
])
async def test_unexpected_investigation_error_marks_session_failed(make_orchestrator, store, error):
    orch = make_orchestrator([])
    orch.driver.ai_client.chat = AsyncMock(side_effect=error)

    with pytest.raises(AIServiceError, match="Investigation failed unexpectedly") as exc_info:
        await orch.remediate({"issue": ISSUE})

    assert exc_info.value.__cause__ is error
    assert str(error) in exc_info.value.detail
    session = store.read(exc_info.value.session_id)
    assert session.status == SessionStatus.FAILED
    assert session.final_analysis is None


@pytest.mark.asyncio
async def test_cancel_refuses_finished_session(make_orchestrator):
    orch = make_orchestrator([final_turn(make_analysis(validationIntent=None))])
    first = await orch.remediate({"issue": ISSUE})
    await orch.remediate({"executeChoice": 1, "sessionId": first.session_id})

    with pytest.raises(InvalidTransitionError, match="already executed_successfully"):
        orch.cancel(first.session_id)


# ── 输入校验 ────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("request_data", [
    {},
    {"issue": "   "},
    {"executeChoice": 1},
    {"sessionId": "rem_20260101T000000000000_0123456789abcdef"},
    {"executeChoice": 3, "sessionId": "rem_20260101T000000000000_0123456789abcdef"},
    {"issue": ISSUE, "mode": "sometimes"},
    {"issue": ISSUE, "confidenceThreshold": 1.5},
    {"issue": "x" * 2001},
])
async def test_invalid_requests_rejected_without_session(make_orchestrator, store, request_data):
    orch = make_orchestrator([final_turn(make_analysis())])
    with pytest.raises(ValidationError):
        await orch.remediate(request_data)
    assert store.list_ids() == []


@pytest.mark.asyncio
async def test_malformed_session_reference(make_orchestrator):
    orch = make_orchestrator([])
    with pytest.raises(ValidationError, match="Malformed session reference"):
        await orch.remediate({"executeChoice": 1, "sessionId": "../../etc/passwd"})


@pytest.mark.asyncio
async def test_unknown_session(make_orchestrator):
    orch = make_orchestrator([])
    with pytest.raises(SessionNotFoundError):
        await orch.remediate({"executeChoice": 1, "sessionId": generate_session_id()})


# ── 继续已有会话 ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_choice_1_executes_pending_analysis(make_orchestrator, store, shell_runner):
    orch = make_orchestrator([final_turn(make_analysis()), final_turn(resolved_analysis())])
    first = await orch.remediate({"issue": ISSUE})

    resp = await orch.remediate({"executeChoice": 1, "sessionId": first.session_id})

    assert resp.session_id == first.session_id
    assert resp.status == "success"
    assert resp.executed is True
    assert resp.investigation.iterations == 1
    shell_runner.assert_awaited_once_with(FIX)
    assert resp.validation.issue_status.value == "resolved"
    assert store.read(first.session_id).status == SessionStatus.EXECUTED_SUCCESSFULLY


@pytest.mark.asyncio
async def test_choice_1_after_automatic_skip(make_orchestrator, shell_runner):
    orch = make_orchestrator([final_turn(make_analysis(confidence=0.5, validationIntent=None))])
    first = await orch.remediate({"issue": ISSUE, "mode": "automatic"})

    resp = await orch.remediate({"executeChoice": 1, "sessionId": first.session_id})

    assert resp.executed is True
    shell_runner.assert_awaited_once()


@pytest.mark.asyncio
async def test_choice_2_without_commands_returns_instructions(make_orchestrator, store, shell_runner):
    orch = make_orchestrator([final_turn(make_analysis())])
    first = await orch.remediate({"issue": ISSUE})

    resp = await orch.remediate({"executeChoice": 2, "sessionId": first.session_id})

    assert resp.status == "awaiting_user_approval"
    assert resp.commands == [FIX]
    assert resp.executed is False
    assert "executedCommands" in resp.guidance
    shell_runner.assert_not_called()
    assert store.read(first.session_id).status == SessionStatus.ANALYSIS_COMPLETE


@pytest.mark.asyncio
async def test_choice_2_with_commands_records_and_validates(make_orchestrator, store, shell_runner):
    orch = make_orchestrator([final_turn(make_analysis()), final_turn(resolved_analysis())])
    first = await orch.remediate({"issue": ISSUE})

    resp = await orch.remediate({
        "executeChoice": 2, "sessionId": first.session_id, "executedCommands": [FIX],
    })

    assert resp.status == "success"
    assert resp.executed is True
    assert resp.results[0].action == FIX
    assert resp.results[0].output == AGENT_EXECUTED_OUTPUT
    assert resp.validation.status == "success"
    shell_runner.assert_not_called()
    assert store.read(first.session_id).status == SessionStatus.EXECUTED_SUCCESSFULLY


@pytest.mark.asyncio
async def test_choice_2_with_empty_commands_rejected(make_orchestrator, store):
    orch = make_orchestrator([final_turn(make_analysis())])
    first = await orch.remediate({"issue": ISSUE})

    with pytest.raises(ValidationError):
        await orch.remediate({"executeChoice": 2, "sessionId": first.session_id, "executedCommands": []})
    assert store.read(first.session_id).status == SessionStatus.ANALYSIS_COMPLETE


@pytest.mark.asyncio
async def test_choice_on_executed_session_rejected(make_orchestrator, shell_runner):
    orch = make_orchestrator([final_turn(make_analysis(validationIntent=None))])
    first = await orch.remediate({"issue": ISSUE})
    await orch.remediate({"executeChoice": 1, "sessionId": first.session_id})

    with pytest.raises(InvalidTransitionError):
        await orch.remediate({"executeChoice": 1, "sessionId": first.session_id})
    assert shell_runner.await_count == 1


@pytest.mark.asyncio
async def test_choice_on_resolved_session_rejected(make_orchestrator):
    orch = make_orchestrator([final_turn(resolved_analysis())])
    first = await orch.remediate({"issue": ISSUE})
    with pytest.raises(InvalidTransitionError):
        await orch.remediate({"executeChoice": 1, "sessionId": first.session_id})


@pytest.mark.asyncio
async def test_cancel_pending_analysis(make_orchestrator, store):
    orch = make_orchestrator([final_turn(make_analysis())])
    first = await orch.remediate({"issue": ISSUE})

    cancelled = orch.cancel(first.session_id)

    assert cancelled.status == SessionStatus.CANCELLED
    with pytest.raises(InvalidTransitionError) as exc_info:
        orch.cancel(first.session_id)
    assert "already cancelled" in str(exc_info.value)
    with pytest.raises(InvalidTransitionError):
        await orch.remediate({"executeChoice": 1, "sessionId": first.session_id})


# ── 验证调查 ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_validation_is_single_level(make_orchestrator, store, shell_runner):
    orch = make_orchestrator([final_turn(make_analysis())])

    resp = await orch._run(RemediateRequest(issue=ISSUE, mode="automatic"), depth=1)

    assert resp.executed is True
    assert resp.validation is None
    assert store.list_ids() == [resp.session_id]


@pytest.mark.asyncio
async def test_validation_still_active_is_reported(make_orchestrator, store):
    orch = make_orchestrator([final_turn(make_analysis()), final_turn(make_analysis())])

    resp = await orch.remediate({"issue": ISSUE, "mode": "automatic"})

    # 验证调查为 manual 模式：只给出选项，不会再执行
    assert resp.validation.status == "awaiting_user_approval"
    assert resp.validation.issue_status.value == "active"
    assert "still active" in resp.guidance
    assert store.read(resp.validation.session_id).status == SessionStatus.ANALYSIS_COMPLETE
    assert len(store.list_ids()) == 2


@pytest.mark.asyncio
async def test_validation_failure_does_not_fail_outer(make_orchestrator, store):
    orch = make_orchestrator([final_turn(make_analysis()), ChatTurn(content="no json here")])

    resp = await orch.remediate({"issue": ISSUE, "mode": "automatic"})

    assert resp.status == "success"
    assert resp.validation.status == "failed"
    assert resp.validation.error
    assert store.read(resp.session_id).status == SessionStatus.EXECUTED_SUCCESSFULLY
    assert store.read(resp.validation.session_id).status == SessionStatus.FAILED


# ── 状态单调 ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_status_never_returns_to_investigating(make_orchestrator, store):
    orch = make_orchestrator([final_turn(make_analysis()), final_turn(resolved_analysis())])
    statuses: dict[str, list[SessionStatus]] = {}
    real_replace = store._replace

    def record(session):
        statuses.setdefault(session.session_id, []).append(session.status)
        real_replace(session)

    with patch.object(store, "_replace", side_effect=record):
        first = await orch.remediate({"issue": ISSUE})
        await orch.remediate({"executeChoice": 1, "sessionId": first.session_id})

    assert statuses[first.session_id] == [
        SessionStatus.ANALYSIS_COMPLETE,
        SessionStatus.EXECUTED_SUCCESSFULLY,
        SessionStatus.EXECUTED_SUCCESSFULLY,  # validationSessionId 写入
    ]
    for sequence in statuses.values():
        assert SessionStatus.INVESTIGATING not in sequence
