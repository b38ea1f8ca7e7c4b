"""
修复路由模块 (Remediation Router)

功能说明：对外暴露修复引擎入口与会话查询接口
核心职责：
  - 提交问题描述或继续已有会话（执行选项）
  - 查询会话记录、列出会话
  - 放弃等待决策的分析
API端点：POST /api/v1/remediate, GET /api/v1/remediations, GET /api/v1/remediations/{session_id},
         POST /api/v1/remediations/{session_id}/cancel
"""
import logging

from fastapi import APIRouter, Depends

from kuberemedy.core.deps import get_orchestrator
from kuberemedy.remediation.orchestrator import RemediationOrchestrator
from kuberemedy.schemas.remediation import RemediateRequest, SessionListResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/remediations", tags=["remediations"])


@router.get("", response_model=SessionListResponse)
async def list_remediations(
    orchestrator: RemediationOrchestrator = Depends(get_orchestrator),
):
    """列出全部会话 ID（按时间排序）。"""
    ids = orchestrator.list_sessions()
    return SessionListResponse(session_ids=ids, total=len(ids))


@router.get("/{session_id}")
async def get_remediation(
    session_id: str,
    orchestrator: RemediationOrchestrator = Depends(get_orchestrator),
):
    """获取会话记录。"""
    return orchestrator.get_session(session_id).to_json_dict()


@router.post("/{session_id}/cancel")
async def cancel_remediation(
    session_id: str,
    orchestrator: RemediationOrchestrator = Depends(get_orchestrator),
):
    """放弃一个等待决策的分析，会话进入 cancelled。"""
    return orchestrator.cancel(session_id).to_json_dict()


# 修复入口，挂在 /api/v1 下
trigger_router = APIRouter(prefix="/api/v1", tags=["remediations"])


@trigger_router.post("/remediate")
async def remediate(
    body: RemediateRequest,
    orchestrator: RemediationOrchestrator = Depends(get_orchestrator),
):
    """调查问题并给出修复方案；带 executeChoice + sessionId 时继续已有会话。"""
    logger.info("Remediate request: mode=%s, continue=%s", body.mode.value, body.session_id is not None)
    response = await orchestrator.remediate(body)
    return response.to_json_dict()
