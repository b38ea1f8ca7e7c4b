"""
kube-remedy 测试基础配置

提供内存会话存储、mock 工具执行器与 shell、引擎工厂、FastAPI AsyncClient 等通用 fixture。
所有测试都不依赖真实集群或 AI 服务。
"""
import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock

# 必须在导入 kuberemedy 之前设置环境变量
os.environ["AI_API_KEY"] = "test-key"
os.environ["EXECUTOR_DRY_RUN"] = "false"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from kuberemedy.remediation.ai_client import RemediationAIClient
from kuberemedy.remediation.command_executor import CommandExecutor
from kuberemedy.remediation.investigation import InvestigationDriver
from kuberemedy.remediation.kubectl_tools import KUBECTL_INVESTIGATION_TOOLS
from kuberemedy.remediation.models import ChatTurn
from kuberemedy.remediation.orchestrator import RemediationOrchestrator
from kuberemedy.remediation.session_store import InMemorySessionStore


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def tool_executor() -> AsyncMock:
    return AsyncMock(return_value={"success": True, "data": "NAME  READY  STATUS\napi-1  0/1  CrashLoopBackOff"})


@pytest.fixture
def shell_runner() -> AsyncMock:
    return AsyncMock(return_value="deployment.apps/api resource requirements updated")


@pytest.fixture
def make_orchestrator(store, tool_executor, shell_runner):
    """按给定的 mock AI 回复组装引擎。"""

    def _make(turns: list[ChatTurn], max_iterations: int = 20) -> RemediationOrchestrator:
        ai = RemediationAIClient(mock_responses=turns)
        driver = InvestigationDriver(
            ai, tool_executor, KUBECTL_INVESTIGATION_TOOLS, max_iterations=max_iterations
        )
        return RemediationOrchestrator(
            store=store,
            driver=driver,
            command_executor=CommandExecutor(runner=shell_runner, dry_run=False),
            confidence_threshold=0.8,
            max_risk_level="low",
        )

    return _make


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from kuberemedy.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
