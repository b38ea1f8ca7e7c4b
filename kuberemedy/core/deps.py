"""
FastAPI 依赖项模块 (FastAPI Dependencies Module)

提供修复引擎实例的依赖注入。进程内只组装一次，测试通过 app.dependency_overrides 替换。

Provides the remediation orchestrator as a FastAPI dependency. It is assembled once per
process; tests replace it via app.dependency_overrides.
"""
from typing import Optional

from kuberemedy.remediation.orchestrator import RemediationOrchestrator, build_orchestrator

_orchestrator: Optional[RemediationOrchestrator] = None


def get_orchestrator() -> RemediationOrchestrator:
    """返回按全局配置组装的修复引擎 (Return the orchestrator built from global settings)"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Optional[RemediationOrchestrator]) -> None:
    """替换进程内的引擎实例，None 表示下次按配置重新组装 (Replace the engine instance; None rebuilds lazily)"""
    global _orchestrator
    _orchestrator = orchestrator
