"""
kube-remedy 应用入口模块 (Application Entry Module)

创建 FastAPI 应用：注册全局异常处理器、修复路由和健康检查。

Creates the FastAPI application: global exception handlers, remediation routes and health check.
"""
from datetime import datetime, timezone

from fastapi import FastAPI

from kuberemedy import __version__
from kuberemedy.core.config import settings
from kuberemedy.core.exceptions import register_exception_handlers
from kuberemedy.core.log import setup_logging
from kuberemedy.routers import remediation

setup_logging()

app = FastAPI(
    title="kube-remedy",
    description="AI-driven Kubernetes issue investigation and remediation | AI 驱动的 Kubernetes 故障诊断与修复",
    version=__version__,
)

register_exception_handlers(app)

app.include_router(remediation.router)  # 会话查询 (Session queries)
app.include_router(remediation.trigger_router)  # 修复入口 (Remediation entry point)


@app.get("/health")
@app.get("/api/v1/health")
async def health():
    """健康检查接口 (Health Check Endpoint)"""
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def serve() -> None:
    """kuberemedy-api 入口：用 uvicorn 启动 HTTP 服务 (Run the HTTP API with uvicorn)"""
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())
