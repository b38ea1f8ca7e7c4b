"""
修复引擎异常体系 (Remediation Error Taxonomy)

每个可对外报告的错误都是 RemediationError 的子类，携带 HTTP 状态码和机器可读的错误码。
HTTP 接口与 MCP 工具把它们渲染成同一结构，调用方从不会看到裸堆栈。

错误分类：
- Validation：输入缺失、会话引用非法、选项编号非法、状态不允许 → 立即失败，不修改会话
- AI-service：AI 不可达、输出无法解析为合法 Analysis → 中止调查，会话标记 failed
- Storage：会话文件不可读写 → 当前操作失败
- Operation：单条诊断/修复命令失败 → 不抛到调用方，作为数据记录
"""
import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class RemediationError(Exception):
    """可报告错误的基类 (Base of every reportable engine error)"""
    status_code: int = 400
    error: str = "remediation_error"
    # 出错时已存在的会话，调用方据此查询记录 (Session that already existed when the error occurred)
    session_id: Optional[str] = None

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        body = error_body(self.error, self.message, self.detail, self.status_code)
        if self.session_id:
            body["session_id"] = self.session_id
        return body


# --- Validation ---

class ValidationError(RemediationError):
    """请求不合法 (Malformed or incomplete request)"""
    status_code = 422
    error = "validation_error"


class InvalidTransitionError(ValidationError):
    """会话当前状态不接受该请求 (Session state does not allow the request)"""
    status_code = 409
    error = "invalid_transition"


class SessionNotFoundError(RemediationError):
    """会话不存在 (Unknown session)"""
    status_code = 404
    error = "not_found"


# --- Storage ---

class SessionExistsError(RemediationError):
    """会话已存在 (Session id already taken)"""
    status_code = 409
    error = "conflict"


class StorageError(RemediationError):
    """会话存储读写失败 (Session storage unreadable or unwritable)"""
    status_code = 500
    error = "storage_error"


# --- AI-service ---

class AIServiceError(RemediationError):
    """AI 服务调用失败 (AI service unreachable or returned an unusable response)"""
    status_code = 502
    error = "ai_service_error"


class AnalysisParseError(AIServiceError):
    """AI 最终输出无法解析为合法的分析结果 (Final output is not a valid analysis)"""
    error = "analysis_parse_error"


class InvestigationError(AIServiceError):
    """调查没有产生最终消息 (Investigation produced no terminal message)"""
    error = "investigation_failed"


# --- Operation ---

class CommandFailedError(Exception):
    """命令以非零状态退出、超时或无法启动，由执行器记录为结果数据
    (Command exited non-zero, timed out or failed to start; recorded as a result, never surfaced)"""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


def error_body(error: str, message: str, detail: Optional[str], status_code: int) -> dict[str, Any]:
    """HTTP 错误响应的统一结构 (Shape of every HTTP error response)"""
    return {"error": error, "message": message, "detail": detail, "status_code": status_code}


def register_exception_handlers(app: FastAPI) -> None:
    """把引擎错误、请求体校验错误、HTTPException 和意外异常都渲染为 error_body 结构。"""

    @app.exception_handler(RemediationError)
    async def remediation_error_handler(request: Request, exc: RemediationError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(
            status_code=422,
            content=error_body("validation_error", "Invalid remediation request", problems, 422),
        )

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body("http_error", str(exc.detail), None, exc.status_code),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unexpected error on %s %s\n%s", request.method, request.url.path, traceback.format_exc()
        )
        return JSONResponse(
            status_code=500,
            content=error_body("internal_error", "Internal error while handling the request", None, 500),
        )
