"""
全局异常处理模块 (Global Exception Handling Module)

定义业务异常类、管道内部异常类和 FastAPI 全局异常处理器，提供统一的错误响应格式。
业务异常（参数错误、资源不存在、状态冲突）对调用方可见；管道异常（采样、持久化、
规则评估、通知投递）只在后台任务内部处理并记录日志。

Defines business exceptions, pipeline-internal exceptions and FastAPI global exception
handlers with a unified error response format. Business errors (bad parameters, unknown
ids, state conflicts) are caller-visible; pipeline errors (sampling, persistence, rule
evaluation, notification delivery) are handled and logged inside background jobs.
"""
import logging
import traceback
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ============================================================
# 业务异常类 (Business Exception Classes)
# ============================================================

class BusinessError(Exception):
    """业务异常基类 (Base Business Exception)"""
    status_code: int = 400
    error: str = "business_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class NotFoundError(BusinessError):
    """资源不存在 (Resource Not Found)"""
    status_code = 404
    error = "not_found"


class ValidationError(BusinessError):
    """数据校验失败 (Validation Error)"""
    status_code = 422
    error = "validation_error"


class ConflictError(BusinessError):
    """资源冲突或非法状态转换 (Resource Conflict / Illegal State Transition)"""
    status_code = 409
    error = "conflict"


# ============================================================
# 管道异常类 (Pipeline Exception Classes)
# ============================================================

class PipelineError(Exception):
    """监控管道内部异常基类 (Base Pipeline Exception)"""


class SamplingFailure(PipelineError):
    """单项采样失败，对应读数降级为占位值 (A sub-reading probe failed)"""

    def __init__(self, probe: str, reason: str):
        self.probe = probe
        self.reason = reason
        super().__init__(f"{probe} probe unavailable: {reason}")


class PersistenceFailure(PipelineError):
    """存储不可用，本周期整体跳过 (Storage unreachable, the whole cycle is skipped)"""

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")


class RuleEvaluationError(PipelineError):
    """单条规则评估失败，不影响其他规则 (One rule failed, others keep going)"""

    def __init__(self, rule_id: int, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"rule {rule_id}: {reason}")


class NotificationDeliveryError(PipelineError):
    """单个 (用户, 渠道) 投递失败 (One (user, channel) delivery failed)"""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel}: {reason}")


# ============================================================
# 全局异常处理器注册 (Global Exception Handler Registration)
# ============================================================

def register_exception_handlers(app: FastAPI) -> None:
    """
    注册全局异常处理器到 FastAPI 应用 (Register global exception handlers to FastAPI app)

    处理优先级：
    1. BusinessError 子类 → 对应 HTTP 状态码 + 结构化响应
    2. HTTPException → 保持原样，包装为统一格式
    3. PersistenceFailure → 503，存储暂不可用
    4. Exception → 500 + 完整 traceback 日志
    """

    @app.exception_handler(BusinessError)
    async def business_error_handler(request: Request, exc: BusinessError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error,
                "message": exc.message,
                "detail": exc.detail,
                "status_code": exc.status_code,
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "http_error",
                "message": str(exc.detail),
                "detail": None,
                "status_code": exc.status_code,
            },
        )

    @app.exception_handler(PersistenceFailure)
    async def persistence_failure_handler(request: Request, exc: PersistenceFailure) -> JSONResponse:
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={
                "error": "persistence_unavailable",
                "message": "存储暂不可用，请稍后重试 (Storage temporarily unavailable)",
                "detail": exc.operation,
                "status_code": 503,
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        # 记录完整 traceback 用于调试 (Log full traceback for debugging)
        logger.error(
            "Unhandled exception on %s %s: %s\n%s",
            request.method,
            request.url.path,
            str(exc),
            traceback.format_exc(),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "服务器内部错误，请稍后重试 (Internal server error, please try again later)",
                "detail": None,
                "status_code": 500,
            },
        )
