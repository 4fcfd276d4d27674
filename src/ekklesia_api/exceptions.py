"""应用异常处理注册。"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ekklesia_api.core.errors import AuthError
from ekklesia_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger("ekklesia_api.errors")

_HTTP_ERROR_CODES = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_409_CONFLICT: "CONFLICT",
    status.HTTP_422_UNPROCESSABLE_CONTENT: "VALIDATION_ERROR",
}

_HTTP_MESSAGES = {
    status.HTTP_400_BAD_REQUEST: "请求参数不合法。",
    status.HTTP_401_UNAUTHORIZED: "未登录或登录状态已失效。",
    status.HTTP_403_FORBIDDEN: "无权限访问该资源。",
    status.HTTP_404_NOT_FOUND: "请求资源不存在。",
    status.HTTP_405_METHOD_NOT_ALLOWED: "请求方法不被允许。",
    status.HTTP_409_CONFLICT: "请求与当前数据状态冲突。",
    status.HTTP_422_UNPROCESSABLE_CONTENT: "请求参数校验失败。",
}


async def auth_error_handler(request: Request, exc: AuthError):
    """认证授权错误：对外只暴露统一错误码与字段提示，内部原因仅写日志。"""
    logger.info(
        "auth error code=%s public_code=%s status=%s path=%s request_id=%s",
        exc.code,
        exc.public_code,
        exc.status_code,
        request.url.path,
        getattr(request.state, "request_id", None),
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(
            request,
            code=exc.public_code.value,
            message=exc.public_message,
            details={"status_code": exc.status_code},
            errors=exc.field_errors(),
        ),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    message = _HTTP_MESSAGES.get(exc.status_code, "请求处理失败。")
    details: dict[str, object] = {"status_code": exc.status_code}
    if isinstance(exc.detail, dict):
        code = str(exc.detail.get("code") or code)
        message = str(exc.detail.get("message") or message)
    elif isinstance(exc.detail, str) and exc.detail:
        details["reason"] = exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=code, message=message, details=details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误，按字段聚合错误信息。"""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        field = ".".join(str(item) for item in err.get("loc", []) if item not in {"body", "query", "path"})
        errors.setdefault(field or "request", []).append(str(err.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        content=error_payload(
            request,
            code="VALIDATION_ERROR",
            message="请求参数校验失败。",
            details={"status_code": status.HTTP_422_UNPROCESSABLE_CONTENT},
            errors=errors,
        ),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，避免内部细节泄露。"""
    logger.exception(
        "unexpected error path=%s request_id=%s", request.url.path, getattr(request.state, "request_id", None)
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            request,
            code="INTERNAL_ERROR",
            message=DEFAULT_ERROR_MESSAGE,
            details={"status_code": status.HTTP_500_INTERNAL_SERVER_ERROR},
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(AuthError)(auth_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
