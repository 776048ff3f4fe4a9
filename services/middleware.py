"""
中间件模块
"""
import time
import uuid
from typing import Callable

import orjson
from fastapi import Request
from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from services.logger import get_logger

logger = get_logger("middleware")
api_logger = get_logger("api")

# 日志中需要隐藏的字段
SENSITIVE_FIELDS = {"token", "secret", "api_key", "insured_id_card", "bank_account", "verify_code", "code"}


def _mask(data):
    if isinstance(data, dict):
        return {k: ("***" if k in SENSITIVE_FIELDS else _mask(v)) for k, v in data.items()}
    return data


class APILoggingMiddleware(BaseHTTPMiddleware):
    """API调用日志中间件，同时生成请求ID"""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        start_time = time.time()

        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else "unknown"

        request_body = None
        if method in ("POST", "PUT", "PATCH") and request.headers.get("content-type", "").startswith("application/json"):
            body = await request.body()
            if body:
                try:
                    request_body = _mask(orjson.loads(body))
                except orjson.JSONDecodeError:
                    logger.warning(f"[REQ-{request_id}] 请求体不是合法 JSON")

        api_logger.info(f"[REQ-{request_id}] {method} {path} | IP: {client_ip}")
        if request_body is not None:
            serialized = orjson.dumps(request_body).decode()
            if len(serialized) > 2000:
                serialized = serialized[:2000] + "..."
            api_logger.debug(f"[REQ-{request_id}] Request body: {serialized}")

        response = await call_next(request)

        process_time = time.time() - start_time
        status_code = response.status_code
        message = f"[REQ-{request_id}] {method} {path} | Status: {status_code} | Time: {process_time:.3f}s"
        if status_code >= 500:
            api_logger.error(message)
        elif status_code >= 400:
            api_logger.warning(message)
        else:
            api_logger.info(message)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """兜底错误处理，未捕获异常统一返回 500"""

    async def dispatch(self, request: Request, call_next: Callable):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(e)}", exc_info=True)
            return ORJSONResponse(
                status_code=500,
                content={
                    "statusCode": 500,
                    "message": "服务器内部错误",
                    "error": "InternalServerError",
                    "request_id": getattr(request.state, "request_id", None),
                }
            )


class SecurityMiddleware(BaseHTTPMiddleware):
    """安全响应头"""

    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response
