"""
全局异常处理器
"""
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.logger import get_logger
from utils.exceptions import BusinessException

logger = get_logger("error_handler")


def _error_body(status_code: int, message, error: str, data=None) -> dict:
    body = {"statusCode": status_code, "message": message, "error": error}
    if data:
        body["data"] = data
    return body


def setup_exception_handlers(app: FastAPI):
    """设置异常处理器"""

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """业务异常处理"""
        if exc.status_code >= 500:
            logger.error(f"{exc.error} {request.method} {request.url.path}: {exc.message}")
        else:
            logger.warning(f"{exc.error} {request.method} {request.url.path}: {exc.message}")
        return ORJSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.status_code, exc.message, exc.error, exc.data)
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """框架HTTP异常处理（认证失败、路由不存在等）"""
        return ORJSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.status_code, exc.detail, "HTTPException"),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """请求参数校验异常处理"""
        logger.warning(f"Request validation failed for {request.url.path}: {exc.errors()}")
        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                "请求参数校验失败",
                "RequestValidationError",
                {"errors": jsonable_encoder(exc.errors())}
            )
        )
