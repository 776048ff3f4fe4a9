#!/usr/bin/env python3
"""
风追户外后端主应用
活动报名、订单支付、核销、退款、活动结算与俱乐部提现
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse

from config import settings, get_cors_origins
from models import create_tables
from services.logger import get_logger
from services.middleware import APILoggingMiddleware, ErrorHandlingMiddleware, SecurityMiddleware
from utils.error_handlers import setup_exception_handlers

from api import (
    health_router,
    enrollments_router,
    orders_router,
    payments_router,
    verifications_router,
    refunds_router,
    finance_router,
)

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info(f"🚀 正在启动 {settings.app_name} v{settings.app_version} ({settings.environment})...")

    create_tables()
    logger.info("✅ 数据库表已创建")

    if settings.payment.mock_mode:
        logger.warning("⚠️ 未配置商户号，支付网关以模拟模式运行")

    logger.info("🎉 后端系统启动完成!")
    yield
    logger.info("👋 正在关闭后端系统...")


app = FastAPI(
    title=settings.app_name,
    description="户外活动报名、订单支付、核销、退款与俱乐部财务后端",
    version=settings.app_version,
    lifespan=lifespan,
    default_response_class=ORJSONResponse
)

# 中间件配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=settings.security.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 响应压缩（对大于1KB的响应启用）
app.add_middleware(GZipMiddleware, minimum_size=1024)

app.add_middleware(SecurityMiddleware)
app.add_middleware(APILoggingMiddleware)
app.add_middleware(ErrorHandlingMiddleware)

setup_exception_handlers(app)

# 注册路由
app.include_router(health_router)
app.include_router(enrollments_router, prefix="/api")
app.include_router(orders_router, prefix="/api")
app.include_router(payments_router, prefix="/api")
app.include_router(verifications_router, prefix="/api")
app.include_router(refunds_router, prefix="/api")
app.include_router(finance_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )
