"""
API模块包初始化文件
报名、订单、支付、核销、退款、财务路由
"""

from .health import router as health_router
from .enrollments import router as enrollments_router
from .orders import router as orders_router
from .payments import router as payments_router
from .verifications import router as verifications_router
from .refunds import router as refunds_router
from .finance import router as finance_router

__all__ = [
    "health_router",
    "enrollments_router",
    "orders_router",
    "payments_router",
    "verifications_router",
    "refunds_router",
    "finance_router",
]
