"""
支付相关API
预下单、支付回调、状态查询、主动同步、模拟支付
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from models import get_db
from models.user import User
from models.schemas import (
    PrepayRequest, PrepayResponse, PaymentStatusResponse,
    PaymentResponse, PaymentSyncResponse, OrderResponse
)
from services.logger import get_logger
from services.payment_service import PaymentService
from utils.auth_utils import get_current_user

logger = get_logger("payments_api")
router = APIRouter(prefix="/payments", tags=["支付"])


@router.post("/prepay", response_model=PrepayResponse)
async def prepay(
    data: PrepayRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """预下单，返回小程序调起支付参数"""
    return PaymentService(db).prepay(data.order_id, current_user, data.open_id)


@router.post("/notify")
async def payment_notify(request: Request, db: Session = Depends(get_db)):
    """支付网关回调（无需登录，依赖签名校验）"""
    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    return PaymentService(db).handle_notify(body, headers)


@router.get("/{order_id}/status", response_model=PaymentStatusResponse)
async def get_payment_status(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """查询支付状态"""
    return PaymentService(db).get_payment_status(order_id, current_user)


@router.post("/{order_id}/sync", response_model=PaymentSyncResponse)
async def sync_payment_status(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """向支付网关查单并同步状态"""
    return PaymentService(db).sync_payment_status(order_id, current_user)


@router.post("/{order_id}/mock-success", response_model=OrderResponse)
async def mock_payment_success(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """模拟支付成功（仅开发环境）"""
    return PaymentService(db).mock_payment_success(order_id, current_user)


@router.get("/{order_id}", response_model=PaymentResponse)
async def get_payment_detail(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """获取支付记录"""
    return PaymentService(db).get_payment_detail(order_id, current_user)
