"""
订单相关API
包含下单、订单查询、取消订单、核销码
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from models import get_db
from models.order import OrderStatus
from models.user import User
from models.schemas import OrderCreate, OrderResponse, OrderListResponse, VerifyCodeResponse
from services.logger import get_logger
from services.order_service import OrderService
from utils.auth_utils import get_current_user

logger = get_logger("orders_api")
router = APIRouter(prefix="/orders", tags=["订单"])


@router.post("/", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """为报名创建订单"""
    return OrderService(db).create_order(
        current_user,
        order_data.enrollment_id,
        order_data.insured_name,
        order_data.insured_phone,
        order_data.insured_id_card
    )


@router.get("/", response_model=OrderListResponse)
async def get_user_orders(
    page: int = Query(1, ge=1, description="页码"),
    size: int = Query(20, ge=1, le=100, description="每页数量"),
    status_filter: Optional[OrderStatus] = Query(None, alias="status", description="订单状态"),
    activity_id: Optional[str] = Query(None, description="活动ID"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """获取用户订单列表"""
    orders, total = OrderService(db).list_orders(current_user, status_filter, activity_id, page, size)
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order_detail(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """获取订单详情"""
    return OrderService(db).get_order(order_id, current_user)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """取消待支付订单"""
    return OrderService(db).cancel_order(order_id, current_user)


@router.get("/{order_id}/verify-code", response_model=VerifyCodeResponse)
async def get_verify_code(
    order_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """获取核销码（已支付订单）"""
    return OrderService(db).get_verify_code(order_id, current_user)
