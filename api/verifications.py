"""
核销相关API
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from models import get_db
from models.user import User
from models.schemas import VerifyRequest, VerificationResponse, VerificationStats
from services.logger import get_logger
from services.verification_service import VerificationService
from utils.auth_utils import get_current_user

logger = get_logger("verifications_api")
router = APIRouter(prefix="/verifications", tags=["核销"])


def _to_response(verification) -> VerificationResponse:
    order = verification.order
    return VerificationResponse(
        order_id=order.id,
        order_no=order.order_no,
        user_id=order.user_id,
        insured_name=order.insured_name,
        verified_at=verification.verified_at,
        verified_by=verification.verified_by
    )


@router.post("/verify", response_model=VerificationResponse)
async def verify_order(
    data: VerifyRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """扫码核销"""
    verification = VerificationService(db).verify_order(data.code, current_user, data.note)
    return _to_response(verification)


@router.post("/verify-by-order-no/{order_no}", response_model=VerificationResponse)
async def verify_by_order_no(
    order_no: str,
    note: Optional[str] = Query(None, max_length=500),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """按订单号核销"""
    verification = VerificationService(db).verify_by_order_no(order_no, current_user, note)
    return _to_response(verification)


@router.get("/activities/{activity_id}/stats", response_model=VerificationStats)
async def get_activity_stats(
    activity_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """活动核销统计"""
    return VerificationService(db).get_activity_stats(activity_id, current_user)


@router.get("/activities/{activity_id}")
async def list_activity_orders(
    activity_id: str,
    verified: Optional[bool] = Query(None, description="按是否核销筛选"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """活动订单核销名单"""
    items = VerificationService(db).list_activity_orders(activity_id, current_user, verified)
    return {"items": items, "total": len(items)}
