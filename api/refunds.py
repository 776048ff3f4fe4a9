"""
退款相关API
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List

from models import get_db
from models.user import User
from models.schemas import RefundCreate, RefundPreview, RefundReject, RefundResponse, PageResponse
from services.logger import get_logger
from services.refund_service import RefundService
from utils.auth_utils import get_current_user

logger = get_logger("refunds_api")
router = APIRouter(prefix="/refunds", tags=["退款"])


@router.get("/preview", response_model=RefundPreview)
async def preview_refund(
    order_id: str = Query(..., description="订单ID"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """退款预览：可退比例与金额"""
    return RefundService(db).preview_refund(order_id, current_user)


@router.post("/", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
async def create_refund(
    data: RefundCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """申请退款"""
    return RefundService(db).create_refund(data.order_id, current_user, data.reason, data.reason_detail)


@router.get("/", response_model=PageResponse)
async def list_my_refunds(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """我的退款申请"""
    refunds, total = RefundService(db).list_user_refunds(current_user, page, size)
    return PageResponse(
        items=[RefundResponse.model_validate(r) for r in refunds],
        total=total,
        page=page,
        size=size
    )


@router.get("/club/{club_id}/pending", response_model=List[RefundResponse])
async def list_club_pending_refunds(
    club_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """俱乐部待审核退款"""
    return RefundService(db).list_club_pending_refunds(club_id, current_user)


@router.get("/{refund_id}", response_model=RefundResponse)
async def get_refund(
    refund_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """退款详情"""
    return RefundService(db).get_refund(refund_id, current_user)


@router.put("/{refund_id}/approve", response_model=RefundResponse)
async def approve_refund(
    refund_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """审核通过并原路退款"""
    return RefundService(db).approve_refund(refund_id, current_user)


@router.put("/{refund_id}/retry", response_model=RefundResponse)
async def retry_refund(
    refund_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """网关退款失败后重新发起"""
    return RefundService(db).retry_refund(refund_id, current_user)


@router.put("/{refund_id}/reject", response_model=RefundResponse)
async def reject_refund(
    refund_id: str,
    data: RefundReject,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """拒绝退款"""
    return RefundService(db).reject_refund(refund_id, current_user, data.reason)
