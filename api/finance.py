"""
俱乐部财务相关API
账户、流水、结算、提现，以及平台管理员的审核与批处理入口
"""

from datetime import datetime
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from models import get_db
from models.finance import SettlementStatus, TransactionType, WithdrawalStatus
from models.user import User
from models.schemas import (
    AccountResponse, BankAccountUpdate, WithdrawalCreate, WithdrawalReject,
    WithdrawalResponse, SettlementResponse, TransactionResponse, PageResponse
)
from services.account_service import AccountService
from services.logger import get_logger
from services.order_service import OrderService
from services.settlement_service import SettlementService
from services.transaction_service import TransactionService
from services.withdrawal_service import WithdrawalService
from utils.auth_utils import get_current_user, get_current_admin

logger = get_logger("finance_api")
router = APIRouter(prefix="/finance", tags=["俱乐部财务"])


# ==================== 账户 ====================

@router.get("/clubs/{club_id}/account", response_model=AccountResponse)
async def get_club_account(
    club_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """俱乐部账户详情"""
    return AccountService(db).get_account_detail(club_id, current_user)


@router.put("/clubs/{club_id}/account/bank", response_model=AccountResponse)
async def update_bank_account(
    club_id: str,
    data: BankAccountUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """设置收款账户"""
    return AccountService(db).update_bank_account(
        club_id, current_user, data.bank_name, data.bank_account, data.account_name
    )


# ==================== 流水 ====================

@router.get("/clubs/{club_id}/transactions", response_model=PageResponse)
async def list_transactions(
    club_id: str,
    type_filter: Optional[TransactionType] = Query(None, alias="type"),
    activity_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """资金流水"""
    items, total = TransactionService(db).list_transactions(
        club_id, current_user, type_filter, activity_id, start_date, end_date, page, size
    )
    return PageResponse(
        items=[TransactionResponse.model_validate(t) for t in items],
        total=total,
        page=page,
        size=size
    )


@router.get("/clubs/{club_id}/transactions/monthly")
async def get_monthly_stats(
    club_id: str,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """月度收支统计"""
    return TransactionService(db).get_monthly_stats(club_id, current_user, year, month)


# ==================== 提现 ====================

@router.post("/clubs/{club_id}/withdrawals", response_model=WithdrawalResponse,
             status_code=status.HTTP_201_CREATED)
async def create_withdrawal(
    club_id: str,
    data: WithdrawalCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """申请提现"""
    return WithdrawalService(db).create_withdrawal(club_id, current_user, data.amount)


@router.get("/clubs/{club_id}/withdrawals", response_model=PageResponse)
async def list_withdrawals(
    club_id: str,
    status_filter: Optional[WithdrawalStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """提现记录"""
    items, total = WithdrawalService(db).list_withdrawals(club_id, current_user, status_filter, page, size)
    return PageResponse(
        items=[WithdrawalResponse.model_validate(w) for w in items],
        total=total,
        page=page,
        size=size
    )


@router.get("/clubs/{club_id}/withdrawals/{withdrawal_id}", response_model=WithdrawalResponse)
async def get_withdrawal(
    club_id: str,
    withdrawal_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """提现详情"""
    return WithdrawalService(db).get_withdrawal(club_id, withdrawal_id, current_user)


# ==================== 结算 ====================

@router.get("/clubs/{club_id}/settlements", response_model=PageResponse)
async def list_settlements(
    club_id: str,
    status_filter: Optional[SettlementStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """结算记录"""
    items, total = SettlementService(db).list_settlements(club_id, current_user, status_filter, page, size)
    return PageResponse(
        items=[SettlementResponse.model_validate(s) for s in items],
        total=total,
        page=page,
        size=size
    )


@router.get("/clubs/{club_id}/settlements/pending/stats")
async def get_pending_settlement_stats(
    club_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """待结算统计"""
    return SettlementService(db).get_pending_settlement_stats(club_id, current_user)


@router.get("/clubs/{club_id}/settlements/{settlement_id}", response_model=SettlementResponse)
async def get_settlement(
    club_id: str,
    settlement_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """结算详情"""
    return SettlementService(db).get_settlement(settlement_id, current_user, club_id)


# ==================== 平台管理 ====================

@router.get("/admin/withdrawals/pending", response_model=List[WithdrawalResponse])
async def list_pending_withdrawals(
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """待处理提现"""
    return WithdrawalService(db).list_pending_withdrawals()


@router.post("/admin/withdrawals/{withdrawal_id}/approve", response_model=WithdrawalResponse)
async def approve_withdrawal(
    withdrawal_id: str,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """审核通过提现"""
    return WithdrawalService(db).approve_withdrawal(withdrawal_id, current_admin)


@router.post("/admin/withdrawals/{withdrawal_id}/reject", response_model=WithdrawalResponse)
async def reject_withdrawal(
    withdrawal_id: str,
    data: WithdrawalReject,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """拒绝提现，解冻金额"""
    return WithdrawalService(db).reject_withdrawal(withdrawal_id, current_admin, data.reason)


@router.post("/admin/withdrawals/{withdrawal_id}/complete", response_model=WithdrawalResponse)
async def complete_withdrawal(
    withdrawal_id: str,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """确认打款"""
    return WithdrawalService(db).complete_withdrawal(withdrawal_id, current_admin)


@router.post("/admin/settlements/activity/{activity_id}", response_model=SettlementResponse)
async def settle_activity(
    activity_id: str,
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """手动结算单个活动"""
    return SettlementService(db).compute_settlement(activity_id)


@router.post("/admin/settlements/auto")
async def auto_settle(
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """批量结算已结束的活动"""
    return SettlementService(db).auto_settle_activities()


@router.post("/admin/orders/expire")
async def expire_orders(
    current_admin: User = Depends(get_current_admin),
    db: Session = Depends(get_db)
):
    """关闭超时未支付订单"""
    count = OrderService(db).cancel_expired_orders()
    return {"expired": count}
