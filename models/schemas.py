"""
数据验证Schema定义
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal


# 基础Schema
class BaseSchema(BaseModel):
    class Config:
        from_attributes = True


# 报名相关Schema
class EnrollmentCreate(BaseSchema):
    activity_id: str
    contact_name: str = Field(..., min_length=1, max_length=50)
    contact_phone: str = Field(..., pattern=r'^1[3-9]\d{9}$')
    remark: Optional[str] = Field(None, max_length=500)


class EnrollmentResponse(BaseSchema):
    id: str
    activity_id: str
    user_id: str
    contact_name: str
    contact_phone: str
    amount: float
    status: str
    created_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


# 订单相关Schema
class OrderCreate(BaseSchema):
    enrollment_id: str
    insured_name: str = Field(..., min_length=1, max_length=50)
    insured_phone: str = Field(..., pattern=r'^1[3-9]\d{9}$')
    insured_id_card: Optional[str] = Field(None, max_length=30)


class OrderResponse(BaseSchema):
    id: str
    order_no: str
    user_id: str
    activity_id: str
    enrollment_id: str
    insured_name: str
    insured_phone: str
    amount: float
    insurance_fee: float
    total_amount: float
    status: str
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class OrderListResponse(BaseSchema):
    orders: List[OrderResponse]
    total: int
    page: int
    size: int


class VerifyCodeResponse(BaseSchema):
    order_id: str
    order_no: str
    verify_code: str
    verified: bool


# 支付相关Schema
class PrepayRequest(BaseSchema):
    order_id: str
    open_id: Optional[str] = None


class PrepayResponse(BaseSchema):
    order_id: str
    order_no: str
    total_amount: float
    pay_params: Dict[str, Any]


class PaymentStatusResponse(BaseSchema):
    order_id: str
    order_status: str
    payment_status: Optional[str] = None
    paid_at: Optional[datetime] = None


class PaymentResponse(BaseSchema):
    id: str
    order_id: str
    gateway: str
    amount: float
    status: str
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


class PaymentSyncResponse(BaseSchema):
    status: str
    need_update: bool


# 核销相关Schema
class VerifyRequest(BaseSchema):
    code: str = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=500)


class VerificationResponse(BaseSchema):
    order_id: str
    order_no: str
    user_id: str
    insured_name: str
    verified_at: datetime
    verified_by: str


class VerificationStats(BaseSchema):
    activity_id: str
    total: int
    verified: int
    unverified: int


# 退款相关Schema
class RefundCreate(BaseSchema):
    order_id: str
    reason: str = Field(..., description="personal, schedule, health, weather, activity_changed, other")
    reason_detail: Optional[str] = Field(None, max_length=1000)


class RefundReject(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=500)


class RefundPreview(BaseSchema):
    order_id: str
    can_refund: bool
    reason: Optional[str] = None
    refund_percent: int
    refund_amount: float
    hours_before_start: float


class RefundResponse(BaseSchema):
    id: str
    refund_no: str
    order_id: str
    user_id: str
    reason: str
    reason_detail: Optional[str] = None
    refund_amount: float
    refund_percent: int
    status: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


# 财务相关Schema
class BankAccountUpdate(BaseSchema):
    bank_name: str = Field(..., min_length=1, max_length=100)
    bank_account: str = Field(..., pattern=r'^\d{8,30}$')
    account_name: str = Field(..., min_length=1, max_length=50)


class AccountResponse(BaseSchema):
    club_id: str
    balance: float
    frozen_balance: float
    available_balance: float
    total_income: float
    total_withdraw: float
    has_bank_account: bool
    bank_info: Optional[Dict[str, Any]] = None


class WithdrawalCreate(BaseSchema):
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class WithdrawalReject(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=500)


class WithdrawalResponse(BaseSchema):
    id: str
    withdrawal_no: str
    club_id: str
    amount: float
    fee: float
    actual_amount: float
    status: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    transferred_at: Optional[datetime] = None


class SettlementResponse(BaseSchema):
    id: str
    settlement_no: str
    activity_id: str
    club_id: str
    total_amount: float
    refund_amount: float
    platform_fee: float
    settle_amount: float
    commission_detail: Optional[Dict[str, Any]] = None
    status: str
    created_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None


class TransactionResponse(BaseSchema):
    id: str
    club_id: str
    activity_id: Optional[str] = None
    type: str
    amount: float
    balance_before: float
    balance_after: float
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class PageResponse(BaseSchema):
    items: List[Any]
    total: int
    page: int
    size: int
