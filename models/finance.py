"""
俱乐部财务模型定义：账户、结算、提现、流水
"""
from sqlalchemy import Column, String, DateTime, JSON, Numeric, ForeignKey, Enum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from .database import Base
import uuid
import enum


class SettlementStatus(str, enum.Enum):
    """结算状态"""
    PENDING = "pending"       # 结算中
    COMPLETED = "completed"   # 已结算


class WithdrawalStatus(str, enum.Enum):
    """提现状态"""
    PENDING = "pending"       # 待审核
    APPROVED = "approved"     # 已通过，待打款
    REJECTED = "rejected"     # 已拒绝
    COMPLETED = "completed"   # 已打款


class TransactionType(str, enum.Enum):
    """流水类型"""
    SETTLEMENT = "settlement"   # 活动结算入账
    FEE = "fee"                 # 平台服务费
    WITHDRAWAL = "withdrawal"   # 提现


class ClubAccount(Base):
    """俱乐部账户

    balance = total_income - total_withdraw，可用余额为 balance - frozen_balance
    """
    __tablename__ = "club_accounts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    club_id = Column(String, ForeignKey("clubs.id"), unique=True, nullable=False)

    balance = Column(Numeric(12, 2), nullable=False, default=0)
    frozen_balance = Column(Numeric(12, 2), nullable=False, default=0)  # 提现中冻结
    total_income = Column(Numeric(12, 2), nullable=False, default=0)
    total_withdraw = Column(Numeric(12, 2), nullable=False, default=0)

    # 收款账户
    bank_name = Column(String(100), nullable=True)
    bank_account = Column(String(50), nullable=True)
    account_name = Column(String(50), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    club = relationship("Club", back_populates="account")


class Settlement(Base):
    """活动结算单，每个活动至多一条"""
    __tablename__ = "settlements"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    settlement_no = Column(String(50), unique=True, nullable=False, index=True)
    activity_id = Column(String, ForeignKey("activities.id"), unique=True, nullable=False)
    club_id = Column(String, ForeignKey("clubs.id"), nullable=False, index=True)

    total_amount = Column(Numeric(12, 2), nullable=False)    # 订单总额
    refund_amount = Column(Numeric(12, 2), nullable=False)   # 已退款金额
    platform_fee = Column(Numeric(12, 2), nullable=False)    # 平台服务费
    settle_amount = Column(Numeric(12, 2), nullable=False)   # 实际入账
    commission_detail = Column(JSON, nullable=True)

    status = Column(Enum(SettlementStatus), default=SettlementStatus.PENDING)

    created_at = Column(DateTime, server_default=func.now())
    settled_at = Column(DateTime, nullable=True)

    activity = relationship("Activity", back_populates="settlement")
    club = relationship("Club")


class Withdrawal(Base):
    """提现申请"""
    __tablename__ = "withdrawals"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    withdrawal_no = Column(String(50), unique=True, nullable=False, index=True)
    club_id = Column(String, ForeignKey("clubs.id"), nullable=False, index=True)
    applicant_id = Column(String, ForeignKey("users.id"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False)
    fee = Column(Numeric(12, 2), nullable=False, default=0)
    actual_amount = Column(Numeric(12, 2), nullable=False)

    # 申请时的收款账户快照
    bank_name = Column(String(100), nullable=True)
    bank_account = Column(String(50), nullable=True)
    account_name = Column(String(50), nullable=True)

    status = Column(Enum(WithdrawalStatus), default=WithdrawalStatus.PENDING, index=True)

    reviewed_by = Column(String, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    reject_reason = Column(String(500), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    transferred_at = Column(DateTime, nullable=True)

    club = relationship("Club")


class FinanceTransaction(Base):
    """俱乐部资金流水，余额每变动一次记一条"""
    __tablename__ = "finance_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    club_id = Column(String, ForeignKey("clubs.id"), nullable=False, index=True)
    activity_id = Column(String, ForeignKey("activities.id"), nullable=True, index=True)
    settlement_id = Column(String, ForeignKey("settlements.id"), nullable=True)
    withdrawal_id = Column(String, ForeignKey("withdrawals.id"), nullable=True)

    type = Column(Enum(TransactionType), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)  # 正数入账，负数出账
    balance_before = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    description = Column(String(200), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), index=True)
