"""
订单、支付、核销、退款模型定义
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Numeric, ForeignKey, Enum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from .database import Base
import uuid
import enum


class OrderStatus(str, enum.Enum):
    """订单状态"""
    PENDING = "pending"       # 待支付
    PAYING = "paying"         # 支付中
    PAID = "paid"             # 已支付
    COMPLETED = "completed"   # 已完成（已结算）
    CANCELLED = "cancelled"   # 已取消
    REFUNDING = "refunding"   # 退款中
    REFUNDED = "refunded"     # 已退款


class PaymentGateway(str, enum.Enum):
    """支付渠道"""
    WECHAT = "wechat"         # 微信支付
    MOCK = "mock"             # 模拟支付（开发环境）


class PaymentStatus(str, enum.Enum):
    """支付状态"""
    PENDING = "pending"       # 待支付
    SUCCESS = "success"       # 支付成功
    FAILED = "failed"         # 支付失败


class RefundReason(str, enum.Enum):
    """退款原因"""
    PERSONAL = "personal"               # 个人原因
    SCHEDULE_CONFLICT = "schedule"      # 时间冲突
    HEALTH = "health"                   # 身体原因
    WEATHER = "weather"                 # 天气原因
    ACTIVITY_CHANGED = "activity_changed"  # 活动变更
    OTHER = "other"                     # 其他


class RefundStatus(str, enum.Enum):
    """退款状态"""
    PENDING = "pending"         # 待审核
    APPROVED = "approved"       # 已通过
    PROCESSING = "processing"   # 退款中
    COMPLETED = "completed"     # 已退款
    REJECTED = "rejected"       # 已拒绝


class Order(Base):
    """订单模型"""
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_no = Column(String(50), unique=True, nullable=False, index=True)  # 订单号

    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    activity_id = Column(String, ForeignKey("activities.id"), nullable=False, index=True)
    enrollment_id = Column(String, ForeignKey("enrollments.id"), unique=True, nullable=False)

    # 投保人信息
    insured_name = Column(String(50), nullable=False)
    insured_phone = Column(String(20), nullable=False)
    insured_id_card = Column(String(30), nullable=True)

    # 订单金额，创建后不再变化
    amount = Column(Numeric(10, 2), nullable=False)          # 活动费用
    insurance_fee = Column(Numeric(10, 2), default=0)        # 保险费用
    total_amount = Column(Numeric(10, 2), nullable=False)    # 应付总额

    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, index=True)
    verify_code = Column(String(128), unique=True, nullable=False, index=True)  # 核销码

    # 时间戳
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    expires_at = Column(DateTime, nullable=True)  # 订单过期时间
    paid_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    # 关系
    user = relationship("User", back_populates="orders")
    activity = relationship("Activity", back_populates="orders")
    enrollment = relationship("Enrollment", back_populates="order")
    payment = relationship("Payment", back_populates="order", uselist=False, cascade="all, delete-orphan")
    verification = relationship("Verification", back_populates="order", uselist=False, cascade="all, delete-orphan")
    refund = relationship("Refund", back_populates="order", uselist=False, cascade="all, delete-orphan")


class Payment(Base):
    """支付记录，订单进入支付中后才会存在"""
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String, ForeignKey("orders.id"), unique=True, nullable=False)

    gateway = Column(Enum(PaymentGateway), default=PaymentGateway.WECHAT)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING)

    # 第三方支付信息
    transaction_id = Column(String(100), nullable=True, index=True)  # 第三方交易号
    prepay_id = Column(String(100), nullable=True)
    nonce_str = Column(String(64), nullable=True)
    open_id = Column(String(64), nullable=True)
    prepay_params = Column(JSON, nullable=True)   # 返回给前端的调起参数
    notify_payload = Column(JSON, nullable=True)  # 最近一次回调内容

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    paid_at = Column(DateTime, nullable=True)

    order = relationship("Order", back_populates="payment")


class Verification(Base):
    """核销记录，每个订单至多一条"""
    __tablename__ = "verifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String, ForeignKey("orders.id"), unique=True, nullable=False)
    verified_by = Column(String, ForeignKey("users.id"), nullable=False)
    note = Column(String(500), nullable=True)

    verified_at = Column(DateTime, server_default=func.now())

    order = relationship("Order", back_populates="verification")
    verifier = relationship("User")


class Refund(Base):
    """退款申请"""
    __tablename__ = "refunds"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    refund_no = Column(String(50), unique=True, nullable=False, index=True)
    order_id = Column(String, ForeignKey("orders.id"), unique=True, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    reason = Column(Enum(RefundReason), nullable=False)
    reason_detail = Column(Text, nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=False)
    refund_percent = Column(Integer, nullable=False)

    status = Column(Enum(RefundStatus), default=RefundStatus.PENDING, index=True)

    # 审核信息
    reviewed_by = Column(String, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    reject_reason = Column(String(500), nullable=True)

    # 第三方退款信息
    gateway_refund_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    refunded_at = Column(DateTime, nullable=True)

    order = relationship("Order", back_populates="refund")
    user = relationship("User", foreign_keys=[user_id])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
