"""
活动报名模型定义
"""
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Enum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from .database import Base
import uuid
import enum


class EnrollmentStatus(str, enum.Enum):
    """报名状态"""
    PENDING = "pending"         # 待支付
    PAID = "paid"               # 已支付
    CHECKED_IN = "checked_in"   # 已签到（核销）
    CANCELLED = "cancelled"     # 已取消
    REFUNDED = "refunded"       # 已退款


# 这些状态的报名不再占用名额
INACTIVE_ENROLLMENT_STATUSES = (EnrollmentStatus.CANCELLED, EnrollmentStatus.REFUNDED)


class Enrollment(Base):
    """活动报名"""
    __tablename__ = "enrollments"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    activity_id = Column(String, ForeignKey("activities.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    contact_name = Column(String(50), nullable=False)
    contact_phone = Column(String(20), nullable=False)
    remark = Column(String(500), nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)  # 报名时锁定的活动价格
    status = Column(Enum(EnrollmentStatus), default=EnrollmentStatus.PENDING, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    cancelled_at = Column(DateTime, nullable=True)

    activity = relationship("Activity", back_populates="enrollments")
    user = relationship("User", back_populates="enrollments")
    order = relationship("Order", back_populates="enrollment", uselist=False)
