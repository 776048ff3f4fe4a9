"""
俱乐部与活动模型定义

俱乐部、成员、活动、保险产品由其他业务线维护，这里只做读取。
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, JSON, Numeric, ForeignKey, Enum, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from .database import Base
import uuid
import enum


class ClubRole(str, enum.Enum):
    """俱乐部成员角色"""
    OWNER = "owner"       # 创建者
    ADMIN = "admin"       # 管理员
    LEADER = "leader"     # 领队
    MEMBER = "member"     # 普通成员


class ActivityStatus(str, enum.Enum):
    """活动状态"""
    DRAFT = "draft"           # 草稿
    PUBLISHED = "published"   # 报名中
    FULL = "full"             # 已满员
    ONGOING = "ongoing"       # 进行中
    COMPLETED = "completed"   # 已结束
    CANCELLED = "cancelled"   # 已取消


class Club(Base):
    """俱乐部"""
    __tablename__ = "clubs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    owner = relationship("User")
    members = relationship("ClubMember", back_populates="club", cascade="all, delete-orphan")
    activities = relationship("Activity", back_populates="club")
    account = relationship("ClubAccount", back_populates="club", uselist=False)


class ClubMember(Base):
    """俱乐部成员"""
    __tablename__ = "club_members"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    club_id = Column(String, ForeignKey("clubs.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(Enum(ClubRole), default=ClubRole.MEMBER)

    joined_at = Column(DateTime, server_default=func.now())

    club = relationship("Club", back_populates="members")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint('club_id', 'user_id', name='uq_club_member'),
    )


class InsuranceProduct(Base):
    """保险产品（按天计价）"""
    __tablename__ = "insurance_products"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, default=True)


class RefundPolicy(Base):
    """退款政策

    rules 为 [{"hours_before_start": 168, "refund_percent": 100}, ...]，
    活动可单独指定，否则使用俱乐部默认政策，再否则使用平台配置。
    """
    __tablename__ = "refund_policies"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    club_id = Column(String, ForeignKey("clubs.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    rules = Column(JSON, nullable=False, default=list)
    no_refund_hours = Column(Integer, default=24)
    is_default = Column(Boolean, default=False)

    created_at = Column(DateTime, server_default=func.now())


class Activity(Base):
    """活动"""
    __tablename__ = "activities"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    club_id = Column(String, ForeignKey("clubs.id"), nullable=False, index=True)
    leader_id = Column(String, ForeignKey("users.id"), nullable=True)  # 领队
    title = Column(String(200), nullable=False)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    max_people = Column(Integer, nullable=True)  # 为空表示不限
    status = Column(Enum(ActivityStatus), default=ActivityStatus.DRAFT, index=True)

    insurance_product_id = Column(String, ForeignKey("insurance_products.id"), nullable=True)
    refund_policy_id = Column(String, ForeignKey("refund_policies.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    club = relationship("Club", back_populates="activities")
    leader = relationship("User")
    insurance_product = relationship("InsuranceProduct")
    refund_policy = relationship("RefundPolicy")
    enrollments = relationship("Enrollment", back_populates="activity")
    orders = relationship("Order", back_populates="activity")
    settlement = relationship("Settlement", back_populates="activity", uselist=False)
