"""
用户模型定义
"""
from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from .database import Base
import uuid


class User(Base):
    """用户模型（由账号体系维护，订单与财务模块只读）"""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    nickname = Column(String(50), nullable=False)
    phone = Column(String(20), unique=True, index=True, nullable=True)  # 手机号
    open_id = Column(String(64), unique=True, index=True, nullable=True)  # 小程序 openid
    avatar_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True)
    role = Column(String(20), default='user')  # user, admin

    # 时间戳
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 关系
    enrollments = relationship("Enrollment", back_populates="user")
    orders = relationship("Order", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self):
        return f"<User(id={self.id}, nickname={self.nickname}, phone={self.phone})>"
