"""
站内通知模型定义
"""
from sqlalchemy import Column, String, DateTime, Boolean, Text, JSON, ForeignKey
from sqlalchemy.sql import func
from .database import Base
import uuid


class Notification(Base):
    """站内通知"""
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(50), nullable=False)  # order_paid, refund_completed ...
    title = Column(String(100), nullable=False)
    content = Column(Text, nullable=True)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, default=False)

    created_at = Column(DateTime, server_default=func.now())
