"""
站内通知服务

通知失败不能影响主流程：写入使用独立会话，异常只记日志。
调用方应在主事务提交之后再发送通知。
"""
from typing import Optional, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models.notification import Notification
from services.logger import get_logger

logger = get_logger("notification_service")


class NotificationType:
    ORDER_PAID = "order_paid"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_VERIFIED = "order_verified"
    REFUND_REQUESTED = "refund_requested"
    REFUND_COMPLETED = "refund_completed"
    REFUND_REJECTED = "refund_rejected"
    SETTLEMENT_COMPLETED = "settlement_completed"
    WITHDRAWAL_APPROVED = "withdrawal_approved"
    WITHDRAWAL_REJECTED = "withdrawal_rejected"
    WITHDRAWAL_COMPLETED = "withdrawal_completed"


class NotificationService:
    """通知服务"""

    def __init__(self, db: Session):
        self._session_factory = sessionmaker(bind=db.get_bind(), autocommit=False, autoflush=False)

    def notify(self, user_id: Optional[str], type: str, title: str,
               content: str = None, data: Dict[str, Any] = None) -> bool:
        """发送站内通知，失败返回 False"""
        if not user_id:
            return False

        session = self._session_factory()
        try:
            session.add(Notification(
                user_id=user_id,
                type=type,
                title=title,
                content=content,
                data=data
            ))
            session.commit()
            return True
        except SQLAlchemyError as e:
            session.rollback()
            logger.warning(f"发送通知失败 user={user_id} type={type}: {e}")
            return False
        finally:
            session.close()
