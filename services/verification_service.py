"""
核销服务
活动现场扫码或输入订单号完成签到
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models.club import Activity
from models.enrollment import EnrollmentStatus
from models.order import Order, OrderStatus, Verification
from models.user import User
from services.logger import get_logger, log_business_event
from services.notification_service import NotificationService, NotificationType
from utils.exceptions import AlreadyVerified, BusinessException, Forbidden, InvalidState, NotFound
from utils.order_utils import parse_verify_code
from utils.permission_utils import can_verify_activity

logger = get_logger("verification_service")

VERIFIABLE_STATUSES = (OrderStatus.PAID, OrderStatus.COMPLETED)


class VerificationService:
    """核销服务类"""

    def __init__(self, db: Session):
        self.db = db

    def verify_order(self, code: str, verifier: User, note: str = None) -> Verification:
        """按核销码核销"""
        if not parse_verify_code(code):
            raise NotFound("核销码无效")
        order = self.db.query(Order).filter(Order.verify_code == code).first()
        if not order:
            raise NotFound("核销码无效")
        return self._verify(order, verifier, note)

    def verify_by_order_no(self, order_no: str, verifier: User, note: str = None) -> Verification:
        """按订单号核销（扫码失败时人工输入）"""
        order = self.db.query(Order).filter(Order.order_no == order_no).first()
        if not order:
            raise NotFound("订单不存在")
        return self._verify(order, verifier, note)

    def _verify(self, order: Order, verifier: User, note: str = None) -> Verification:
        if not can_verify_activity(self.db, order.activity, verifier):
            logger.warning(f"用户 {verifier.id} 无权核销活动 {order.activity_id}")
            raise Forbidden("无权核销该活动的订单")
        if order.verification is not None:
            raise AlreadyVerified()
        if order.status not in VERIFIABLE_STATUSES:
            raise InvalidState("订单未支付，不能核销")

        try:
            # 与退款申请互斥：订单状态在同一事务内仍须可核销
            rows = (
                self.db.query(Order)
                .filter(Order.id == order.id, Order.status.in_(VERIFIABLE_STATUSES))
                .update({Order.updated_at: func.now()}, synchronize_session=False)
            )
            if rows == 0:
                self.db.refresh(order)
                logger.warning(f"订单 {order.order_no} 核销冲突，当前状态 {order.status.value}")
                raise InvalidState("订单状态已变更，不能核销")

            verification = Verification(order_id=order.id, verified_by=verifier.id, note=note)
            self.db.add(verification)
            order.enrollment.status = EnrollmentStatus.CHECKED_IN
            self.db.commit()
            self.db.refresh(verification)
        except IntegrityError:
            self.db.rollback()
            raise AlreadyVerified()
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"核销失败: {str(e)}")
            raise

        log_business_event(
            logger, "order_verified",
            order_id=order.id, order_no=order.order_no, verified_by=verifier.id
        )
        NotificationService(self.db).notify(
            order.user_id, NotificationType.ORDER_VERIFIED,
            "签到成功", f"活动「{order.activity.title}」签到成功", {"order_id": order.id}
        )
        return verification

    def _check_activity(self, activity_id: str, user: User) -> Activity:
        activity = self.db.query(Activity).filter(Activity.id == activity_id).first()
        if not activity:
            raise NotFound("活动不存在")
        if not can_verify_activity(self.db, activity, user):
            raise Forbidden("无权查看该活动的核销信息")
        return activity

    def get_activity_stats(self, activity_id: str, user: User) -> Dict[str, Any]:
        """活动核销统计"""
        self._check_activity(activity_id, user)
        total = self.db.query(Order).filter(
            Order.activity_id == activity_id,
            Order.status.in_(VERIFIABLE_STATUSES)
        ).count()
        verified = (
            self.db.query(Verification)
            .join(Order, Verification.order_id == Order.id)
            .filter(Order.activity_id == activity_id)
            .count()
        )
        return {
            "activity_id": activity_id,
            "total": total,
            "verified": verified,
            "unverified": max(total - verified, 0),
        }

    def list_activity_orders(self, activity_id: str, user: User,
                             verified: Optional[bool] = None) -> List[Dict[str, Any]]:
        """活动的可核销订单及核销情况"""
        self._check_activity(activity_id, user)
        orders = self.db.query(Order).filter(
            Order.activity_id == activity_id,
            Order.status.in_(VERIFIABLE_STATUSES)
        ).order_by(Order.paid_at.asc()).all()

        items = []
        for order in orders:
            record = order.verification
            if verified is not None and (record is not None) != verified:
                continue
            items.append({
                "order_id": order.id,
                "order_no": order.order_no,
                "user_id": order.user_id,
                "insured_name": order.insured_name,
                "insured_phone": order.insured_phone,
                "verified": record is not None,
                "verified_at": record.verified_at if record else None,
                "verified_by": record.verified_by if record else None,
            })
        return items
