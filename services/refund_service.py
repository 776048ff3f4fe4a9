"""
退款服务
退款预览、申请、审核、原路退回
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from sqlalchemy import exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models.club import Activity, ActivityStatus, RefundPolicy
from models.enrollment import EnrollmentStatus
from models.order import Order, OrderStatus, Refund, RefundReason, RefundStatus, Verification
from models.user import User
from services.logger import get_logger, log_business_event
from services.notification_service import NotificationService, NotificationType
from services.order_service import OrderService
from services.payment_gateway import PaymentGatewayClient, get_payment_gateway
from services.state_machine import OrderAction, RefundAction, transition
from utils.exceptions import (
    BusinessException, Conflict, Forbidden, GatewayError, InvalidState, NotFound, ValidationError
)
from utils.order_utils import generate_serial_no, to_money
from utils.permission_utils import check_club_manager, is_club_manager

logger = get_logger("refund_service")

REFUNDABLE_STATUSES = (OrderStatus.PAID, OrderStatus.COMPLETED)


def calculate_refund_percent(hours_before_start: float, rules: List[Tuple[int, int]],
                             no_refund_hours: int) -> int:
    """按距活动开始的小时数匹配退款档位"""
    if hours_before_start < no_refund_hours:
        return 0
    for hours, percent in rules:
        if hours_before_start >= hours:
            return percent
    return 0


class RefundService:
    """退款服务类"""

    def __init__(self, db: Session, gateway: PaymentGatewayClient = None):
        self.db = db
        self.gateway = gateway or get_payment_gateway()
        self.order_service = OrderService(db)

    def resolve_refund_rules(self, activity: Activity) -> Tuple[List[Tuple[int, int]], int]:
        """
        获取活动适用的退款档位

        优先级：活动指定政策 > 俱乐部默认政策 > 平台配置。

        Returns:
            (按小时数降序的 [(小时, 比例)], 不可退款小时数)
        """
        policy = activity.refund_policy
        if policy is None:
            policy = self.db.query(RefundPolicy).filter(
                RefundPolicy.club_id == activity.club_id,
                RefundPolicy.is_default.is_(True)
            ).first()

        if policy is not None and policy.rules:
            rules = [(int(r["hours_before_start"]), int(r["refund_percent"])) for r in policy.rules]
            no_refund_hours = policy.no_refund_hours if policy.no_refund_hours is not None else 0
        else:
            business = settings.business
            rules = [(r.hours_before_start, r.refund_percent) for r in business.refund_rules]
            no_refund_hours = business.no_refund_hours

        rules.sort(key=lambda item: item[0], reverse=True)
        return rules, no_refund_hours

    def preview_refund(self, order_id: str, user: User, now: datetime = None) -> Dict[str, Any]:
        """
        退款预览

        只退活动费用，保险费不退。不可退款时 can_refund 为 False 并给出原因。
        """
        order = self.order_service.get_order(order_id, user)
        now = now or datetime.utcnow()
        activity = order.activity
        hours_before_start = (activity.start_time - now).total_seconds() / 3600

        preview = {
            "order_id": order.id,
            "can_refund": False,
            "reason": None,
            "refund_percent": 0,
            "refund_amount": Decimal("0.00"),
            "hours_before_start": round(hours_before_start, 1),
        }

        if order.status not in REFUNDABLE_STATUSES:
            preview["reason"] = "订单状态不允许退款"
            return preview
        if order.refund is not None:
            preview["reason"] = "该订单已申请过退款"
            return preview
        if order.verification is not None:
            preview["reason"] = "订单已核销，不可退款"
            return preview
        if hours_before_start <= 0:
            preview["reason"] = "活动已开始，不可退款"
            return preview

        rules, no_refund_hours = self.resolve_refund_rules(activity)
        percent = calculate_refund_percent(hours_before_start, rules, no_refund_hours)
        if percent <= 0:
            preview["reason"] = f"距活动开始不足{no_refund_hours}小时，不可退款"
            return preview

        preview["can_refund"] = True
        preview["refund_percent"] = percent
        preview["refund_amount"] = to_money(Decimal(order.amount) * percent / 100)
        return preview

    def create_refund(self, order_id: str, user: User, reason: str,
                      reason_detail: str = None, now: datetime = None) -> Refund:
        """
        申请退款

        服务端重新计算退款金额，订单进入退款中。
        """
        try:
            refund_reason = RefundReason(reason)
        except ValueError:
            raise ValidationError(f"不支持的退款原因: {reason}")

        order = self.order_service.get_order(order_id, user)
        if order.user_id != user.id:
            raise Forbidden("只能为自己的订单申请退款")

        preview = self.preview_refund(order_id, user, now)
        if not preview["can_refund"]:
            raise InvalidState(preview["reason"])

        try:
            # 与核销互斥：同一条 UPDATE 内确认订单尚未核销
            transition(
                self.db, order, OrderAction.REQUEST_REFUND,
                conditions=(~exists().where(Verification.order_id == Order.id),)
            )
            refund = Refund(
                refund_no=generate_serial_no("RF"),
                order_id=order.id,
                user_id=user.id,
                reason=refund_reason,
                reason_detail=reason_detail,
                refund_amount=preview["refund_amount"],
                refund_percent=preview["refund_percent"],
                status=RefundStatus.PENDING
            )
            self.db.add(refund)
            self.db.commit()
            self.db.refresh(refund)
        except IntegrityError:
            self.db.rollback()
            raise Conflict("该订单已申请过退款")
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"创建退款申请失败: {str(e)}")
            raise

        log_business_event(
            logger, "refund_requested",
            refund_no=refund.refund_no, order_no=order.order_no,
            refund_amount=str(refund.refund_amount), refund_percent=refund.refund_percent
        )
        NotificationService(self.db).notify(
            order.activity.club.owner_id, NotificationType.REFUND_REQUESTED,
            "新的退款申请", f"订单 {order.order_no} 申请退款 {refund.refund_amount} 元",
            {"refund_id": refund.id}
        )
        return refund

    def _get_refund(self, refund_id: str) -> Refund:
        refund = self.db.query(Refund).filter(Refund.id == refund_id).first()
        if not refund:
            raise NotFound("退款申请不存在")
        return refund

    def get_refund(self, refund_id: str, user: User) -> Refund:
        """获取退款详情：申请人、俱乐部管理员或平台管理员可见"""
        refund = self._get_refund(refund_id)
        if refund.user_id != user.id and not is_club_manager(self.db, refund.order.activity.club, user):
            raise Forbidden("无权查看该退款申请")
        return refund

    def approve_refund(self, refund_id: str, reviewer: User) -> Refund:
        """审核通过并发起退款"""
        refund = self._get_refund(refund_id)
        check_club_manager(self.db, refund.order.activity.club_id, reviewer)

        try:
            transition(
                self.db, refund, RefundAction.APPROVE,
                reviewed_by=reviewer.id,
                reviewed_at=datetime.utcnow()
            )
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise

        logger.info(f"退款 {refund.refund_no} 审核通过，审核人 {reviewer.id}")
        return self._process_refund(refund)

    def retry_refund(self, refund_id: str, reviewer: User) -> Refund:
        """网关退款失败后重新发起"""
        refund = self._get_refund(refund_id)
        check_club_manager(self.db, refund.order.activity.club_id, reviewer)
        if refund.status != RefundStatus.APPROVED:
            raise InvalidState("仅已审核通过的退款可以重新发起")
        return self._process_refund(refund)

    def _process_refund(self, refund: Refund) -> Refund:
        """调用网关退款，成功后订单变为已退款"""
        try:
            transition(self.db, refund, RefundAction.PROCESS)
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise

        order = refund.order
        try:
            result = self.gateway.refund(
                order.order_no,
                refund.refund_no,
                refund.refund_amount,
                order.total_amount,
                refund.reason_detail or refund.reason.value
            )
        except GatewayError as e:
            transition(self.db, refund, RefundAction.FAIL)
            self.db.commit()
            logger.error(f"退款 {refund.refund_no} 网关处理失败: {e.message}")
            raise

        now = datetime.utcnow()
        try:
            transition(
                self.db, refund, RefundAction.SUCCEED,
                gateway_refund_id=result.get("refund_id"),
                refunded_at=now
            )
            transition(self.db, order, OrderAction.REFUND_COMPLETE, refunded_at=now)
            order.enrollment.status = EnrollmentStatus.REFUNDED

            # 释放名额
            activity = order.activity
            if activity.status == ActivityStatus.FULL:
                activity.status = ActivityStatus.PUBLISHED

            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"退款 {refund.refund_no} 网关已受理但本地更新失败: {str(e)}")
            raise

        log_business_event(
            logger, "refund_completed",
            refund_no=refund.refund_no, order_no=order.order_no,
            refund_amount=str(refund.refund_amount)
        )
        NotificationService(self.db).notify(
            refund.user_id, NotificationType.REFUND_COMPLETED,
            "退款成功", f"订单 {order.order_no} 已退款 {refund.refund_amount} 元，将原路退回",
            {"refund_id": refund.id}
        )
        return refund

    def reject_refund(self, refund_id: str, reviewer: User, reason: str) -> Refund:
        """拒绝退款，订单回到已支付"""
        refund = self._get_refund(refund_id)
        check_club_manager(self.db, refund.order.activity.club_id, reviewer)

        try:
            transition(
                self.db, refund, RefundAction.REJECT,
                reviewed_by=reviewer.id,
                reviewed_at=datetime.utcnow(),
                reject_reason=reason
            )
            transition(self.db, refund.order, OrderAction.REFUND_REJECT)
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"拒绝退款失败: {str(e)}")
            raise

        logger.info(f"退款 {refund.refund_no} 被拒绝: {reason}")
        NotificationService(self.db).notify(
            refund.user_id, NotificationType.REFUND_REJECTED,
            "退款申请未通过", reason, {"refund_id": refund.id}
        )
        return refund

    def list_user_refunds(self, user: User, page: int = 1, size: int = 20) -> Tuple[List[Refund], int]:
        """获取用户的退款申请"""
        query = self.db.query(Refund).filter(Refund.user_id == user.id)
        total = query.count()
        refunds = query.order_by(Refund.created_at.desc()).offset((page - 1) * size).limit(size).all()
        return refunds, total

    def list_club_pending_refunds(self, club_id: str, user: User) -> List[Refund]:
        """获取俱乐部待审核的退款申请"""
        check_club_manager(self.db, club_id, user)
        return (
            self.db.query(Refund)
            .join(Order, Refund.order_id == Order.id)
            .join(Activity, Order.activity_id == Activity.id)
            .filter(Activity.club_id == club_id, Refund.status == RefundStatus.PENDING)
            .order_by(Refund.created_at.asc())
            .all()
        )
