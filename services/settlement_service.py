"""
结算服务
活动结束后汇总订单金额，扣除退款与平台服务费后计入俱乐部账户
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models.club import Activity, ActivityStatus
from models.finance import Settlement, SettlementStatus, TransactionType
from models.order import Order, OrderStatus, RefundStatus
from models.user import User
from services.account_service import AccountService
from services.logger import get_logger, log_business_event, performance_logger
from services.notification_service import NotificationService, NotificationType
from services.state_machine import OrderAction, transition
from services.transaction_service import TransactionService
from utils.exceptions import (
    AlreadySettled, BusinessException, InvalidState, NotFound, Precondition
)
from utils.order_utils import generate_serial_no, to_money
from utils.permission_utils import check_club_manager

logger = get_logger("settlement_service")

# 计入结算总额的订单状态，已退款订单的退款部分单独扣除
SETTLEABLE_STATUSES = (OrderStatus.PAID, OrderStatus.COMPLETED, OrderStatus.REFUNDED)


def calculate_settlement_amounts(total_amount: Decimal, refund_amount: Decimal,
                                 fee_rate: Decimal) -> Dict[str, Decimal]:
    """
    计算结算金额

    platform_fee = (total - refund) × 费率，四舍五入到分；
    settle = total - refund - platform_fee
    """
    total_amount = to_money(total_amount)
    refund_amount = to_money(refund_amount)
    net_amount = total_amount - refund_amount
    platform_fee = to_money(net_amount * Decimal(fee_rate))
    return {
        "total_amount": total_amount,
        "refund_amount": refund_amount,
        "net_amount": net_amount,
        "platform_fee": platform_fee,
        "settle_amount": net_amount - platform_fee,
    }


class SettlementService:
    """结算服务类"""

    def __init__(self, db: Session):
        self.db = db
        self.account_service = AccountService(db)
        self.transaction_service = TransactionService(db)

    def compute_settlement(self, activity_id: str) -> Settlement:
        """
        结算活动

        在一个事务内完成：生成结算单、已支付订单标记为完成、
        俱乐部账户入账、记录流水。

        Args:
            activity_id: 活动ID

        Returns:
            Settlement: 已完成的结算单
        """
        activity = self.db.query(Activity).filter(Activity.id == activity_id).first()
        if not activity:
            raise NotFound("活动不存在")
        if self.db.query(Settlement).filter(Settlement.activity_id == activity_id).first():
            raise AlreadySettled()
        if activity.status != ActivityStatus.COMPLETED:
            raise InvalidState("活动未结束，不能结算")

        refunding = self.db.query(Order).filter(
            Order.activity_id == activity_id,
            Order.status == OrderStatus.REFUNDING
        ).count()
        if refunding:
            raise Precondition(f"存在 {refunding} 笔处理中的退款，暂不能结算")

        orders = self.db.query(Order).filter(
            Order.activity_id == activity_id,
            Order.status.in_(SETTLEABLE_STATUSES)
        ).all()

        total_amount = sum((to_money(o.amount) for o in orders), Decimal("0.00"))
        completed_refunds = [
            o.refund for o in orders
            if o.refund is not None and o.refund.status == RefundStatus.COMPLETED
        ]
        refund_amount = sum((to_money(r.refund_amount) for r in completed_refunds), Decimal("0.00"))

        fee_rate = settings.business.platform_fee_rate
        amounts = calculate_settlement_amounts(total_amount, refund_amount, fee_rate)

        try:
            settlement = Settlement(
                settlement_no=generate_serial_no("ST"),
                activity_id=activity_id,
                club_id=activity.club_id,
                total_amount=amounts["total_amount"],
                refund_amount=amounts["refund_amount"],
                platform_fee=amounts["platform_fee"],
                settle_amount=amounts["settle_amount"],
                commission_detail={
                    "order_count": len(orders),
                    "refund_count": len(completed_refunds),
                    "platform_fee_rate": str(fee_rate),
                    "net_amount": str(amounts["net_amount"]),
                },
                status=SettlementStatus.PENDING
            )
            self.db.add(settlement)
            self.db.flush()

            for order in orders:
                if order.status == OrderStatus.PAID:
                    transition(self.db, order, OrderAction.COMPLETE)

            self._credit_club(settlement, activity, amounts)

            settlement.status = SettlementStatus.COMPLETED
            settlement.settled_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(settlement)

        except IntegrityError:
            self.db.rollback()
            raise AlreadySettled()
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"活动 {activity_id} 结算失败: {str(e)}")
            raise

        log_business_event(
            logger, "settlement_completed",
            settlement_no=settlement.settlement_no, activity_id=activity_id,
            total_amount=str(settlement.total_amount), refund_amount=str(settlement.refund_amount),
            platform_fee=str(settlement.platform_fee), settle_amount=str(settlement.settle_amount)
        )
        NotificationService(self.db).notify(
            activity.club.owner_id, NotificationType.SETTLEMENT_COMPLETED,
            "活动结算完成", f"活动「{activity.title}」已结算，入账 {settlement.settle_amount} 元",
            {"settlement_id": settlement.id}
        )
        return settlement

    def _credit_club(self, settlement: Settlement, activity: Activity, amounts: Dict[str, Decimal]):
        """账户入账并记录结算、服务费两条流水"""
        before, after = self.account_service.credit_settlement(activity.club_id, amounts["settle_amount"])
        after_income = before + amounts["net_amount"]

        self.transaction_service.record(
            activity.club_id, TransactionType.SETTLEMENT, amounts["net_amount"],
            before, after_income,
            description=f"活动「{activity.title}」结算收入",
            activity_id=activity.id, settlement_id=settlement.id
        )
        if amounts["platform_fee"]:
            self.transaction_service.record(
                activity.club_id, TransactionType.FEE, -amounts["platform_fee"],
                after_income, after,
                description=f"活动「{activity.title}」平台服务费",
                activity_id=activity.id, settlement_id=settlement.id
            )

    def auto_settle_activities(self, now: datetime = None) -> Dict[str, int]:
        """
        自动结算已结束一段时间的活动

        单个活动失败只记录日志，不影响其他活动。
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(hours=settings.business.settlement_delay_hours)

        with performance_logger(logger, "auto_settle_activities"):
            activities = (
                self.db.query(Activity)
                .outerjoin(Settlement, Settlement.activity_id == Activity.id)
                .filter(
                    Activity.status == ActivityStatus.COMPLETED,
                    Activity.end_time <= cutoff,
                    Settlement.id.is_(None)
                )
                .limit(settings.business.auto_settle_batch_size)
                .all()
            )

            result = {"settled": 0, "failed": 0}
            for activity in activities:
                try:
                    self.compute_settlement(activity.id)
                    result["settled"] += 1
                except BusinessException as e:
                    result["failed"] += 1
                    logger.warning(f"活动 {activity.id} 自动结算跳过: {e.message}")

        logger.info(f"自动结算完成: 成功 {result['settled']}，失败 {result['failed']}")
        return result

    def list_settlements(self, club_id: str, user: User, status: Optional[SettlementStatus] = None,
                         page: int = 1, size: int = 20) -> Tuple[List[Settlement], int]:
        """分页查询俱乐部结算单"""
        check_club_manager(self.db, club_id, user)
        query = self.db.query(Settlement).filter(Settlement.club_id == club_id)
        if status:
            query = query.filter(Settlement.status == status)
        total = query.count()
        items = query.order_by(Settlement.created_at.desc()).offset((page - 1) * size).limit(size).all()
        return items, total

    def get_settlement(self, settlement_id: str, user: User, club_id: str = None) -> Settlement:
        """获取结算单详情"""
        settlement = self.db.query(Settlement).filter(Settlement.id == settlement_id).first()
        if not settlement or (club_id and settlement.club_id != club_id):
            raise NotFound("结算单不存在")
        check_club_manager(self.db, settlement.club_id, user)
        return settlement

    def get_pending_settlement_stats(self, club_id: str, user: User) -> Dict[str, Any]:
        """待结算统计：已结束未结算活动的预计入账"""
        check_club_manager(self.db, club_id, user)

        activities = (
            self.db.query(Activity)
            .outerjoin(Settlement, Settlement.activity_id == Activity.id)
            .filter(
                Activity.club_id == club_id,
                Activity.status == ActivityStatus.COMPLETED,
                Settlement.id.is_(None)
            )
            .all()
        )
        activity_ids = [a.id for a in activities]
        total = Decimal("0.00")
        if activity_ids:
            orders = self.db.query(Order).filter(
                Order.activity_id.in_(activity_ids),
                Order.status.in_((OrderStatus.PAID, OrderStatus.COMPLETED))
            ).all()
            total = sum((to_money(o.amount) for o in orders), Decimal("0.00"))

        fee_rate = settings.business.platform_fee_rate
        return {
            "activity_count": len(activities),
            "total_amount": total,
            "estimated_amount": to_money(total * (Decimal("1") - Decimal(fee_rate))),
        }
