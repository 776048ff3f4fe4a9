"""
订单服务
处理下单、取消、过期关闭、核销码查询
"""
import math
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import settings
from models.club import Activity
from models.enrollment import Enrollment, EnrollmentStatus
from models.order import Order, OrderStatus
from models.user import User
from services.logger import get_logger, log_business_event, performance_logger
from services.notification_service import NotificationService, NotificationType
from services.state_machine import OrderAction, transition
from utils.exceptions import BusinessException, Conflict, Forbidden, InvalidState, NotFound
from utils.order_utils import generate_order_no, generate_verify_code, to_money

logger = get_logger("order_service")

# 可以出示核销码的订单状态
VERIFIABLE_STATUSES = (OrderStatus.PAID, OrderStatus.COMPLETED)


class OrderService:
    """订单服务类"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def calculate_insurance_fee(activity: Activity) -> Decimal:
        """保险费 = 每日单价 × 活动天数（不足一天按一天）"""
        product = activity.insurance_product
        if product is None:
            return Decimal("0.00")
        seconds = (activity.end_time - activity.start_time).total_seconds()
        days = max(1, math.ceil(seconds / 86400))
        return to_money(Decimal(product.price_per_day) * days)

    def create_order(self, user: User, enrollment_id: str, insured_name: str,
                     insured_phone: str, insured_id_card: str = None) -> Order:
        """
        为报名创建订单

        同一报名只能有一个订单；订单已取消时重新打开原订单，金额不变。

        Args:
            user: 当前用户
            enrollment_id: 报名ID
            insured_name: 投保人姓名
            insured_phone: 投保人电话
            insured_id_card: 投保人证件号

        Returns:
            Order: 待支付订单
        """
        enrollment = self.db.query(Enrollment).filter(Enrollment.id == enrollment_id).first()
        if not enrollment:
            raise NotFound("报名记录不存在")
        if enrollment.user_id != user.id:
            raise Forbidden("无权为该报名下单")
        if enrollment.status != EnrollmentStatus.PENDING:
            raise InvalidState("报名状态不允许下单")

        expires_at = datetime.utcnow() + timedelta(minutes=settings.business.order_timeout_minutes)

        existing = enrollment.order
        if existing is not None:
            if existing.status != OrderStatus.CANCELLED:
                raise Conflict("该报名已有订单")
            return self._reopen_order(existing, expires_at, insured_name, insured_phone, insured_id_card)

        try:
            insurance_fee = self.calculate_insurance_fee(enrollment.activity)
            amount = to_money(enrollment.amount)
            order_id = str(uuid.uuid4())

            order = Order(
                id=order_id,
                order_no=generate_order_no(),
                user_id=user.id,
                activity_id=enrollment.activity_id,
                enrollment_id=enrollment.id,
                insured_name=insured_name,
                insured_phone=insured_phone,
                insured_id_card=insured_id_card,
                amount=amount,
                insurance_fee=insurance_fee,
                total_amount=amount + insurance_fee,
                status=OrderStatus.PENDING,
                verify_code=generate_verify_code(order_id),
                expires_at=expires_at
            )
            self.db.add(order)
            self.db.commit()
            self.db.refresh(order)

            log_business_event(
                logger, "order_created",
                order_id=order.id, order_no=order.order_no, total_amount=str(order.total_amount)
            )
            return order

        except IntegrityError:
            self.db.rollback()
            raise Conflict("该报名已有订单")
        except Exception as e:
            self.db.rollback()
            logger.error(f"创建订单失败: {str(e)}")
            raise

    def _reopen_order(self, order: Order, expires_at: datetime, insured_name: str,
                      insured_phone: str, insured_id_card: str = None) -> Order:
        """重新打开已取消的订单"""
        try:
            transition(
                self.db, order, OrderAction.REOPEN,
                expires_at=expires_at,
                cancelled_at=None,
                insured_name=insured_name,
                insured_phone=insured_phone,
                insured_id_card=insured_id_card
            )
            self.db.commit()
            logger.info(f"订单 {order.order_no} 重新打开")
            return order
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"重新打开订单失败: {str(e)}")
            raise

    def get_order(self, order_id: str, user: User = None) -> Order:
        """获取订单，传入 user 时校验归属（管理员除外）"""
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFound("订单不存在")
        if user is not None and order.user_id != user.id and not user.is_admin:
            raise Forbidden("无权访问该订单")
        return order

    def get_order_by_no(self, order_no: str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.order_no == order_no).first()

    def list_orders(self, user: User, status: Optional[OrderStatus] = None,
                    activity_id: Optional[str] = None, page: int = 1,
                    size: int = 20) -> Tuple[List[Order], int]:
        """分页获取用户订单"""
        query = self.db.query(Order).filter(Order.user_id == user.id)
        if status:
            query = query.filter(Order.status == status)
        if activity_id:
            query = query.filter(Order.activity_id == activity_id)

        total = query.count()
        orders = query.order_by(Order.created_at.desc()).offset((page - 1) * size).limit(size).all()
        return orders, total

    def cancel_order(self, order_id: str, user: User) -> Order:
        """
        取消订单，仅待支付订单可取消

        报名保持待支付状态，用户可以重新下单。
        """
        order = self.get_order(order_id, user)
        try:
            transition(self.db, order, OrderAction.CANCEL, cancelled_at=datetime.utcnow())
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"取消订单失败: {str(e)}")
            raise

        logger.info(f"用户 {user.id} 取消订单 {order.order_no}")
        NotificationService(self.db).notify(
            order.user_id, NotificationType.ORDER_CANCELLED,
            "订单已取消", f"订单 {order.order_no} 已取消"
        )
        return order

    def get_verify_code(self, order_id: str, user: User) -> dict:
        """获取核销码，仅已支付订单可查看"""
        order = self.get_order(order_id, user)
        if order.status not in VERIFIABLE_STATUSES:
            raise InvalidState("订单未支付，暂无核销码")
        return {
            "order_id": order.id,
            "order_no": order.order_no,
            "verify_code": order.verify_code,
            "verified": order.verification is not None,
        }

    def cancel_expired_orders(self, now: datetime = None) -> int:
        """
        关闭超时未支付的订单

        逐单条件更新，已被支付或取消的订单会被跳过。

        Returns:
            int: 关闭的订单数量
        """
        now = now or datetime.utcnow()
        with performance_logger(logger, "cancel_expired_orders"):
            expired = self.db.query(Order).filter(
                Order.status == OrderStatus.PENDING,
                Order.expires_at.isnot(None),
                Order.expires_at < now
            ).all()

            cancelled = 0
            for order in expired:
                try:
                    transition(self.db, order, OrderAction.EXPIRE, cancelled_at=now)
                    self.db.commit()
                    cancelled += 1
                except InvalidState:
                    self.db.rollback()
                    logger.info(f"订单 {order.order_no} 状态已变化，跳过过期关闭")

        if cancelled:
            logger.info(f"已关闭 {cancelled} 个超时订单")
        return cancelled
