"""
支付服务
预下单、支付确认（回调 / 主动查单 / 模拟）、支付失败回退
"""
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict

import orjson
from sqlalchemy.orm import Session

from config import is_production
from models.enrollment import EnrollmentStatus
from models.order import Order, OrderStatus, Payment, PaymentGateway, PaymentStatus
from models.user import User
from services.logger import get_logger, log_business_event
from services.notification_service import NotificationService, NotificationType
from services.order_service import OrderService
from services.payment_gateway import PaymentGatewayClient, get_payment_gateway
from services.state_machine import OrderAction, transition
from utils.exceptions import (
    BusinessException, Conflict, Forbidden, GatewayError, GatewayTimeout,
    InvalidState, NotFound, ValidationError
)

logger = get_logger("payment_service")

PAID_STATUSES = (OrderStatus.PAID, OrderStatus.COMPLETED)
# 网关返回这些状态时视为支付失败，订单回到待支付
FAILED_TRADE_STATES = ("CLOSED", "PAYERROR", "REVOKED")

NOTIFY_SUCCESS = {"code": "SUCCESS", "message": "成功"}


class PaymentService:
    """支付服务类"""

    def __init__(self, db: Session, gateway: PaymentGatewayClient = None):
        self.db = db
        self.gateway = gateway or get_payment_gateway()
        self.order_service = OrderService(db)

    def _call_gateway(self, func, *args, **kwargs):
        """调用网关，超时重试一次"""
        try:
            return func(*args, **kwargs)
        except GatewayTimeout:
            logger.warning(f"支付网关超时，重试一次: {func.__name__}")
            return func(*args, **kwargs)

    def prepay(self, order_id: str, user: User, open_id: str = None) -> Dict[str, Any]:
        """
        预下单

        订单先从待支付进入支付中，再请求网关。网关超时时订单保持支付中，
        由查单任务确认结果；网关明确失败时订单回到待支付。

        Args:
            order_id: 订单ID
            user: 当前用户
            open_id: 支付用户 openid，缺省取用户绑定的 openid

        Returns:
            dict: 订单信息与小程序调起支付参数
        """
        order = self.order_service.get_order(order_id, user)
        if order.status != OrderStatus.PENDING:
            raise InvalidState("订单状态不允许支付")
        if order.expires_at and order.expires_at < datetime.utcnow():
            raise InvalidState("订单已过期")

        open_id = open_id or user.open_id
        try:
            transition(self.db, order, OrderAction.PREPAY)
            payment = order.payment
            if payment is None:
                payment = Payment(order_id=order.id)
                self.db.add(payment)
            payment.gateway = PaymentGateway.MOCK if self.gateway.mock_mode else PaymentGateway.WECHAT
            payment.amount = order.total_amount
            payment.status = PaymentStatus.PENDING
            payment.open_id = open_id
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"预下单失败: {str(e)}")
            raise

        try:
            result = self._call_gateway(
                self.gateway.prepay,
                order.order_no,
                order.total_amount,
                f"风追活动报名-{order.activity.title}",
                open_id
            )
        except GatewayTimeout:
            logger.error(f"订单 {order.order_no} 预下单超时，保持支付中等待查单")
            raise
        except GatewayError:
            self._mark_failed(order, "预下单失败")
            raise

        pay_params = self.gateway.build_pay_params(result["prepay_id"], result["nonce_str"])
        try:
            payment.prepay_id = result["prepay_id"]
            payment.nonce_str = result["nonce_str"]
            payment.prepay_params = pay_params
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"保存预支付参数失败: {str(e)}")
            raise

        logger.info(f"订单 {order.order_no} 预下单成功")
        return {
            "order_id": order.id,
            "order_no": order.order_no,
            "total_amount": order.total_amount,
            "pay_params": pay_params,
        }

    def confirm_payment(self, order_id: str, transaction_id: str,
                        paid_at: datetime = None, notify_payload: dict = None) -> Order:
        """
        确认支付成功

        同一交易号重复确认直接返回订单，不做任何修改；
        已支付订单收到不同交易号视为冲突。
        """
        order = self.db.query(Order).filter(Order.id == order_id).first()
        if not order:
            raise NotFound("订单不存在")

        if self._already_confirmed(order, transaction_id):
            logger.info(f"订单 {order.order_no} 重复支付确认，交易号 {transaction_id}")
            return order
        if order.status in PAID_STATUSES:
            raise Conflict("订单已由其他交易支付")

        paid_at = paid_at or datetime.utcnow()
        try:
            transition(self.db, order, OrderAction.PAY_SUCCESS, paid_at=paid_at)

            payment = order.payment
            if payment is None:
                payment = Payment(order_id=order.id, amount=order.total_amount)
                self.db.add(payment)
            payment.status = PaymentStatus.SUCCESS
            payment.transaction_id = transaction_id
            payment.paid_at = paid_at
            if notify_payload is not None:
                payment.notify_payload = notify_payload

            order.enrollment.status = EnrollmentStatus.PAID
            self.db.commit()
        except InvalidState:
            self.db.rollback()
            # 并发确认：另一请求已用同一交易号完成
            self.db.refresh(order)
            if self._already_confirmed(order, transaction_id):
                return order
            raise
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"支付确认失败: {str(e)}")
            raise

        log_business_event(
            logger, "order_paid",
            order_id=order.id, order_no=order.order_no,
            transaction_id=transaction_id, total_amount=str(order.total_amount)
        )
        NotificationService(self.db).notify(
            order.user_id, NotificationType.ORDER_PAID,
            "支付成功", f"订单 {order.order_no} 支付成功，请在活动当天出示核销码",
            {"order_id": order.id}
        )
        return order

    @staticmethod
    def _already_confirmed(order: Order, transaction_id: str) -> bool:
        payment = order.payment
        return (
            order.status != OrderStatus.PAYING
            and payment is not None
            and payment.status == PaymentStatus.SUCCESS
            and payment.transaction_id == transaction_id
        )

    def _mark_failed(self, order: Order, reason: str):
        """支付失败，订单回到待支付"""
        try:
            transition(self.db, order, OrderAction.PAY_FAIL)
            if order.payment is not None:
                order.payment.status = PaymentStatus.FAILED
            self.db.commit()
            logger.warning(f"订单 {order.order_no} 支付失败: {reason}")
        except InvalidState:
            self.db.rollback()
            logger.warning(f"订单 {order.order_no} 状态已变化，忽略支付失败: {reason}")

    def handle_notify(self, body: bytes, headers: Dict[str, str]) -> Dict[str, str]:
        """
        处理支付回调

        Args:
            body: 原始请求体
            headers: 请求头（含签名信息）

        Returns:
            dict: 返回给网关的应答
        """
        if not self.gateway.verify_signature(
            body,
            headers.get("wechatpay-timestamp"),
            headers.get("wechatpay-nonce"),
            headers.get("wechatpay-signature"),
        ):
            logger.warning("支付回调签名验证失败")
            raise ValidationError("签名验证失败")

        try:
            payload = orjson.loads(body)
        except orjson.JSONDecodeError:
            raise ValidationError("回调内容格式错误")
        data = payload.get("resource") or payload

        order_no = data.get("out_trade_no")
        trade_state = data.get("trade_state")
        transaction_id = data.get("transaction_id")
        logger.info(f"收到支付回调 {order_no} {trade_state}")

        order = self.order_service.get_order_by_no(order_no) if order_no else None
        if order is None:
            logger.warning(f"支付回调订单不存在: {order_no}")
            return NOTIFY_SUCCESS

        if trade_state == "SUCCESS":
            if not transaction_id:
                raise ValidationError("回调缺少交易号")
            try:
                self.confirm_payment(order.id, transaction_id, notify_payload=data)
            except (InvalidState, Conflict) as e:
                # 已关闭订单收到支付等情况需要人工退款
                logger.error(f"订单 {order_no} 支付回调无法处理，需人工介入: {e.message}")
        elif order.status == OrderStatus.PAYING:
            self._mark_failed(order, f"网关状态 {trade_state}")

        return NOTIFY_SUCCESS

    def mock_payment_success(self, order_id: str, user: User) -> Order:
        """模拟支付成功（仅开发环境）"""
        if is_production():
            raise Forbidden("生产环境不允许模拟支付")

        order = self.order_service.get_order(order_id, user)
        if order.status in PAID_STATUSES:
            return order

        try:
            if order.status == OrderStatus.PENDING:
                transition(self.db, order, OrderAction.PREPAY)
            elif order.status != OrderStatus.PAYING:
                raise InvalidState("订单状态不允许支付")

            payment = order.payment
            if payment is None:
                payment = Payment(order_id=order.id)
                self.db.add(payment)
            payment.gateway = PaymentGateway.MOCK
            payment.amount = order.total_amount
            self.db.commit()
        except BusinessException:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"模拟支付失败: {str(e)}")
            raise

        transaction_id = f"MOCK_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6].upper()}"
        logger.info(f"[模拟支付] 订单 {order.order_no} 交易号 {transaction_id}")
        return self.confirm_payment(order.id, transaction_id)

    def sync_payment_status(self, order_id: str, user: User = None) -> Dict[str, Any]:
        """主动查单同步支付状态"""
        order = self.order_service.get_order(order_id, user)
        if order.status in PAID_STATUSES:
            return {"status": OrderStatus.PAID.value, "need_update": False}
        if order.status != OrderStatus.PAYING:
            return {"status": order.status.value, "need_update": False}

        result = self.gateway.query_order(order.order_no)
        if result is None:
            if self.gateway.mock_mode:
                return {"status": OrderStatus.PAYING.value, "need_update": False}
            # 网关无此订单，说明预下单未成功
            self._mark_failed(order, "网关无此订单")
            return {"status": OrderStatus.PENDING.value, "need_update": True}

        trade_state = result.get("trade_state")
        if trade_state == "SUCCESS":
            self.confirm_payment(order.id, result["transaction_id"], notify_payload=result)
            return {"status": OrderStatus.PAID.value, "need_update": True}
        if trade_state in FAILED_TRADE_STATES:
            self._mark_failed(order, f"网关状态 {trade_state}")
            return {"status": OrderStatus.PENDING.value, "need_update": True}
        return {"status": OrderStatus.PAYING.value, "need_update": False}

    def sync_paying_orders(self, older_than_minutes: int = 5) -> int:
        """同步长时间处于支付中的订单，返回状态有变化的数量"""
        threshold = datetime.utcnow() - timedelta(minutes=older_than_minutes)
        orders = self.db.query(Order).filter(
            Order.status == OrderStatus.PAYING,
            Order.updated_at < threshold
        ).all()

        updated = 0
        for order in orders:
            try:
                if self.sync_payment_status(order.id)["need_update"]:
                    updated += 1
            except BusinessException as e:
                logger.error(f"同步订单 {order.order_no} 支付状态失败: {e.message}")
        return updated

    def get_payment_status(self, order_id: str, user: User) -> Dict[str, Any]:
        """查询订单支付状态"""
        order = self.order_service.get_order(order_id, user)
        payment = order.payment
        return {
            "order_id": order.id,
            "order_status": order.status.value,
            "payment_status": payment.status.value if payment else None,
            "paid_at": order.paid_at,
        }

    def get_payment_detail(self, order_id: str, user: User) -> Payment:
        """获取支付记录"""
        order = self.order_service.get_order(order_id, user)
        if order.payment is None:
            raise NotFound("支付记录不存在")
        return order.payment
