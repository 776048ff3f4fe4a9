"""
状态机：订单、退款、提现的状态迁移表

所有状态变化都经过 transition()，以条件更新（WHERE status = 当前状态）
实现比较并交换，并发请求中只有一个能够成功。

订单：
    PENDING   --PREPAY-->          PAYING
    PENDING   --CANCEL/EXPIRE-->   CANCELLED
    PAYING    --PAY_SUCCESS-->     PAID
    PAYING    --PAY_FAIL-->        PENDING
    PAID      --COMPLETE-->        COMPLETED
    PAID      --REQUEST_REFUND-->  REFUNDING
    COMPLETED --REQUEST_REFUND-->  REFUNDING
    REFUNDING --REFUND_COMPLETE--> REFUNDED
    REFUNDING --REFUND_REJECT-->   PAID
    CANCELLED --REOPEN-->          PENDING
"""
import enum
from typing import Dict

from sqlalchemy.orm import Session

from models.order import Order, OrderStatus, Refund, RefundStatus
from models.finance import Withdrawal, WithdrawalStatus
from services.logger import get_logger, log_business_event
from utils.exceptions import InvalidState

logger = get_logger("state_machine")


class OrderAction(str, enum.Enum):
    """订单动作"""
    PREPAY = "prepay"
    PAY_SUCCESS = "pay_success"
    PAY_FAIL = "pay_fail"
    CANCEL = "cancel"
    EXPIRE = "expire"
    REOPEN = "reopen"
    COMPLETE = "complete"
    REQUEST_REFUND = "request_refund"
    REFUND_COMPLETE = "refund_complete"
    REFUND_REJECT = "refund_reject"


class RefundAction(str, enum.Enum):
    """退款动作"""
    APPROVE = "approve"
    REJECT = "reject"
    PROCESS = "process"
    SUCCEED = "succeed"
    FAIL = "fail"


class WithdrawalAction(str, enum.Enum):
    """提现动作"""
    APPROVE = "approve"
    REJECT = "reject"
    COMPLETE = "complete"


ORDER_TRANSITIONS: Dict[OrderStatus, Dict[OrderAction, OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderAction.PREPAY: OrderStatus.PAYING,
        OrderAction.CANCEL: OrderStatus.CANCELLED,
        OrderAction.EXPIRE: OrderStatus.CANCELLED,
    },
    OrderStatus.PAYING: {
        OrderAction.PAY_SUCCESS: OrderStatus.PAID,
        OrderAction.PAY_FAIL: OrderStatus.PENDING,
    },
    OrderStatus.PAID: {
        OrderAction.COMPLETE: OrderStatus.COMPLETED,
        OrderAction.REQUEST_REFUND: OrderStatus.REFUNDING,
    },
    OrderStatus.COMPLETED: {
        OrderAction.REQUEST_REFUND: OrderStatus.REFUNDING,
    },
    OrderStatus.REFUNDING: {
        OrderAction.REFUND_COMPLETE: OrderStatus.REFUNDED,
        OrderAction.REFUND_REJECT: OrderStatus.PAID,
    },
    OrderStatus.CANCELLED: {
        OrderAction.REOPEN: OrderStatus.PENDING,
    },
    OrderStatus.REFUNDED: {},
}

REFUND_TRANSITIONS: Dict[RefundStatus, Dict[RefundAction, RefundStatus]] = {
    RefundStatus.PENDING: {
        RefundAction.APPROVE: RefundStatus.APPROVED,
        RefundAction.REJECT: RefundStatus.REJECTED,
    },
    RefundStatus.APPROVED: {
        RefundAction.PROCESS: RefundStatus.PROCESSING,
    },
    RefundStatus.PROCESSING: {
        RefundAction.SUCCEED: RefundStatus.COMPLETED,
        RefundAction.FAIL: RefundStatus.APPROVED,
    },
    RefundStatus.COMPLETED: {},
    RefundStatus.REJECTED: {},
}

WITHDRAWAL_TRANSITIONS: Dict[WithdrawalStatus, Dict[WithdrawalAction, WithdrawalStatus]] = {
    WithdrawalStatus.PENDING: {
        WithdrawalAction.APPROVE: WithdrawalStatus.APPROVED,
        WithdrawalAction.REJECT: WithdrawalStatus.REJECTED,
    },
    WithdrawalStatus.APPROVED: {
        WithdrawalAction.COMPLETE: WithdrawalStatus.COMPLETED,
    },
    WithdrawalStatus.REJECTED: {},
    WithdrawalStatus.COMPLETED: {},
}

_TABLES = {
    Order: (ORDER_TRANSITIONS, "订单"),
    Refund: (REFUND_TRANSITIONS, "退款申请"),
    Withdrawal: (WITHDRAWAL_TRANSITIONS, "提现申请"),
}


def next_status(model, current, action):
    """查表得到目标状态，不允许的动作抛出 InvalidState"""
    table, label = _TABLES[model]
    target = table.get(current, {}).get(action)
    if target is None:
        current_value = current.value if isinstance(current, enum.Enum) else current
        raise InvalidState(f"{label}当前状态为 {current_value}，不能执行 {action.value}")
    return target


def can_transition(model, current, action) -> bool:
    """判断动作在当前状态下是否允许"""
    table, _ = _TABLES[model]
    return action in table.get(current, {})


def transition(db: Session, instance, action, conditions=(), **values):
    """执行状态迁移

    以实例当前的 status 作为期望状态做条件更新，受影响行数为 0
    说明已被其他请求修改，抛出 InvalidState。成功后刷新实例。

    Args:
        db: 数据库会话
        instance: Order / Refund / Withdrawal 实例
        action: 动作
        conditions: 附加到同一条 UPDATE 的过滤条件
        **values: 同时更新的其他字段

    Returns:
        迁移后的状态
    """
    model = type(instance)
    current = instance.status
    target = next_status(model, current, action)

    # 先把调用方已做的修改写入，避免 refresh 时丢失
    db.flush()

    updates = {model.status: target}
    for key, value in values.items():
        updates[getattr(model, key)] = value

    rows = (
        db.query(model)
        .filter(model.id == instance.id, model.status == current, *conditions)
        .update(updates, synchronize_session=False)
    )
    if rows == 0:
        db.refresh(instance)
        logger.warning(
            f"{model.__name__} {instance.id} 状态迁移冲突: 期望 {current.value}，实际 {instance.status.value}"
        )
        raise InvalidState(f"{_TABLES[model][1]}状态已变更，请刷新后重试")

    db.refresh(instance)
    log_business_event(
        logger,
        "status_transition",
        entity=model.__name__,
        entity_id=instance.id,
        action=action.value,
        from_status=current.value,
        to_status=target.value
    )
    return target
