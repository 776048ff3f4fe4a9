"""
状态机测试
"""
import pytest

from models.finance import Withdrawal, WithdrawalStatus
from models.order import Order, OrderStatus, Refund, RefundStatus
from services.state_machine import (
    OrderAction, RefundAction, WithdrawalAction,
    can_transition, next_status, transition
)
from utils.exceptions import InvalidState


@pytest.mark.parametrize("current, action, expected", [
    (OrderStatus.PENDING, OrderAction.PREPAY, OrderStatus.PAYING),
    (OrderStatus.PENDING, OrderAction.CANCEL, OrderStatus.CANCELLED),
    (OrderStatus.PENDING, OrderAction.EXPIRE, OrderStatus.CANCELLED),
    (OrderStatus.PAYING, OrderAction.PAY_SUCCESS, OrderStatus.PAID),
    (OrderStatus.PAYING, OrderAction.PAY_FAIL, OrderStatus.PENDING),
    (OrderStatus.PAID, OrderAction.COMPLETE, OrderStatus.COMPLETED),
    (OrderStatus.PAID, OrderAction.REQUEST_REFUND, OrderStatus.REFUNDING),
    (OrderStatus.COMPLETED, OrderAction.REQUEST_REFUND, OrderStatus.REFUNDING),
    (OrderStatus.REFUNDING, OrderAction.REFUND_COMPLETE, OrderStatus.REFUNDED),
    (OrderStatus.REFUNDING, OrderAction.REFUND_REJECT, OrderStatus.PAID),
    (OrderStatus.CANCELLED, OrderAction.REOPEN, OrderStatus.PENDING),
])
def test_order_transitions(current, action, expected):
    """测试订单允许的状态迁移"""
    assert next_status(Order, current, action) == expected
    assert can_transition(Order, current, action)


@pytest.mark.parametrize("current, action", [
    (OrderStatus.PENDING, OrderAction.PAY_SUCCESS),
    (OrderStatus.CANCELLED, OrderAction.PAY_SUCCESS),
    (OrderStatus.PAID, OrderAction.CANCEL),
    (OrderStatus.PAYING, OrderAction.CANCEL),
    (OrderStatus.REFUNDED, OrderAction.REQUEST_REFUND),
    (OrderStatus.REFUNDING, OrderAction.COMPLETE),
])
def test_order_illegal_transitions(current, action):
    """测试订单不允许的状态迁移"""
    assert not can_transition(Order, current, action)
    with pytest.raises(InvalidState):
        next_status(Order, current, action)


def test_refund_transitions():
    """测试退款状态迁移"""
    assert next_status(Refund, RefundStatus.PENDING, RefundAction.APPROVE) == RefundStatus.APPROVED
    assert next_status(Refund, RefundStatus.PENDING, RefundAction.REJECT) == RefundStatus.REJECTED
    assert next_status(Refund, RefundStatus.APPROVED, RefundAction.PROCESS) == RefundStatus.PROCESSING
    assert next_status(Refund, RefundStatus.PROCESSING, RefundAction.SUCCEED) == RefundStatus.COMPLETED
    # 网关失败回到已审核，可以重试
    assert next_status(Refund, RefundStatus.PROCESSING, RefundAction.FAIL) == RefundStatus.APPROVED

    with pytest.raises(InvalidState):
        next_status(Refund, RefundStatus.COMPLETED, RefundAction.PROCESS)
    with pytest.raises(InvalidState):
        next_status(Refund, RefundStatus.REJECTED, RefundAction.APPROVE)


def test_withdrawal_transitions():
    """测试提现状态迁移"""
    assert next_status(Withdrawal, WithdrawalStatus.PENDING, WithdrawalAction.APPROVE) == WithdrawalStatus.APPROVED
    assert next_status(Withdrawal, WithdrawalStatus.APPROVED, WithdrawalAction.COMPLETE) == WithdrawalStatus.COMPLETED
    assert not can_transition(Withdrawal, WithdrawalStatus.PENDING, WithdrawalAction.COMPLETE)
    assert not can_transition(Withdrawal, WithdrawalStatus.APPROVED, WithdrawalAction.REJECT)


def test_transition_updates_row(db, user, activity, make_order):
    """测试迁移写入数据库并刷新实例"""
    order = make_order(user, activity)

    result = transition(db, order, OrderAction.PREPAY)
    db.commit()

    assert result == OrderStatus.PAYING
    assert order.status == OrderStatus.PAYING
    stored = db.query(Order.status).filter(Order.id == order.id).scalar()
    assert stored == OrderStatus.PAYING


def test_transition_detects_stale_status(db, user, activity, make_order):
    """测试其他请求已修改状态时条件更新失败"""
    order = make_order(user, activity)

    # 绕过 ORM 修改数据库中的状态，内存中的实例仍为 PENDING
    db.query(Order).filter(Order.id == order.id).update(
        {Order.status: OrderStatus.CANCELLED}, synchronize_session=False
    )

    with pytest.raises(InvalidState):
        transition(db, order, OrderAction.PREPAY)

    assert order.status == OrderStatus.CANCELLED


def test_transition_writes_extra_values(db, user, activity, make_order):
    """测试迁移时同时更新其他字段"""
    order = make_order(user, activity)

    transition(db, order, OrderAction.CANCEL, cancelled_at=order.created_at)
    db.commit()

    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_at is not None
