"""
结算模块测试
"""
from decimal import Decimal

import pytest

from models.finance import ClubAccount, FinanceTransaction, SettlementStatus, TransactionType
from models.order import OrderStatus
from services.payment_service import PaymentService
from services.refund_service import RefundService
from services.settlement_service import SettlementService, calculate_settlement_amounts
from utils.exceptions import AlreadySettled, InvalidState, Precondition


def test_calculate_settlement_amounts():
    """测试结算金额计算"""
    amounts = calculate_settlement_amounts(Decimal("200"), Decimal("140"), Decimal("0.05"))

    assert amounts["net_amount"] == Decimal("60.00")
    assert amounts["platform_fee"] == Decimal("3.00")
    assert amounts["settle_amount"] == Decimal("57.00")


def test_calculate_settlement_rounding():
    """测试服务费四舍五入到分"""
    amounts = calculate_settlement_amounts(Decimal("99.90"), Decimal("0"), Decimal("0.05"))

    assert amounts["platform_fee"] == Decimal("5.00")  # 4.995 -> 5.00
    assert amounts["settle_amount"] == Decimal("94.90")


@pytest.fixture
def settled_scenario(db, club, owner, make_user, make_activity, make_paid_order):
    """一笔正常订单 + 一笔退款 70% 的订单"""
    activity = make_activity(price="200.00", days_until_start=5)
    kept = make_paid_order(make_user(), activity)
    refunded_user = make_user()
    refunded = make_paid_order(refunded_user, activity)
    refund = RefundService(db).create_refund(refunded.id, refunded_user, "personal")
    RefundService(db).approve_refund(refund.id, owner)
    return activity, kept, refunded


def test_compute_settlement(db, club, settled_scenario, finish_activity):
    """测试活动结算：金额、订单状态、账户余额、流水"""
    activity, kept, refunded = settled_scenario
    finish_activity(activity)

    settlement = SettlementService(db).compute_settlement(activity.id)

    assert settlement.status == SettlementStatus.COMPLETED
    assert settlement.settlement_no.startswith("ST")
    assert settlement.total_amount == Decimal("400.00")
    assert settlement.refund_amount == Decimal("140.00")
    assert settlement.platform_fee == Decimal("13.00")
    assert settlement.settle_amount == Decimal("247.00")
    assert settlement.settled_at is not None

    db.expire_all()
    assert kept.status == OrderStatus.COMPLETED
    assert refunded.status == OrderStatus.REFUNDED

    account = db.query(ClubAccount).filter(ClubAccount.club_id == club.id).one()
    assert account.balance == Decimal("247.00")
    assert account.total_income == Decimal("247.00")

    transactions = {
        t.type: t for t in db.query(FinanceTransaction).filter(FinanceTransaction.club_id == club.id)
    }
    income = transactions[TransactionType.SETTLEMENT]
    fee = transactions[TransactionType.FEE]
    assert (income.amount, income.balance_before, income.balance_after) == (
        Decimal("260.00"), Decimal("0.00"), Decimal("260.00")
    )
    assert (fee.amount, fee.balance_before, fee.balance_after) == (
        Decimal("-13.00"), Decimal("260.00"), Decimal("247.00")
    )


def account_snapshot(db, club):
    db.expire_all()
    account = db.query(ClubAccount).filter(ClubAccount.club_id == club.id).one()
    ledger = db.query(FinanceTransaction).filter(FinanceTransaction.club_id == club.id).count()
    return account.balance, account.total_income, ledger


def test_settle_twice(db, club, settled_scenario, finish_activity):
    """测试同一活动不能重复结算，账户与流水不变"""
    activity, _, _ = settled_scenario
    finish_activity(activity)
    SettlementService(db).compute_settlement(activity.id)
    before = account_snapshot(db, club)

    with pytest.raises(AlreadySettled):
        SettlementService(db).compute_settlement(activity.id)

    assert account_snapshot(db, club) == before
    assert before == (Decimal("247.00"), Decimal("247.00"), 2)


def test_settle_unfinished_activity(db, user, activity, make_paid_order):
    """测试未结束的活动不能结算"""
    make_paid_order(user, activity)

    with pytest.raises(InvalidState):
        SettlementService(db).compute_settlement(activity.id)


def test_settle_with_pending_refund(db, user, make_activity, make_paid_order, finish_activity):
    """测试存在处理中的退款时不能结算"""
    activity = make_activity(days_until_start=5)
    order = make_paid_order(user, activity)
    RefundService(db).create_refund(order.id, user, "personal")
    finish_activity(activity)

    with pytest.raises(Precondition):
        SettlementService(db).compute_settlement(activity.id)


def test_auto_settle(db, user, make_activity, make_paid_order, finish_activity):
    """测试自动结算已结束超过等待期的活动"""
    finished = make_activity(title="已结束")
    make_paid_order(user, finished)
    finish_activity(finished)
    make_activity(title="未开始")

    result = SettlementService(db).auto_settle_activities()

    assert result == {"settled": 1, "failed": 0}
    assert SettlementService(db).auto_settle_activities() == {"settled": 0, "failed": 0}


def test_pending_settlement_stats(db, club, owner, user, activity, make_paid_order, finish_activity):
    """测试待结算统计"""
    make_paid_order(user, activity)
    finish_activity(activity)

    stats = SettlementService(db).get_pending_settlement_stats(club.id, owner)

    assert stats["activity_count"] == 1
    assert stats["total_amount"] == Decimal("200.00")
    assert stats["estimated_amount"] == Decimal("190.00")


def test_list_settlements(db, club, owner, settled_scenario, finish_activity):
    """测试结算记录查询"""
    activity, _, _ = settled_scenario
    finish_activity(activity)
    settlement = SettlementService(db).compute_settlement(activity.id)

    items, total = SettlementService(db).list_settlements(club.id, owner)
    assert total == 1
    assert items[0].id == settlement.id
    assert SettlementService(db).get_settlement(settlement.id, owner, club.id).activity_id == activity.id


def test_order_to_settlement_scenario(db, club, owner, user, make_activity, insurance, make_order,
                                      finish_activity):
    """测试从下单到结算的完整金额链路：保险费不参与退款与结算"""
    activity = make_activity(price="200.00", days_until_start=5, duration_hours=80,
                             insurance_product_id=insurance.id)
    order = make_order(user, activity)
    assert order.insurance_fee == Decimal("20.00")
    assert order.total_amount == Decimal("220.00")

    payments = PaymentService(db)
    payments.prepay(order.id, user)
    paid_at = payments.confirm_payment(order.id, "tx1").paid_at
    again = payments.confirm_payment(order.id, "tx1")
    assert again.status == OrderStatus.PAID
    assert again.paid_at == paid_at

    preview = RefundService(db).preview_refund(order.id, user)
    assert preview["refund_percent"] == 70
    assert preview["refund_amount"] == Decimal("140.00")
    refund = RefundService(db).create_refund(order.id, user, "personal")
    RefundService(db).approve_refund(refund.id, owner)

    finish_activity(activity)
    settlement = SettlementService(db).compute_settlement(activity.id)

    assert settlement.total_amount == Decimal("200.00")
    assert settlement.refund_amount == Decimal("140.00")
    assert settlement.platform_fee == Decimal("3.00")
    assert settlement.settle_amount == Decimal("57.00")
