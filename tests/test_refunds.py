"""
退款模块测试
"""
from decimal import Decimal

import httpx
import pytest

from config import settings
from models.club import ActivityStatus, ClubRole, RefundPolicy
from models.enrollment import EnrollmentStatus
from models.order import OrderStatus, RefundStatus, Verification
from services.payment_gateway import PaymentGatewayClient
from services.refund_service import RefundService, calculate_refund_percent
from services.verification_service import VerificationService
from utils.exceptions import Forbidden, GatewayError, InvalidState, ValidationError

DEFAULT_RULES = [(168, 100), (72, 70), (24, 30)]


@pytest.mark.parametrize("hours, expected", [
    (200, 100),
    (168, 100),
    (120, 70),
    (72, 70),
    (48, 30),
    (24, 30),
    (23.9, 0),
    (1, 0),
])
def test_calculate_refund_percent(hours, expected):
    """测试默认退款档位"""
    assert calculate_refund_percent(hours, DEFAULT_RULES, 24) == expected


def test_preview_refund_five_days_before(db, user, make_activity, make_paid_order):
    """测试距开始 5 天退 70%"""
    activity = make_activity(price="200.00", days_until_start=5)
    order = make_paid_order(user, activity)

    preview = RefundService(db).preview_refund(order.id, user)

    assert preview["can_refund"] is True
    assert preview["refund_percent"] == 70
    assert preview["refund_amount"] == Decimal("140.00")


def test_preview_refund_excludes_insurance(db, user, make_activity, insurance, make_paid_order):
    """测试保险费不退"""
    activity = make_activity(price="200.00", days_until_start=10, insurance_product_id=insurance.id)
    order = make_paid_order(user, activity)
    assert order.total_amount == Decimal("205.00")

    preview = RefundService(db).preview_refund(order.id, user)

    assert preview["refund_percent"] == 100
    assert preview["refund_amount"] == Decimal("200.00")


def test_preview_refund_too_late(db, user, make_activity, make_paid_order):
    """测试活动开始前 24 小时内不可退款"""
    activity = make_activity(days_until_start=0.5)
    order = make_paid_order(user, activity)

    preview = RefundService(db).preview_refund(order.id, user)

    assert preview["can_refund"] is False
    assert preview["refund_amount"] == Decimal("0.00")
    with pytest.raises(InvalidState):
        RefundService(db).create_refund(order.id, user, "personal")


def test_preview_refund_unpaid(db, user, activity, make_order):
    """测试未支付订单不可退款"""
    order = make_order(user, activity)

    preview = RefundService(db).preview_refund(order.id, user)

    assert preview["can_refund"] is False
    assert preview["reason"] == "订单状态不允许退款"


def test_activity_policy_takes_precedence(db, club, user, make_activity, make_paid_order):
    """测试活动指定的退款政策优先于俱乐部默认政策"""
    club_default = RefundPolicy(
        club_id=club.id, name="俱乐部默认", is_default=True, no_refund_hours=24,
        rules=[{"hours_before_start": 24, "refund_percent": 90}]
    )
    special = RefundPolicy(
        club_id=club.id, name="雪山线路", no_refund_hours=12,
        rules=[{"hours_before_start": 48, "refund_percent": 50}]
    )
    db.add_all([club_default, special])
    db.commit()

    activity = make_activity(days_until_start=5, refund_policy_id=special.id)
    order = make_paid_order(user, activity)

    assert RefundService(db).preview_refund(order.id, user)["refund_percent"] == 50


def test_club_default_policy(db, club, user, make_activity, make_paid_order):
    """测试使用俱乐部默认退款政策"""
    db.add(RefundPolicy(
        club_id=club.id, name="俱乐部默认", is_default=True, no_refund_hours=24,
        rules=[{"hours_before_start": 24, "refund_percent": 90}]
    ))
    db.commit()

    activity = make_activity(days_until_start=5)
    order = make_paid_order(user, activity)

    assert RefundService(db).preview_refund(order.id, user)["refund_percent"] == 90


def test_create_refund(db, user, make_activity, make_paid_order):
    """测试申请退款"""
    activity = make_activity(days_until_start=5)
    order = make_paid_order(user, activity)

    refund = RefundService(db).create_refund(order.id, user, "schedule", "临时加班")

    assert refund.status == RefundStatus.PENDING
    assert refund.refund_amount == Decimal("140.00")
    assert refund.refund_percent == 70
    assert refund.refund_no.startswith("RF")
    db.refresh(order)
    assert order.status == OrderStatus.REFUNDING


def test_create_refund_invalid_reason(db, user, activity, make_paid_order):
    """测试不支持的退款原因"""
    order = make_paid_order(user, activity)

    with pytest.raises(ValidationError):
        RefundService(db).create_refund(order.id, user, "no-reason")


def test_create_refund_twice(db, user, activity, make_paid_order):
    """测试重复申请退款"""
    order = make_paid_order(user, activity)
    RefundService(db).create_refund(order.id, user, "personal")

    with pytest.raises(InvalidState):
        RefundService(db).create_refund(order.id, user, "personal")


def test_verified_order_cannot_refund(db, club, owner, user, activity, make_paid_order):
    """测试已核销订单不可退款"""
    order = make_paid_order(user, activity)
    VerificationService(db).verify_order(order.verify_code, owner)

    preview = RefundService(db).preview_refund(order.id, user)

    assert preview["can_refund"] is False
    assert preview["reason"] == "订单已核销，不可退款"


def test_refund_after_concurrent_verification(db, other_session, owner, user, make_activity,
                                              make_paid_order, monkeypatch):
    """测试预览之后订单被其他请求核销时退款申请失败"""
    order = make_paid_order(user, make_activity(days_until_start=5))
    order_id, owner_id = order.id, owner.id
    service = RefundService(db)
    preview_refund = service.preview_refund

    def preview_then_verify(*args, **kwargs):
        preview = preview_refund(*args, **kwargs)
        other_session.add(Verification(order_id=order_id, verified_by=owner_id))
        other_session.commit()
        return preview

    monkeypatch.setattr(service, "preview_refund", preview_then_verify)

    with pytest.raises(InvalidState):
        service.create_refund(order_id, user, "personal")

    db.expire_all()
    assert order.status == OrderStatus.PAID
    assert order.refund is None
    assert order.verification is not None


def test_approve_refund(db, owner, user, make_activity, make_paid_order):
    """测试审核通过后原路退款"""
    activity = make_activity(days_until_start=5, max_people=1)
    order = make_paid_order(user, activity)
    db.refresh(activity)
    assert activity.status == ActivityStatus.FULL
    refund = RefundService(db).create_refund(order.id, user, "health")

    approved = RefundService(db).approve_refund(refund.id, owner)

    assert approved.status == RefundStatus.COMPLETED
    assert approved.reviewed_by == owner.id
    assert approved.gateway_refund_id == f"MOCK_REFUND_{refund.refund_no}"
    assert approved.refunded_at is not None
    db.expire_all()
    assert order.status == OrderStatus.REFUNDED
    assert order.enrollment.status == EnrollmentStatus.REFUNDED
    assert activity.status == ActivityStatus.PUBLISHED


def test_approve_refund_by_club_admin(db, club, make_user, add_member, user, activity, make_paid_order):
    """测试俱乐部管理员可以审核退款，领队不可以"""
    club_admin = make_user("管理员")
    leader = make_user("领队")
    add_member(club, club_admin, ClubRole.ADMIN)
    add_member(club, leader, ClubRole.LEADER)
    order = make_paid_order(user, activity)
    refund = RefundService(db).create_refund(order.id, user, "personal")

    with pytest.raises(Forbidden):
        RefundService(db).approve_refund(refund.id, leader)

    assert RefundService(db).approve_refund(refund.id, club_admin).status == RefundStatus.COMPLETED


def test_reject_refund(db, owner, user, activity, make_paid_order):
    """测试拒绝退款后订单回到已支付，且不能再次申请"""
    order = make_paid_order(user, activity)
    refund = RefundService(db).create_refund(order.id, user, "personal")

    rejected = RefundService(db).reject_refund(refund.id, owner, "活动前一天不退")

    assert rejected.status == RefundStatus.REJECTED
    assert rejected.reject_reason == "活动前一天不退"
    db.refresh(order)
    assert order.status == OrderStatus.PAID

    with pytest.raises(InvalidState):
        RefundService(db).create_refund(order.id, user, "personal")


def test_reject_completed_refund(db, owner, user, activity, make_paid_order):
    """测试已完成的退款不能拒绝"""
    order = make_paid_order(user, activity)
    refund = RefundService(db).create_refund(order.id, user, "personal")
    RefundService(db).approve_refund(refund.id, owner)

    with pytest.raises(InvalidState):
        RefundService(db).reject_refund(refund.id, owner, "重复操作")


def test_refund_gateway_failure_and_retry(db, owner, user, activity, make_paid_order):
    """测试网关退款失败后保持已审核，重试成功"""
    order = make_paid_order(user, activity)
    refund = RefundService(db).create_refund(order.id, user, "weather")

    def handler(request):
        return httpx.Response(500, json={"message": "余额不足"})

    config = settings.payment.model_copy(update={"mch_id": "1900000001", "api_key": "test-key"})
    failing = PaymentGatewayClient(config, transport=httpx.MockTransport(handler))

    with pytest.raises(GatewayError):
        RefundService(db, gateway=failing).approve_refund(refund.id, owner)

    db.expire_all()
    assert refund.status == RefundStatus.APPROVED
    assert order.status == OrderStatus.REFUNDING

    retried = RefundService(db).retry_refund(refund.id, owner)
    assert retried.status == RefundStatus.COMPLETED
    db.refresh(order)
    assert order.status == OrderStatus.REFUNDED


def test_list_club_pending_refunds(db, club, owner, make_user, activity, make_paid_order):
    """测试俱乐部待审核退款列表"""
    first = make_paid_order(make_user(), activity)
    second_user = make_user()
    second = make_paid_order(second_user, activity)
    RefundService(db).create_refund(first.id, first.user, "personal")
    refund = RefundService(db).create_refund(second.id, second_user, "personal")
    RefundService(db).reject_refund(refund.id, owner, "不符合规则")

    pending = RefundService(db).list_club_pending_refunds(club.id, owner)

    assert [r.order_id for r in pending] == [first.id]
