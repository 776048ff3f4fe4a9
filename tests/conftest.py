"""
测试公共夹具
内存 sqlite + 模拟支付网关
"""
import os
import tempfile

# 必须在导入应用模块之前设置
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_ENV"] = "testing"
os.environ["WECHAT_MCH_ID"] = ""
os.environ["WECHAT_API_KEY"] = ""
os.environ["CONSOLE_LOG_LEVEL"] = "WARNING"
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "fengzhui_test_logs"))

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from auth.auth_handler import AuthHandler
from main import app
from models import SessionLocal
from models.database import create_tables, drop_tables
from models.club import Activity, ActivityStatus, Club, ClubMember, ClubRole, InsuranceProduct
from models.finance import ClubAccount
from models.user import User
from services.enrollment_service import EnrollmentService
from services.order_service import OrderService
from services.payment_service import PaymentService


@pytest.fixture
def db():
    """每个测试使用全新的表结构"""
    create_tables()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        drop_tables()


@pytest.fixture
def other_session(db):
    """另一个请求的会话，用于构造并发写入"""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(nickname: str = None, role: str = "user", **kwargs) -> User:
        counter["n"] += 1
        user = User(
            nickname=nickname or f"用户{counter['n']}",
            phone=f"1380000{counter['n']:04d}",
            open_id=f"openid_{counter['n']}",
            role=role,
            **kwargs
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def user(make_user):
    return make_user("小明")


@pytest.fixture
def admin(make_user):
    return make_user("平台管理员", role="admin")


@pytest.fixture
def owner(make_user):
    return make_user("俱乐部主理人")


@pytest.fixture
def club(db, owner):
    club = Club(name="风追户外俱乐部", owner_id=owner.id)
    db.add(club)
    db.commit()
    db.refresh(club)
    return club


@pytest.fixture
def add_member(db):
    def _add_member(club: Club, user: User, role: ClubRole) -> ClubMember:
        member = ClubMember(club_id=club.id, user_id=user.id, role=role)
        db.add(member)
        db.commit()
        return member

    return _add_member


@pytest.fixture
def make_activity(db, club):
    def _make_activity(price="200.00", days_until_start: float = 10, duration_hours: float = 8,
                       status=ActivityStatus.PUBLISHED, **kwargs) -> Activity:
        start = datetime.utcnow() + timedelta(days=days_until_start)
        activity = Activity(
            club_id=kwargs.pop("club_id", club.id),
            title=kwargs.pop("title", "四姑娘山二峰攀登"),
            start_time=start,
            end_time=start + timedelta(hours=duration_hours),
            price=Decimal(price),
            status=status,
            **kwargs
        )
        db.add(activity)
        db.commit()
        db.refresh(activity)
        return activity

    return _make_activity


@pytest.fixture
def activity(make_activity):
    return make_activity()


@pytest.fixture
def insurance(db):
    product = InsuranceProduct(name="户外意外险", price_per_day=Decimal("5.00"))
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def make_order(db):
    """报名并下单，返回待支付订单"""
    def _make_order(user: User, activity: Activity):
        enrollment = EnrollmentService(db).create_enrollment(user, activity.id, "张三", "13800138000")
        return OrderService(db).create_order(user, enrollment.id, "张三", "13800138000")

    return _make_order


@pytest.fixture
def make_paid_order(db, make_order):
    """下单并模拟支付成功"""
    def _make_paid_order(user: User, activity: Activity):
        order = make_order(user, activity)
        return PaymentService(db).mock_payment_success(order.id, user)

    return _make_paid_order


@pytest.fixture
def fund_account(db):
    """直接设置俱乐部账户余额"""
    def _fund_account(club: Club, balance: str, bank_account: str = "6222021234567890") -> ClubAccount:
        account = ClubAccount(
            club_id=club.id,
            balance=Decimal(balance),
            frozen_balance=Decimal("0"),
            total_income=Decimal(balance),
            total_withdraw=Decimal("0"),
            bank_name="招商银行" if bank_account else None,
            bank_account=bank_account,
            account_name="风追户外" if bank_account else None
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _fund_account


@pytest.fixture
def auth_headers():
    handler = AuthHandler()

    def _auth_headers(user: User) -> dict:
        token = handler.issue_token(user)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def finish_activity(db):
    """把活动置为已结束（开始与结束时间移到过去）"""
    def _finish_activity(activity: Activity) -> Activity:
        activity.start_time = datetime.utcnow() - timedelta(days=3)
        activity.end_time = datetime.utcnow() - timedelta(days=2)
        activity.status = ActivityStatus.COMPLETED
        db.commit()
        db.refresh(activity)
        return activity

    return _finish_activity
