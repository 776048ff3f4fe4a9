"""
接口集成测试
报名 → 下单 → 支付回调 → 核销 → 结算 → 提现 的完整流程
"""
import orjson
import pytest

pytestmark = pytest.mark.integration


def test_health(client):
    """测试健康检查"""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"


def test_requires_auth(client):
    """测试未登录访问"""
    response = client.get("/api/orders/")
    assert response.status_code in (401, 403)


def test_invalid_token(client):
    """测试无效令牌"""
    response = client.get("/api/orders/", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401
    assert response.json()["error"] == "HTTPException"


def test_disabled_user(db, client, user, auth_headers):
    """测试被禁用的账户"""
    headers = auth_headers(user)
    user.is_active = False
    db.commit()

    response = client.get("/api/orders/", headers=headers)
    assert response.status_code == 401


def test_not_found_error_format(client, user, auth_headers):
    """测试业务异常的响应格式"""
    response = client.get("/api/orders/not-exist", headers=auth_headers(user))

    assert response.status_code == 404
    body = response.json()
    assert body["statusCode"] == 404
    assert body["error"] == "NotFound"
    assert body["message"]


def test_request_validation_error(client, user, auth_headers):
    """测试请求参数校验失败"""
    response = client.post(
        "/api/enrollments/",
        json={"activity_id": "x", "contact_name": "张三", "contact_phone": "123"},
        headers=auth_headers(user)
    )

    assert response.status_code == 422
    assert response.json()["error"] == "RequestValidationError"


def test_admin_only_endpoint(client, user, auth_headers):
    """测试普通用户不能调用管理接口"""
    response = client.post("/api/finance/admin/settlements/auto", headers=auth_headers(user))
    assert response.status_code == 403


def test_full_flow(db, client, user, owner, admin, club, make_user, make_activity,
                   finish_activity, auth_headers):
    """测试完整业务流程"""
    leader = make_user("领队")
    activity = make_activity(price="200.00", leader_id=leader.id)
    activity_id = activity.id

    # 报名
    response = client.post("/api/enrollments/", json={
        "activity_id": activity_id,
        "contact_name": "张三",
        "contact_phone": "13800138000",
    }, headers=auth_headers(user))
    assert response.status_code == 201
    enrollment_id = response.json()["id"]

    # 下单
    response = client.post("/api/orders/", json={
        "enrollment_id": enrollment_id,
        "insured_name": "张三",
        "insured_phone": "13800138000",
    }, headers=auth_headers(user))
    assert response.status_code == 201
    order = response.json()
    assert order["status"] == "pending"
    assert order["total_amount"] == 200.0
    order_id = order["id"]

    # 未支付不能获取核销码
    response = client.get(f"/api/orders/{order_id}/verify-code", headers=auth_headers(user))
    assert response.status_code == 409

    # 预下单
    response = client.post("/api/payments/prepay", json={"order_id": order_id}, headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["pay_params"]["package"] == f"prepay_id=mock_prepay_{order['order_no']}"

    # 支付回调（测试环境未配置密钥，不校验签名）
    body = orjson.dumps({
        "resource": {
            "out_trade_no": order["order_no"],
            "transaction_id": "4200000100",
            "trade_state": "SUCCESS",
        }
    })
    response = client.post("/api/payments/notify", content=body,
                           headers={"Content-Type": "application/json"})
    assert response.status_code == 200
    assert response.json()["code"] == "SUCCESS"

    response = client.get(f"/api/payments/{order_id}/status", headers=auth_headers(user))
    assert response.json()["order_status"] == "paid"

    response = client.get(f"/api/orders/{order_id}/verify-code", headers=auth_headers(user))
    assert response.status_code == 200
    verify_code = response.json()["verify_code"]

    # 其他用户不能查看订单
    response = client.get(f"/api/orders/{order_id}", headers=auth_headers(make_user()))
    assert response.status_code == 403

    # 领队核销
    response = client.post("/api/verifications/verify", json={"code": verify_code},
                           headers=auth_headers(leader))
    assert response.status_code == 200
    assert response.json()["order_id"] == order_id
    assert response.json()["verified_by"] == leader.id

    response = client.post("/api/verifications/verify", json={"code": verify_code},
                           headers=auth_headers(leader))
    assert response.status_code == 409
    assert response.json()["error"] == "AlreadyVerified"

    response = client.get(f"/api/verifications/activities/{activity_id}/stats", headers=auth_headers(leader))
    assert response.json()["verified"] == 1

    # 活动结束，管理员结算
    db.expire_all()
    finish_activity(activity)
    response = client.post(f"/api/finance/admin/settlements/activity/{activity_id}",
                           headers=auth_headers(admin))
    assert response.status_code == 200
    settlement = response.json()
    assert settlement["settle_amount"] == 190.0
    assert settlement["platform_fee"] == 10.0

    response = client.post(f"/api/finance/admin/settlements/activity/{activity_id}",
                           headers=auth_headers(admin))
    assert response.status_code == 409
    assert response.json()["error"] == "AlreadySettled"

    response = client.get(f"/api/orders/{order_id}", headers=auth_headers(user))
    assert response.json()["status"] == "completed"

    # 设置收款账户并提现
    response = client.put(f"/api/finance/clubs/{club.id}/account/bank", json={
        "bank_name": "招商银行",
        "bank_account": "6222021234567890",
        "account_name": "风追户外",
    }, headers=auth_headers(owner))
    assert response.status_code == 200
    assert response.json()["balance"] == 190.0
    assert response.json()["bank_info"]["bank_account"] == "**** **** **** 7890"

    response = client.post(f"/api/finance/clubs/{club.id}/withdrawals", json={"amount": "150.00"},
                           headers=auth_headers(owner))
    assert response.status_code == 201
    withdrawal_id = response.json()["id"]

    response = client.post(f"/api/finance/clubs/{club.id}/withdrawals", json={"amount": "100.00"},
                           headers=auth_headers(owner))
    assert response.status_code == 400

    response = client.get("/api/finance/admin/withdrawals/pending", headers=auth_headers(admin))
    assert [w["id"] for w in response.json()] == [withdrawal_id]

    response = client.post(f"/api/finance/admin/withdrawals/{withdrawal_id}/approve", headers=auth_headers(admin))
    assert response.json()["status"] == "approved"
    response = client.post(f"/api/finance/admin/withdrawals/{withdrawal_id}/complete", headers=auth_headers(admin))
    assert response.json()["status"] == "completed"

    response = client.get(f"/api/finance/clubs/{club.id}/account", headers=auth_headers(owner))
    account = response.json()
    assert account["balance"] == 40.0
    assert account["frozen_balance"] == 0.0
    assert account["total_withdraw"] == 150.0

    response = client.get(f"/api/finance/clubs/{club.id}/transactions", headers=auth_headers(owner))
    assert response.json()["total"] == 3


def test_refund_flow(client, owner, user, make_activity, auth_headers):
    """测试退款接口流程"""
    activity = make_activity(price="200.00", days_until_start=5)

    response = client.post("/api/enrollments/", json={
        "activity_id": activity.id, "contact_name": "张三", "contact_phone": "13800138000",
    }, headers=auth_headers(user))
    response = client.post("/api/orders/", json={
        "enrollment_id": response.json()["id"], "insured_name": "张三", "insured_phone": "13800138000",
    }, headers=auth_headers(user))
    order_id = response.json()["id"]
    client.post(f"/api/payments/{order_id}/mock-success", headers=auth_headers(user))

    response = client.get("/api/refunds/preview", params={"order_id": order_id}, headers=auth_headers(user))
    assert response.json()["refund_percent"] == 70
    assert response.json()["refund_amount"] == 140.0

    response = client.post("/api/refunds/", json={"order_id": order_id, "reason": "personal"},
                           headers=auth_headers(user))
    assert response.status_code == 201
    refund_id = response.json()["id"]

    response = client.put(f"/api/refunds/{refund_id}/approve", headers=auth_headers(user))
    assert response.status_code == 403

    response = client.put(f"/api/refunds/{refund_id}/approve", headers=auth_headers(owner))
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = client.get(f"/api/orders/{order_id}", headers=auth_headers(user))
    assert response.json()["status"] == "refunded"
