"""
支付网关客户端（微信支付 JSAPI）

未配置商户号时进入模拟模式：预下单返回模拟 prepay_id，退款直接成功，
查单返回 None。请求与回调使用商户 API 密钥做 HMAC-SHA256 签名。
"""
import hashlib
import hmac
import time
import uuid
from decimal import Decimal
from typing import Optional, Dict, Any

import httpx
import orjson

from config import settings, PaymentGatewaySettings
from services.logger import get_logger
from utils.exceptions import GatewayError, GatewayTimeout
from utils.order_utils import to_fen

logger = get_logger("payment_gateway")


class PaymentGatewayClient:
    """支付网关客户端"""

    def __init__(self, config: PaymentGatewaySettings = None, transport: httpx.BaseTransport = None):
        self.config = config or settings.payment
        self._transport = transport

    @property
    def mock_mode(self) -> bool:
        return not self.config.mch_id

    # ---------- 签名 ----------

    def sign(self, message: str) -> str:
        """HMAC-SHA256 签名"""
        return hmac.new(
            self.config.api_key.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256
        ).hexdigest().upper()

    def verify_signature(self, body: bytes, timestamp: str, nonce: str, signature: str) -> bool:
        """验证回调签名：sign(timestamp\\nnonce\\nbody\\n)"""
        if not self.config.api_key:
            # 未配置密钥（开发环境）不校验
            return True
        if not (timestamp and nonce and signature):
            return False
        message = f"{timestamp}\n{nonce}\n{body.decode('utf-8')}\n"
        return hmac.compare_digest(self.sign(message), signature.upper())

    def _auth_header(self, method: str, path: str, body: str) -> str:
        timestamp = str(int(time.time()))
        nonce = uuid.uuid4().hex
        signature = self.sign(f"{method}\n{path}\n{timestamp}\n{nonce}\n{body}\n")
        return (
            f'FZPAY-HMAC-SHA256 mchid="{self.config.mch_id}",nonce_str="{nonce}",'
            f'timestamp="{timestamp}",signature="{signature}"'
        )

    # ---------- HTTP ----------

    def _request(self, method: str, path: str, payload: Dict[str, Any] = None) -> Dict[str, Any]:
        """发送网关请求

        超时抛出 GatewayTimeout，其余网络错误或非 2xx 响应抛出 GatewayError。
        """
        body = orjson.dumps(payload).decode("utf-8") if payload is not None else ""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": self._auth_header(method, path, body),
        }
        try:
            with httpx.Client(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                transport=self._transport
            ) as client:
                response = client.request(method, path, content=body or None, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"支付网关超时 {method} {path}: {e}")
            raise GatewayTimeout()
        except httpx.HTTPError as e:
            logger.error(f"支付网关请求失败 {method} {path}: {e}")
            raise GatewayError(f"支付网关请求失败: {e}")

        if response.status_code == 404:
            return {}
        try:
            result = response.json() if response.content else {}
        except ValueError:
            result = {}
        if response.status_code >= 400:
            message = result.get("message") or response.text
            logger.error(f"支付网关返回错误 {response.status_code} {method} {path}: {message}")
            raise GatewayError(f"支付网关返回错误: {message}")
        return result

    # ---------- 业务接口 ----------

    def prepay(self, order_no: str, amount: Decimal, description: str, open_id: str = None) -> Dict[str, str]:
        """JSAPI 预下单，返回 prepay_id 与 nonce_str"""
        nonce_str = uuid.uuid4().hex
        if self.mock_mode:
            logger.info(f"[模拟支付] 预下单 {order_no} 金额 {amount}")
            return {"prepay_id": f"mock_prepay_{order_no}", "nonce_str": nonce_str}

        result = self._request("POST", "/v3/pay/transactions/jsapi", {
            "appid": self.config.app_id,
            "mchid": self.config.mch_id,
            "description": description[:127],
            "out_trade_no": order_no,
            "notify_url": self.config.notify_url,
            "amount": {"total": to_fen(amount), "currency": "CNY"},
            "payer": {"openid": open_id},
        })
        prepay_id = result.get("prepay_id")
        if not prepay_id:
            raise GatewayError("支付网关未返回 prepay_id")
        return {"prepay_id": prepay_id, "nonce_str": nonce_str}

    def build_pay_params(self, prepay_id: str, nonce_str: str) -> Dict[str, str]:
        """生成小程序调起支付所需参数"""
        timestamp = str(int(time.time()))
        package = f"prepay_id={prepay_id}"
        pay_sign = self.sign(f"{self.config.app_id}\n{timestamp}\n{nonce_str}\n{package}\n")
        return {
            "appId": self.config.app_id,
            "timeStamp": timestamp,
            "nonceStr": nonce_str,
            "package": package,
            "signType": "HMAC-SHA256",
            "paySign": pay_sign,
        }

    def query_order(self, order_no: str) -> Optional[Dict[str, Any]]:
        """按商户订单号查单，模拟模式或订单不存在时返回 None"""
        if self.mock_mode:
            return None
        result = self._request(
            "GET", f"/v3/pay/transactions/out-trade-no/{order_no}?mchid={self.config.mch_id}"
        )
        if not result:
            return None
        return {
            "trade_state": result.get("trade_state"),
            "transaction_id": result.get("transaction_id"),
            "success_time": result.get("success_time"),
        }

    def refund(self, order_no: str, refund_no: str, refund_amount: Decimal,
               total_amount: Decimal, reason: str = None) -> Dict[str, Any]:
        """申请退款"""
        if self.mock_mode:
            logger.info(f"[模拟支付] 退款 {refund_no} 金额 {refund_amount}")
            return {"refund_id": f"MOCK_REFUND_{refund_no}", "status": "SUCCESS"}

        result = self._request("POST", "/v3/refund/domestic/refunds", {
            "out_trade_no": order_no,
            "out_refund_no": refund_no,
            "reason": (reason or "")[:80],
            "notify_url": self.config.refund_notify_url,
            "amount": {
                "refund": to_fen(refund_amount),
                "total": to_fen(total_amount),
                "currency": "CNY",
            },
        })
        if result.get("status") not in ("SUCCESS", "PROCESSING"):
            raise GatewayError(f"退款申请失败: {result.get('status')}")
        return {"refund_id": result.get("refund_id"), "status": result.get("status")}


def get_payment_gateway() -> PaymentGatewayClient:
    """获取支付网关客户端"""
    return PaymentGatewayClient()
