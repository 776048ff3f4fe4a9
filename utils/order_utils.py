"""
订单相关工具：单号生成、核销码签名、金额处理
"""
import base64
import binascii
import hashlib
import hmac
import secrets
import string
import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from config import settings

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """转换为保留两位小数的金额（四舍五入）"""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_fen(value) -> int:
    """元转分，支付网关以分为单位"""
    return int((to_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def generate_serial_no(prefix: str) -> str:
    """生成业务单号：前缀 + 时间戳 + 6位随机大写字母数字"""
    timestamp = datetime.utcnow().strftime("%Y%m%d%H%M%S")
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(6))
    return f"{prefix}{timestamp}{suffix}"


def generate_order_no() -> str:
    """生成订单号"""
    return generate_serial_no("FZ")


def _sign(payload: str) -> str:
    return hmac.new(
        settings.business.verify_secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()[:16]


def generate_verify_code(order_id: str) -> str:
    """生成核销码

    核销码为 base64(order_id:nonce:signature)，nonce 保证唯一，
    signature 防止伪造。
    """
    nonce = uuid.uuid4().hex[:8]
    payload = f"{order_id}:{nonce}"
    raw = f"{payload}:{_sign(payload)}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def parse_verify_code(code: str) -> Optional[str]:
    """校验核销码签名，返回订单ID；无效时返回 None"""
    try:
        padded = code + "=" * (-len(code) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None

    parts = raw.split(":")
    if len(parts) != 3:
        return None

    order_id, nonce, signature = parts
    if not hmac.compare_digest(signature, _sign(f"{order_id}:{nonce}")):
        return None
    return order_id
