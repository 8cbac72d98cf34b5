"""
网关签名校验 - HMAC-SHA256，常量时间比较
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Optional


def _hmac_hex(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _constant_time_equals(expected: str, provided: Optional[str]) -> bool:
    if not provided:
        return False
    # 按字节比较：compare_digest 不接受非 ASCII 的 str
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


class SignatureVerifier:
    """
    支付回调签名校验

    签名 = HMAC-SHA256(key_secret, f"{order_id}|{payment_id}")，十六进制小写。
    webhook 签名 = HMAC-SHA256(webhook_secret, 原始请求体)。
    """

    def __init__(self, secret: str, *, webhook_secret: Optional[str] = None):
        if not secret:
            raise ValueError("Signature secret must not be empty")
        self._secret = secret
        self._webhook_secret = webhook_secret or None

    def compute(self, order_id: str, payment_id: str) -> str:
        return _hmac_hex(self._secret, f"{order_id}|{payment_id}".encode("utf-8"))

    def verify(self, order_id: str, payment_id: str, provided: Optional[str]) -> bool:
        return _constant_time_equals(self.compute(order_id, payment_id), provided)

    @property
    def accepts_webhooks(self) -> bool:
        return self._webhook_secret is not None

    def compute_webhook(self, body: bytes) -> str:
        if self._webhook_secret is None:
            raise ValueError("Webhook secret not configured")
        return _hmac_hex(self._webhook_secret, body)

    def verify_webhook(self, body: bytes, provided: Optional[str]) -> bool:
        if self._webhook_secret is None:
            return False
        return _constant_time_equals(self.compute_webhook(body), provided)
