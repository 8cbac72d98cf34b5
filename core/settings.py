"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings; every key lives under the PAYMENT__
prefix, e.g. PAYMENT__RAZORPAY__KEY_SECRET or PAYMENT__TIMEOUTS__GATEWAY.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    # httpx client timeouts
    connect: float = 1.0
    read: float = 5.0
    write: float = 5.0
    total: float = 10.0
    # asyncio.wait_for bounds around each external step
    gateway: float = 10.0
    store: float = 5.0


class PaymentRetry(BaseModel):
    # Only idempotent gateway reads are retried
    max: int = 2
    base_backoff: float = 0.2


class RazorpaySettings(BaseModel):
    key_id: Optional[str] = None
    key_secret: Optional[str] = None
    webhook_secret: Optional[str] = None
    base_url: str = "https://api.razorpay.com"


class ReconcileSettings(BaseModel):
    older_than_minutes: int = 15
    expire_after_minutes: int = 24 * 60
    batch_size: int = 100
    interval_seconds: int = 600


class PaymentSettings(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    razorpay: RazorpaySettings = Field(default_factory=RazorpaySettings)
    reconcile: ReconcileSettings = Field(default_factory=ReconcileSettings)
    receipt_prefix: str = "rcpt"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
