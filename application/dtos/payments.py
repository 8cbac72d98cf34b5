"""
Payment DTOs (Pydantic v2) used at application boundaries.

Client-facing models keep the web client's camelCase keys through aliases;
gateway models mirror the provider's order resource.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from core.response import utc_isoformat


# Gateway limits receipt length to 40 characters
RECEIPT_MAX_LENGTH = 40
FAILURE_REASON_MAX_LENGTH = 500


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Gateway side
# ---------------------------------------------------------------------------

class GatewayOrderRequest(BaseModel):
    amount: int = Field(gt=0)  # minor units
    currency: str = Field(min_length=3, max_length=3)
    receipt: str = Field(max_length=RECEIPT_MAX_LENGTH)
    notes: dict[str, str] = Field(default_factory=dict)


class GatewayOrder(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    receipt: Optional[str] = None
    created_at: Optional[int] = None  # epoch seconds, as reported by the provider


# ---------------------------------------------------------------------------
# Client requests
# ---------------------------------------------------------------------------

class CreateOrderRequest(CamelModel):
    """Body of POST /create-order.

    Only the plan and user are read. Price fields a client might send are
    ignored; the catalog is the only source of the amount.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    plan_id: Optional[str] = None
    user_id: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class PaymentFailedRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    error: Union[str, dict[str, Any], None] = None

    def reason(self) -> Optional[str]:
        """Reduce the gateway error (string or error object) to a bounded string."""
        err = self.error
        if err is None:
            return None
        if isinstance(err, dict):
            parts = [str(err[k]) for k in ("description", "reason", "code") if err.get(k)]
            err = " | ".join(parts) if parts else None
        if not err:
            return None
        return str(err)[:FAILURE_REASON_MAX_LENGTH]


# ---------------------------------------------------------------------------
# Client responses
# ---------------------------------------------------------------------------

class PlanView(CamelModel):
    id: str
    name: str
    description: str
    amount: int
    currency: str


class CreateOrderResponse(CamelModel):
    order_id: str
    amount: int
    currency: str
    plan: PlanView


class VerifyPaymentResponse(CamelModel):
    success: bool
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    error: Optional[str] = None


class OrderView(CamelModel):
    order_id: str
    user_id: Optional[str] = None
    plan_id: str
    plan_name: str
    amount: int
    currency: str
    status: str
    receipt: Optional[str] = None
    created_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    payment_id: Optional[str] = None
    signature: Optional[str] = None
    failure_reason: Optional[str] = None

    @field_serializer("created_at", "verified_at")
    def _serialize_ts(self, ts: Optional[datetime]) -> Optional[str]:
        return utc_isoformat(ts) if ts else None


class ActivePlanView(CamelModel):
    plan_id: str
    plan_name: str
    amount: int
    currency: str
    order_id: str
    payment_id: Optional[str] = None
    activated_at: Optional[datetime] = None

    @field_serializer("activated_at")
    def _serialize_ts(self, ts: Optional[datetime]) -> Optional[str]:
        return utc_isoformat(ts) if ts else None


class CurrentPlanResponse(CamelModel):
    current_plan: Optional[ActivePlanView] = None


class WebhookEvent(BaseModel):
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or {}

    def payment_entity(self) -> dict[str, Any]:
        return ((self.payload.get("payment") or {}).get("entity")) or {}
