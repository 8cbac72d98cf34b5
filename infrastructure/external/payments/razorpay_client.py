"""
Razorpay Orders adapter over the REST API (httpx).

Notes on the API:
- Orders: ``POST /v1/orders`` and ``GET /v1/orders/{id}``, HTTP basic auth
  with (key_id, key_secret). Amounts are integers in minor units.
- Errors come back as ``{"error": {"code": ..., "description": ...}}``.
- An order's ``status`` is one of created / attempted / paid.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from application.dtos.payments import GatewayOrder, GatewayOrderRequest
from infrastructure.external.payments.base import BasePaymentClient
from domain.common.exceptions import PaymentProviderError, PaymentRecoverableError
from core.settings import payment_settings, PaymentSettings
from core.logging_config import get_logger


logger = get_logger(__name__)

# Rate limiting and upstream outages are worth retrying later
_RECOVERABLE_STATUS = {429, 500, 502, 503, 504}


class RazorpayClient(BasePaymentClient):
    provider = "razorpay"

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        cfg = settings or payment_settings
        if not (cfg.razorpay.key_id and cfg.razorpay.key_secret):
            raise RuntimeError("PAYMENT__RAZORPAY__KEY_ID / KEY_SECRET not configured")
        super().__init__(
            base_url=cfg.razorpay.base_url,
            auth=(cfg.razorpay.key_id, cfg.razorpay.key_secret),
            timeouts=cfg.timeouts.model_dump(include={"connect", "read", "write", "total"}),
            retry={"max": cfg.retry.max, "base": cfg.retry.base_backoff},
            transport=transport,
        )

    def _to_order(self, data: dict[str, Any]) -> GatewayOrder:
        try:
            return GatewayOrder(
                id=str(data["id"]),
                amount=int(data["amount"]),
                currency=str(data["currency"]).upper(),
                status=self._map_status(str(data.get("status", ""))),
                receipt=data.get("receipt"),
                created_at=data.get("created_at"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise PaymentProviderError("Malformed order response", provider=self.provider) from exc

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        try:
            err = (resp.json() or {}).get("error") or {}
        except ValueError:
            err = {}
        description = err.get("description") or resp.reason_phrase or "Gateway error"
        code = err.get("code")
        details = {"status_code": resp.status_code}
        if resp.status_code in _RECOVERABLE_STATUS:
            raise PaymentRecoverableError(description, provider=self.provider, provider_code=code, details=details)
        raise PaymentProviderError(description, provider=self.provider, provider_code=code, details=details)

    async def create_order(self, req: GatewayOrderRequest) -> GatewayOrder:  # type: ignore[override]
        # Never retried: a replayed create is a second order at the gateway
        payload = {
            "amount": req.amount,
            "currency": req.currency,
            "receipt": req.receipt,
            "notes": req.notes,
        }
        try:
            async with self.client() as c:
                resp = await c.post("/v1/orders", json=payload)
        except httpx.TimeoutException as exc:
            raise PaymentRecoverableError("Gateway request timed out", provider=self.provider) from exc
        except httpx.TransportError as exc:
            raise PaymentRecoverableError(str(exc) or "Gateway unreachable", provider=self.provider) from exc

        self._raise_for_status(resp)
        order = self._to_order(resp.json())
        self._log("razorpay_order_created", order_id=order.id, amount=order.amount, receipt=req.receipt)
        return order

    async def fetch_order(self, order_id: str) -> GatewayOrder:  # type: ignore[override]
        async def _do() -> httpx.Response:
            async with self.client() as c:
                return await c.get(f"/v1/orders/{order_id}")

        try:
            resp = await self._retry(_do)
        except httpx.TimeoutException as exc:
            raise PaymentRecoverableError("Gateway request timed out", provider=self.provider) from exc
        except httpx.TransportError as exc:
            raise PaymentRecoverableError(str(exc) or "Gateway unreachable", provider=self.provider) from exc

        self._raise_for_status(resp)
        return self._to_order(resp.json())
