"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import GatewayOrder, GatewayOrderRequest


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the third-party payment provider.

    Implementations should be async and side-effect free beyond IO.
    ``create_order`` must not retry internally: a duplicated create is a
    duplicated charge reference, so the caller decides.
    """

    provider: str

    async def create_order(self, req: GatewayOrderRequest) -> GatewayOrder: ...

    async def fetch_order(self, order_id: str) -> GatewayOrder: ...

    async def aclose(self) -> None: ...
