"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./.pytest-import.db")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PAYMENT__RAZORPAY__KEY_ID", "rzp_test_key")
os.environ.setdefault("PAYMENT__RAZORPAY__KEY_SECRET", "test-key-secret")
os.environ.setdefault("PAYMENT__RAZORPAY__WEBHOOK_SECRET", "test-webhook-secret")

import functools  # noqa: E402
import itertools  # noqa: E402
from typing import Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from application.dtos.payments import GatewayOrder, GatewayOrderRequest  # noqa: E402
from application.services.order_service import OrderLifecycleService  # noqa: E402
from domain.common.exceptions import PaymentProviderError  # noqa: E402
from domain.payment.signature import SignatureVerifier  # noqa: E402
from infrastructure.database import build_engine, create_tables  # noqa: E402
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork  # noqa: E402


KEY_SECRET = os.environ["PAYMENT__RAZORPAY__KEY_SECRET"]
WEBHOOK_SECRET = os.environ["PAYMENT__RAZORPAY__WEBHOOK_SECRET"]


class StubGateway:
    """In-memory gateway: hands out sequential order ids."""

    provider = "stub"

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self.requests: list[GatewayOrderRequest] = []
        self.remote_status: dict[str, str] = {}
        self.fail_with: Optional[Exception] = None
        self.amount_override: Optional[int] = None
        self.closed = False

    async def create_order(self, req: GatewayOrderRequest) -> GatewayOrder:
        self.requests.append(req)
        if self.fail_with is not None:
            raise self.fail_with
        order_id = f"order_{next(self._ids):04d}"
        self.remote_status[order_id] = "pending"
        return GatewayOrder(
            id=order_id,
            amount=self.amount_override or req.amount,
            currency=req.currency,
            status="pending",
            receipt=req.receipt,
        )

    async def fetch_order(self, order_id: str) -> GatewayOrder:
        if order_id not in self.remote_status:
            raise PaymentProviderError("order not found", provider=self.provider)
        return GatewayOrder(id=order_id, amount=1, currency="INR", status=self.remote_status[order_id])

    async def aclose(self) -> None:
        self.closed = True


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await create_tables(bind=eng)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def uow_factory(engine):
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    return functools.partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def verifier():
    return SignatureVerifier(KEY_SECRET, webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def service(uow_factory, gateway, verifier):
    return OrderLifecycleService(
        uow_factory=uow_factory,
        gateway=gateway,
        verifier=verifier,
        gateway_timeout=2.0,
        store_timeout=2.0,
    )


@pytest_asyncio.fixture
async def api_client(service):
    from api.dependencies import get_order_service
    from main import app

    app.dependency_overrides[get_order_service] = lambda: service
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()
