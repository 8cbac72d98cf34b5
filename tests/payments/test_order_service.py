import asyncio

import pytest

from application.services.order_service import (
    DEFAULT_FAILURE_REASON,
    INVALID_SIGNATURE,
    OrderLifecycleService,
    build_receipt,
)
from domain.common.exceptions import (
    InvalidOrderTransitionException,
    MissingFieldsException,
    OrderNotFoundException,
    PaymentProviderError,
    PaymentRecoverableError,
    PersistenceException,
    UnknownPlanException,
)
from domain.payment.entity import OrderStatus


async def _stored(uow_factory, order_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.order_repository.get_by_id(order_id)


async def _user(uow_factory, user_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.user_repository.get_by_id(user_id)


class _BrokenUnitOfWork:
    """Unit of work whose store is unreachable."""

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        raise PersistenceException("connection refused", operation="begin")

    async def __aexit__(self, exc_type, exc, tb):
        return None


def test_receipt_format():
    receipt = build_receipt("rcpt")
    prefix, millis, token = receipt.split("_")
    assert prefix == "rcpt"
    assert millis.isdigit()
    assert len(token) == 8
    assert len(build_receipt("x" * 50)) == 40


@pytest.mark.asyncio
async def test_create_order_basic_plan(service, gateway, uow_factory):
    created = await service.create_order("u1", "basic")

    assert created.amount == 30000
    assert created.currency == "INR"
    assert created.plan.id == "basic"
    assert created.persisted is True
    assert gateway.requests[0].amount == 30000
    assert gateway.requests[0].notes == {"plan_id": "basic", "user_id": "u1"}

    stored = await _stored(uow_factory, created.order_id)
    assert stored.status is OrderStatus.PENDING
    assert stored.amount == 30000
    assert stored.receipt == gateway.requests[0].receipt
    assert (await _user(uow_factory, "u1")).username == "u1"


@pytest.mark.asyncio
async def test_unknown_plan_calls_nothing(service, gateway, uow_factory):
    with pytest.raises(UnknownPlanException):
        await service.create_order("u1", "enterprise")
    assert gateway.requests == []
    assert await _user(uow_factory, "u1") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id,plan_id", [(None, "basic"), ("u1", None), ("", "")])
async def test_create_order_requires_fields(service, gateway, user_id, plan_id):
    with pytest.raises(MissingFieldsException):
        await service.create_order(user_id, plan_id)
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_concurrent_creates_are_independent(service, uow_factory):
    results = await asyncio.gather(*(service.create_order("u1", "pro") for _ in range(3)))
    assert len({r.order_id for r in results}) == 3
    history = await service.payment_history("u1")
    assert len(history) == 3
    assert all(o.amount == 60000 for o in history)


@pytest.mark.asyncio
async def test_gateway_failure_propagates(service, gateway, uow_factory):
    gateway.fail_with = PaymentProviderError("BAD_REQUEST_ERROR", provider="stub")
    with pytest.raises(PaymentProviderError):
        await service.create_order("u1", "basic")
    assert await service.payment_history("u1") == []


@pytest.mark.asyncio
async def test_gateway_timeout_is_recoverable(uow_factory, verifier):
    class SlowGateway:
        provider = "slow"

        async def create_order(self, req):
            await asyncio.sleep(1)

        async def fetch_order(self, order_id):
            raise NotImplementedError

        async def aclose(self):
            return None

    svc = OrderLifecycleService(
        uow_factory=uow_factory, gateway=SlowGateway(), verifier=verifier, gateway_timeout=0.05
    )
    with pytest.raises(PaymentRecoverableError):
        await svc.create_order("u1", "basic")


@pytest.mark.asyncio
async def test_gateway_amount_mismatch_rejected(service, gateway):
    gateway.amount_override = 100
    with pytest.raises(PaymentProviderError):
        await service.create_order("u1", "basic")


@pytest.mark.asyncio
async def test_persistence_failure_after_gateway_success_is_not_fatal(gateway, verifier):
    svc = OrderLifecycleService(uow_factory=_BrokenUnitOfWork, gateway=gateway, verifier=verifier)
    created = await svc.create_order("u1", "basic")
    # The caller still gets the gateway reference
    assert created.order_id.startswith("order_")
    assert created.persisted is False
    assert created.amount == 30000


@pytest.mark.asyncio
async def test_confirm_valid_signature(service, verifier, uow_factory):
    created = await service.create_order("u1", "basic")
    sig = verifier.compute(created.order_id, "pay_1")

    outcome = await service.confirm_payment(created.order_id, "pay_1", sig)

    assert outcome.success is True
    assert (outcome.order_id, outcome.payment_id, outcome.signature) == (created.order_id, "pay_1", sig)
    stored = await _stored(uow_factory, created.order_id)
    assert stored.status is OrderStatus.RECEIVED
    assert stored.payment_id == "pay_1"
    assert stored.signature == sig
    assert stored.verified_at is not None


@pytest.mark.asyncio
async def test_confirm_invalid_signature_rejects(service, uow_factory):
    created = await service.create_order("u1", "basic")

    outcome = await service.confirm_payment(created.order_id, "pay_1", "forged")

    assert outcome.success is False
    assert outcome.error == INVALID_SIGNATURE
    stored = await _stored(uow_factory, created.order_id)
    assert stored.status is OrderStatus.REJECTED
    assert stored.failure_reason == INVALID_SIGNATURE
    assert stored.signature is None
    assert await service.current_plan("u1") is None


@pytest.mark.asyncio
async def test_confirm_is_idempotent(service, verifier, uow_factory):
    created = await service.create_order("u1", "basic")
    sig = verifier.compute(created.order_id, "pay_1")

    first = await service.confirm_payment(created.order_id, "pay_1", sig)
    verified_at = (await _stored(uow_factory, created.order_id)).verified_at
    second = await service.confirm_payment(created.order_id, "pay_1", sig)

    assert first == second
    stored = await _stored(uow_factory, created.order_id)
    assert stored.status is OrderStatus.RECEIVED
    assert stored.verified_at == verified_at


@pytest.mark.asyncio
async def test_confirm_after_rejection_keeps_rejected(service, verifier, uow_factory):
    created = await service.create_order("u1", "basic")
    await service.report_failure(created.order_id, "card declined")
    sig = verifier.compute(created.order_id, "pay_1")

    outcome = await service.confirm_payment(created.order_id, "pay_1", sig)

    # The signature decides the reply; the terminal state does not move
    assert outcome.success is True
    stored = await _stored(uow_factory, created.order_id)
    assert stored.status is OrderStatus.REJECTED
    assert stored.failure_reason == "card declined"


@pytest.mark.asyncio
async def test_concurrent_confirmations_settle_on_one_state(service, verifier, uow_factory):
    created = await service.create_order("u1", "basic")
    sig = verifier.compute(created.order_id, "pay_1")

    outcomes = await asyncio.gather(
        *(service.confirm_payment(created.order_id, "pay_1", sig) for _ in range(5))
    )

    assert all(o.success for o in outcomes)
    stored = await _stored(uow_factory, created.order_id)
    assert stored.status is OrderStatus.RECEIVED
    assert stored.payment_id == "pay_1"
    assert stored.signature == sig


@pytest.mark.asyncio
async def test_confirm_unknown_order_still_reports_signature_outcome(service, verifier):
    sig = verifier.compute("order_ghost", "pay_1")
    outcome = await service.confirm_payment("order_ghost", "pay_1", sig)
    assert outcome.success is True


@pytest.mark.asyncio
async def test_confirm_outcome_survives_store_outage(gateway, verifier):
    svc = OrderLifecycleService(uow_factory=_BrokenUnitOfWork, gateway=gateway, verifier=verifier)
    ok = await svc.confirm_payment("order_1", "pay_1", verifier.compute("order_1", "pay_1"))
    bad = await svc.confirm_payment("order_1", "pay_1", "forged")
    assert ok.success is True
    assert bad.success is False


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["order_id", "payment_id", "signature"])
async def test_confirm_requires_all_fields(service, missing):
    args = {"order_id": "order_1", "payment_id": "pay_1", "signature": "sig"}
    args[missing] = None
    with pytest.raises(MissingFieldsException) as ei:
        await service.confirm_payment(**args)
    assert ei.value.details == {"missing": [missing]}


@pytest.mark.asyncio
async def test_report_failure(service, uow_factory):
    created = await service.create_order("u1", "basic")
    order = await service.report_failure(created.order_id, None)
    assert order.status is OrderStatus.REJECTED
    assert order.failure_reason == DEFAULT_FAILURE_REASON
    assert order.verified_at is not None

    # Same report again is a no-op
    again = await service.report_failure(created.order_id, None)
    assert again.verified_at == order.verified_at


@pytest.mark.asyncio
async def test_report_failure_cannot_undo_receipt(service, verifier):
    created = await service.create_order("u1", "basic")
    await service.confirm_payment(created.order_id, "pay_1", verifier.compute(created.order_id, "pay_1"))
    with pytest.raises(InvalidOrderTransitionException):
        await service.report_failure(created.order_id, "late failure")


@pytest.mark.asyncio
async def test_report_failure_unknown_order(service):
    with pytest.raises(OrderNotFoundException):
        await service.report_failure("order_ghost", "x")


@pytest.mark.asyncio
async def test_current_plan_is_latest_received(service, verifier):
    basic = await service.create_order("u1", "basic")
    pro = await service.create_order("u1", "pro")
    await service.confirm_payment(basic.order_id, "pay_1", verifier.compute(basic.order_id, "pay_1"))
    await service.confirm_payment(pro.order_id, "pay_2", verifier.compute(pro.order_id, "pay_2"))

    current = await service.current_plan("u1")
    assert current.plan_id == "pro"
    assert current.payment_id == "pay_2"


@pytest.mark.asyncio
async def test_reads_for_unknown_user_are_empty(service):
    assert await service.payment_history("nobody") == []
    assert await service.current_plan("nobody") is None


@pytest.mark.asyncio
async def test_reads_degrade_when_store_is_down(gateway, verifier):
    svc = OrderLifecycleService(uow_factory=_BrokenUnitOfWork, gateway=gateway, verifier=verifier)
    assert await svc.payment_history("u1") == []
    assert await svc.current_plan("u1") is None


@pytest.mark.asyncio
async def test_report_failure_on_rejected_order_keeps_first_reason(service, uow_factory):
    created = await service.create_order("u1", "basic")
    await service.confirm_payment(created.order_id, "pay_1", "forged")

    order = await service.report_failure(created.order_id, "checkout abandoned")

    assert order.status is OrderStatus.REJECTED
    assert order.failure_reason == INVALID_SIGNATURE
    assert (await _stored(uow_factory, created.order_id)).failure_reason == INVALID_SIGNATURE
