import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from domain.common.exceptions import (
    InvalidOrderTransitionException,
    OrderAlreadyExistsException,
    OrderNotFoundException,
)
from domain.payment.entity import Order, OrderStatus, OrderTransition
from domain.payment.plan import default_catalog


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _order(order_id: str, user_id: str = "u1", plan_id: str = "basic", created_at: datetime = T0) -> Order:
    return Order.open(
        order_id=order_id,
        user_id=user_id,
        plan=default_catalog.resolve(plan_id),
        receipt=f"rcpt_{order_id}",
        created_at=created_at,
    )


async def _create(uow_factory, *orders: Order) -> None:
    async with uow_factory() as uow:
        for order in orders:
            await uow.order_repository.create(order)


async def _transition(uow_factory, order_id: str, transition: OrderTransition) -> Order:
    async with uow_factory() as uow:
        return await uow.order_repository.transition(order_id, transition)


async def _get(uow_factory, order_id: str):
    async with uow_factory(readonly=True) as uow:
        return await uow.order_repository.get_by_id(order_id)


@pytest.mark.asyncio
async def test_create_and_get(uow_factory):
    await _create(uow_factory, _order("order_1"))
    stored = await _get(uow_factory, "order_1")
    assert stored.status is OrderStatus.PENDING
    assert stored.amount == 30000
    assert stored.created_at == T0


@pytest.mark.asyncio
async def test_duplicate_order_id_rejected(uow_factory):
    await _create(uow_factory, _order("order_1"))
    with pytest.raises(OrderAlreadyExistsException):
        await _create(uow_factory, _order("order_1"))


@pytest.mark.asyncio
async def test_list_by_user_newest_first(uow_factory):
    await _create(
        uow_factory,
        _order("order_old", created_at=T0),
        _order("order_new", created_at=T0 + timedelta(minutes=5)),
        _order("order_other", user_id="u2"),
    )
    async with uow_factory(readonly=True) as uow:
        orders = await uow.order_repository.list_by_user("u1")
    assert [o.order_id for o in orders] == ["order_new", "order_old"]


@pytest.mark.asyncio
async def test_list_by_user_ties_broken_by_insertion_order(uow_factory):
    await _create(uow_factory, _order("order_a"), _order("order_b"))
    async with uow_factory(readonly=True) as uow:
        orders = await uow.order_repository.list_by_user("u1")
    assert [o.order_id for o in orders] == ["order_b", "order_a"]


@pytest.mark.asyncio
async def test_transition_pending_to_received(uow_factory):
    await _create(uow_factory, _order("order_1"))
    order = await _transition(
        uow_factory, "order_1", OrderTransition.received(payment_id="pay_1", signature="sig", at=T0)
    )
    assert order.status is OrderStatus.RECEIVED
    assert order.payment_id == "pay_1"
    assert order.verified_at == T0


@pytest.mark.asyncio
async def test_identical_replay_is_noop(uow_factory):
    await _create(uow_factory, _order("order_1"))
    first = OrderTransition.received(payment_id="pay_1", signature="sig", at=T0)
    await _transition(uow_factory, "order_1", first)
    replay = OrderTransition.received(payment_id="pay_1", signature="sig", at=T0 + timedelta(hours=1))
    order = await _transition(uow_factory, "order_1", replay)
    # Stored terminal fields are not rewritten
    assert order.verified_at == T0


@pytest.mark.asyncio
async def test_terminal_order_cannot_move_again(uow_factory):
    await _create(uow_factory, _order("order_1"))
    await _transition(uow_factory, "order_1", OrderTransition.rejected(reason="Payment failed", at=T0))
    with pytest.raises(InvalidOrderTransitionException) as ei:
        await _transition(
            uow_factory, "order_1", OrderTransition.received(payment_id="pay_1", signature="sig", at=T0)
        )
    assert ei.value.details["current"] == "Rejected"
    stored = await _get(uow_factory, "order_1")
    assert stored.status is OrderStatus.REJECTED
    assert stored.payment_id is None


@pytest.mark.asyncio
async def test_transition_unknown_order(uow_factory):
    with pytest.raises(OrderNotFoundException):
        await _transition(uow_factory, "missing", OrderTransition.rejected(reason="x", at=T0))


@pytest.mark.asyncio
async def test_latest_active_for_user(uow_factory):
    await _create(uow_factory, _order("order_basic"), _order("order_pro", plan_id="pro"), _order("order_open"))
    await _transition(
        uow_factory, "order_basic", OrderTransition.received(payment_id="pay_1", signature="s1", at=T0)
    )
    await _transition(
        uow_factory,
        "order_pro",
        OrderTransition.received(payment_id="pay_2", signature="s2", at=T0 + timedelta(days=1)),
    )
    async with uow_factory(readonly=True) as uow:
        active = await uow.order_repository.latest_active_for_user("u1")
        none = await uow.order_repository.latest_active_for_user("u2")
    assert active.order_id == "order_pro"
    assert active.plan_id == "pro"
    assert none is None


@pytest.mark.asyncio
async def test_list_stale_pending(uow_factory):
    await _create(
        uow_factory,
        _order("order_stale", created_at=T0 - timedelta(hours=2)),
        _order("order_fresh", created_at=T0),
        _order("order_done", created_at=T0 - timedelta(hours=3)),
    )
    await _transition(uow_factory, "order_done", OrderTransition.rejected(reason="x", at=T0))
    async with uow_factory(readonly=True) as uow:
        stale = await uow.order_repository.list_stale_pending(T0 - timedelta(hours=1))
    assert [o.order_id for o in stale] == ["order_stale"]


@pytest.mark.asyncio
async def test_concurrent_transitions_settle_on_one_state(uow_factory):
    await _create(uow_factory, _order("order_1"))
    t = OrderTransition.received(payment_id="pay_1", signature="sig", at=T0)

    async def attempt():
        try:
            return await _transition(uow_factory, "order_1", t)
        except Exception as exc:  # lock contention on SQLite is acceptable here
            return exc

    await asyncio.gather(*(attempt() for _ in range(5)))
    stored = await _get(uow_factory, "order_1")
    assert stored.status is OrderStatus.RECEIVED
    assert stored.payment_id == "pay_1"
    assert stored.signature == "sig"
