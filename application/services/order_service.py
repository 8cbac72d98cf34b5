"""
Order lifecycle service: the Pending → Received / Rejected state machine.

Orchestrates the plan catalog, the payment gateway port, the signature
verifier and the order store. Every external step (gateway call, store
transaction) is awaited separately under its own timeout; no lock is held
across them.

Failure policy:
- creation: gateway errors propagate (502); a store failure after the
  gateway accepted the order is logged for reconciliation and the caller
  still gets the gateway reference.
- confirmation: the outcome is decided by the signature alone; store
  problems are logged and never change what the caller is told.
- reads: store failures degrade to empty results.
"""
from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError

from application.dtos.payments import (
    FAILURE_REASON_MAX_LENGTH,
    RECEIPT_MAX_LENGTH,
    GatewayOrder,
    GatewayOrderRequest,
    WebhookEvent,
)
from application.ports.payment_gateway import PaymentGateway
from application.services.user_service import UserDirectory
from core.logging_config import get_logger, mask_secret
from domain.common.exceptions import (
    BusinessException,
    DomainValidationException,
    InvalidOrderTransitionException,
    MissingFieldsException,
    OrderAlreadyExistsException,
    OrderNotFoundException,
    PaymentGatewayError,
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
    PersistenceException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Order, OrderStatus, OrderTransition
from domain.payment.plan import Plan, PlanCatalog, default_catalog
from domain.payment.signature import SignatureVerifier


logger = get_logger(__name__)

T = TypeVar("T")

INVALID_SIGNATURE = "Invalid signature"
DEFAULT_FAILURE_REASON = "Payment failed"
EXPIRED_REASON = "expired"
GATEWAY_PAID_STATUS = "paid"


def build_receipt(prefix: str = "rcpt") -> str:
    """Per-request receipt: timestamp plus random token, never user input."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"[:RECEIPT_MAX_LENGTH]


def _missing(**values: Optional[str]) -> list[str]:
    return [name for name, value in values.items() if not value]


@dataclass
class CreatedOrder:
    order_id: str
    plan: Plan
    persisted: bool

    @property
    def amount(self) -> int:
        return self.plan.amount

    @property
    def currency(self) -> str:
        return self.plan.currency


@dataclass
class VerificationOutcome:
    success: bool
    order_id: str
    payment_id: str
    signature: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ReconcileReport:
    scanned: int = 0
    expired: int = 0
    still_pending: int = 0
    errors: int = 0
    paid_unconfirmed: list[str] = field(default_factory=list)


class OrderLifecycleService:
    def __init__(
        self,
        *,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        verifier: SignatureVerifier,
        catalog: PlanCatalog = default_catalog,
        users: Optional[UserDirectory] = None,
        gateway_timeout: float = 10.0,
        store_timeout: float = 5.0,
        receipt_prefix: str = "rcpt",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.verifier = verifier
        self.catalog = catalog
        self.users = users or UserDirectory(uow_factory)
        self._gateway_timeout = gateway_timeout
        self._store_timeout = store_timeout
        self._receipt_prefix = receipt_prefix
        self._now = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------

    async def _in_store(
        self,
        operation: str,
        fn: Callable[[AbstractUnitOfWork], Awaitable[T]],
        *,
        readonly: bool = False,
    ) -> T:
        """Run fn inside one unit of work; committed before returning."""
        async def _run() -> T:
            async with self._uow_factory(readonly=readonly) as uow:
                return await fn(uow)

        try:
            return await asyncio.wait_for(_run(), timeout=self._store_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("order_store_timeout", operation=operation, timeout=self._store_timeout)
            raise PersistenceException(f"{operation} timed out", operation=operation) from exc
        except OSError as exc:
            # Driver-level connection failures that escaped the repositories
            logger.error("order_store_unreachable", operation=operation, error=str(exc))
            raise PersistenceException(str(exc), operation=operation) from exc

    async def _transition(self, order_id: str, transition: OrderTransition) -> Order:
        return await self._in_store(
            "transition",
            lambda uow: uow.order_repository.transition(order_id, transition),
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_order(self, user_id: Optional[str], plan_id: Optional[str]) -> CreatedOrder:
        missing = _missing(planId=plan_id, userId=user_id)
        if missing:
            raise MissingFieldsException(missing)

        plan = self.catalog.resolve(plan_id)
        await self._ensure_user(user_id)

        receipt = build_receipt(self._receipt_prefix)
        gateway_order = await self._create_gateway_order(plan, receipt, user_id)

        order = Order.open(
            order_id=gateway_order.id,
            user_id=user_id,
            plan=plan,
            receipt=receipt,
            created_at=self._now(),
        )
        persisted = await self._persist_new_order(order)
        return CreatedOrder(order_id=order.order_id, plan=plan, persisted=persisted)

    async def _ensure_user(self, user_id: str) -> None:
        try:
            await asyncio.wait_for(self.users.ensure_user(user_id), timeout=self._store_timeout)
        except (BusinessException, OSError, asyncio.TimeoutError) as exc:
            # Directory write failures never block the payment flow
            logger.warning("user_ensure_failed", user_id=user_id, error=str(exc) or type(exc).__name__)

    async def _create_gateway_order(self, plan: Plan, receipt: str, user_id: str) -> GatewayOrder:
        req = GatewayOrderRequest(
            amount=plan.amount,
            currency=plan.currency,
            receipt=receipt,
            notes={"plan_id": plan.id, "user_id": user_id},
        )
        logger.info(
            "gateway_order_request",
            plan_id=plan.id,
            amount=req.amount,
            currency=req.currency,
            receipt=receipt,
        )
        try:
            gateway_order = await asyncio.wait_for(
                self.gateway.create_order(req), timeout=self._gateway_timeout
            )
        except asyncio.TimeoutError as exc:
            logger.error("gateway_order_timeout", plan_id=plan.id, receipt=receipt)
            raise PaymentRecoverableError(
                "Payment gateway timed out", provider=self.gateway.provider
            ) from exc
        except PaymentGatewayError as exc:
            logger.error("gateway_order_failed", plan_id=plan.id, receipt=receipt, error=exc.message)
            raise

        if gateway_order.amount != plan.amount or gateway_order.currency.upper() != plan.currency:
            logger.error(
                "gateway_order_amount_mismatch",
                order_id=gateway_order.id,
                expected=plan.amount,
                actual=gateway_order.amount,
                currency=gateway_order.currency,
            )
            raise PaymentProviderError(
                "Gateway order does not match plan price",
                provider=self.gateway.provider,
                details={"order_id": gateway_order.id},
            )
        logger.info("gateway_order_created", order_id=gateway_order.id, receipt=receipt)
        return gateway_order

    async def _persist_new_order(self, order: Order) -> bool:
        try:
            await self._in_store("create_order", lambda uow: uow.order_repository.create(order))
        except (PersistenceException, OrderAlreadyExistsException) as exc:
            # Availability over consistency: the gateway order exists, the
            # caller still gets its reference. Operators reconcile from this log.
            logger.error(
                "order_persist_failed",
                order_id=order.order_id,
                user_id=order.user_id,
                plan_id=order.plan_id,
                amount=order.amount,
                receipt=order.receipt,
                error=exc.message,
                needs_reconciliation=True,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def confirm_payment(
        self,
        order_id: Optional[str],
        payment_id: Optional[str],
        signature: Optional[str],
    ) -> VerificationOutcome:
        missing = _missing(order_id=order_id, payment_id=payment_id, signature=signature)
        if missing:
            raise MissingFieldsException(missing)

        now = self._now()
        if not self.verifier.verify(order_id, payment_id, signature):
            logger.warning(
                "payment_signature_mismatch",
                order_id=order_id,
                payment_id=payment_id,
                signature=mask_secret(signature),
            )
            await self._record_outcome(order_id, OrderTransition.rejected(reason=INVALID_SIGNATURE, at=now))
            return VerificationOutcome(
                success=False,
                order_id=order_id,
                payment_id=payment_id,
                error=INVALID_SIGNATURE,
            )

        logger.info("payment_signature_verified", order_id=order_id, payment_id=payment_id)
        await self._record_outcome(
            order_id,
            OrderTransition.received(payment_id=payment_id, signature=signature, at=now),
        )
        return VerificationOutcome(
            success=True,
            order_id=order_id,
            payment_id=payment_id,
            signature=signature,
        )

    async def _record_outcome(self, order_id: str, transition: OrderTransition) -> Optional[Order]:
        """Persist a verification outcome; store problems are logged only."""
        try:
            return await self._transition(order_id, transition)
        except OrderNotFoundException:
            logger.error(
                "order_missing_on_confirm",
                order_id=order_id,
                target=transition.status.value,
                needs_reconciliation=True,
            )
        except InvalidOrderTransitionException as exc:
            logger.error(
                "order_outcome_conflict",
                order_id=order_id,
                target=transition.status.value,
                current=(exc.details or {}).get("current"),
            )
        except PersistenceException as exc:
            logger.error(
                "order_outcome_persist_failed",
                order_id=order_id,
                target=transition.status.value,
                error=exc.message,
                needs_reconciliation=True,
            )
        return None

    # ------------------------------------------------------------------
    # Failure reports
    # ------------------------------------------------------------------

    async def report_failure(self, order_id: Optional[str], reason: Optional[str] = None) -> Order:
        """Gateway/client reported failure. Can only ever reject."""
        if not order_id:
            raise MissingFieldsException(["order_id"])
        reason = (reason or DEFAULT_FAILURE_REASON)[:FAILURE_REASON_MAX_LENGTH]
        try:
            order = await self._transition(order_id, OrderTransition.rejected(reason=reason, at=self._now()))
        except InvalidOrderTransitionException as exc:
            if (exc.details or {}).get("current") != OrderStatus.REJECTED.value:
                raise
            # Already rejected: the first recorded reason stands
            logger.info("payment_failure_already_rejected", order_id=order_id, reason=reason)
            return await self._in_store(
                "get_by_id",
                lambda uow: uow.order_repository.get_by_id(order_id),
                readonly=True,
            )
        logger.info("payment_failure_recorded", order_id=order_id, reason=reason)
        return order

    async def handle_webhook(self, body: bytes, signature: Optional[str]) -> WebhookEvent:
        if not self.verifier.accepts_webhooks:
            raise PaymentSignatureError("Webhook secret not configured", provider=self.gateway.provider)
        if not self.verifier.verify_webhook(body, signature):
            logger.warning("webhook_signature_mismatch", signature=mask_secret(signature))
            raise PaymentSignatureError("Invalid webhook signature", provider=self.gateway.provider)
        try:
            event = WebhookEvent.model_validate_json(body)
        except ValidationError as exc:
            raise DomainValidationException("Malformed webhook payload", field="body") from exc

        if event.event != "payment.failed":
            logger.info("webhook_ignored", event_type=event.event)
            return event

        entity = event.payment_entity()
        order_id = entity.get("order_id")
        if not order_id:
            logger.warning("webhook_missing_order_id", event_type=event.event, payment_id=entity.get("id"))
            return event
        reason = entity.get("error_description") or entity.get("error_reason")
        try:
            await self.report_failure(order_id, reason)
        except (OrderNotFoundException, InvalidOrderTransitionException) as exc:
            logger.warning("webhook_failure_not_applied", order_id=order_id, error=exc.message)
        return event

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def current_plan(self, user_id: str) -> Optional[Order]:
        """Latest Received order for the user; no expiry applies."""
        try:
            return await self._in_store(
                "latest_active_for_user",
                lambda uow: uow.order_repository.latest_active_for_user(user_id),
                readonly=True,
            )
        except PersistenceException as exc:
            logger.error("current_plan_unavailable", user_id=user_id, error=exc.message)
            return None

    async def payment_history(self, user_id: str) -> list[Order]:
        try:
            return await self._in_store(
                "list_by_user",
                lambda uow: uow.order_repository.list_by_user(user_id),
                readonly=True,
            )
        except PersistenceException as exc:
            logger.error("payment_history_unavailable", user_id=user_id, error=exc.message)
            return []

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_pending(
        self,
        *,
        older_than: timedelta,
        expire_after: timedelta,
        limit: int = 100,
    ) -> ReconcileReport:
        """Compare stale Pending orders with the gateway.

        Paid-at-gateway orders stay Pending: only a verified signature may
        mark an order Received, so they are reported for follow-up instead.
        """
        now = self._now()
        stale = await self._in_store(
            "list_stale_pending",
            lambda uow: uow.order_repository.list_stale_pending(now - older_than, limit),
            readonly=True,
        )
        report = ReconcileReport(scanned=len(stale))

        for order in stale:
            try:
                remote = await asyncio.wait_for(
                    self.gateway.fetch_order(order.order_id), timeout=self._gateway_timeout
                )
            except (PaymentGatewayError, asyncio.TimeoutError) as exc:
                report.errors += 1
                logger.warning("reconcile_fetch_failed", order_id=order.order_id, error=str(exc) or type(exc).__name__)
                continue

            if remote.status == GATEWAY_PAID_STATUS:
                report.paid_unconfirmed.append(order.order_id)
                logger.warning("reconcile_paid_unconfirmed", order_id=order.order_id, user_id=order.user_id)
                continue

            if order.created_at is None or now - order.created_at < expire_after:
                report.still_pending += 1
                continue

            try:
                await self._transition(order.order_id, OrderTransition.rejected(reason=EXPIRED_REASON, at=now))
            except InvalidOrderTransitionException:
                # Confirmed concurrently; nothing left to do
                logger.info("reconcile_already_final", order_id=order.order_id)
                continue
            except PersistenceException as exc:
                report.errors += 1
                logger.error("reconcile_expire_failed", order_id=order.order_id, error=exc.message)
                continue
            report.expired += 1

        logger.info(
            "reconcile_finished",
            scanned=report.scanned,
            expired=report.expired,
            still_pending=report.still_pending,
            paid_unconfirmed=len(report.paid_unconfirmed),
            errors=report.errors,
        )
        return report
