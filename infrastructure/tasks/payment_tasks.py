"""
Celery tasks for payment compensation workflows: reconciliation of stale
Pending orders against the gateway.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Optional

from application.services.order_service import OrderLifecycleService, ReconcileReport
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.payment.signature import SignatureVerifier
from infrastructure.database import dispose_engine
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from .config.celery import celery_app
from .utils.base_task import BaseTask


logger = get_logger(__name__)


async def run_reconciliation(
    *,
    older_than_minutes: Optional[int] = None,
    expire_after_minutes: Optional[int] = None,
    limit: Optional[int] = None,
    service: Optional[OrderLifecycleService] = None,
) -> ReconcileReport:
    """One reconciliation pass with its own gateway client."""
    cfg = payment_settings.reconcile
    owns_service = service is None
    if owns_service:
        service = OrderLifecycleService(
            uow_factory=SQLAlchemyUnitOfWork,
            gateway=get_payment_gateway(),
            verifier=SignatureVerifier(
                payment_settings.razorpay.key_secret or "",
                webhook_secret=payment_settings.razorpay.webhook_secret,
            ),
            gateway_timeout=payment_settings.timeouts.gateway,
            store_timeout=payment_settings.timeouts.store,
            receipt_prefix=payment_settings.receipt_prefix,
        )
    try:
        return await service.reconcile_pending(
            older_than=timedelta(minutes=older_than_minutes or cfg.older_than_minutes),
            expire_after=timedelta(minutes=expire_after_minutes or cfg.expire_after_minutes),
            limit=limit or cfg.batch_size,
        )
    finally:
        if owns_service:
            await service.gateway.aclose()
            # Pool connections are bound to this event loop
            await dispose_engine()


@celery_app.task(name="payments.reconcile_pending", base=BaseTask, bind=True, max_retries=3, default_retry_delay=60)
def task_reconcile_pending(
    self,
    older_than_minutes: Optional[int] = None,
    expire_after_minutes: Optional[int] = None,
    limit: Optional[int] = None,
):
    try:
        report = asyncio.run(
            run_reconciliation(
                older_than_minutes=older_than_minutes,
                expire_after_minutes=expire_after_minutes,
                limit=limit,
            )
        )
    except Exception as exc:  # pragma: no cover
        logger.error("payment_reconcile_failed", error=str(exc))
        raise self.retry(exc=exc)
    return {
        "scanned": report.scanned,
        "expired": report.expired,
        "still_pending": report.still_pending,
        "errors": report.errors,
        "paid_unconfirmed": report.paid_unconfirmed,
    }
