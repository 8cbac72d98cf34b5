"""
Payments API routes.

Paths and JSON shapes match the web client (camelCase keys, root-level
paths). Keep this thin: orchestration lives in OrderLifecycleService.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.dependencies import get_order_service, get_plan_catalog
from application.dtos.payments import (
    ActivePlanView,
    CreateOrderRequest,
    CreateOrderResponse,
    CurrentPlanResponse,
    OrderView,
    PaymentFailedRequest,
    PlanView,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from application.services.order_service import OrderLifecycleService
from domain.common.exceptions import MissingFieldsException
from domain.payment.entity import Order
from domain.payment.plan import Plan, PlanCatalog
from core.logging_config import get_logger


router = APIRouter(tags=["Payments"])
logger = get_logger(__name__)


def _plan_view(plan: Plan) -> PlanView:
    return PlanView(
        id=plan.id,
        name=plan.name,
        description=plan.description,
        amount=plan.amount,
        currency=plan.currency,
    )


def _order_view(order: Order) -> OrderView:
    return OrderView(
        order_id=order.order_id,
        user_id=order.user_id,
        plan_id=order.plan_id,
        plan_name=order.plan_name,
        amount=order.amount,
        currency=order.currency,
        status=order.status.value,
        receipt=order.receipt,
        created_at=order.created_at,
        verified_at=order.verified_at,
        payment_id=order.payment_id,
        signature=order.signature,
        failure_reason=order.failure_reason,
    )


@router.get("/plans", summary="List premium plans", response_model=list[PlanView])
async def list_plans(catalog: PlanCatalog = Depends(get_plan_catalog)):
    return [_plan_view(p) for p in catalog.all()]


@router.post("/create-order", summary="Create gateway order", response_model=CreateOrderResponse)
async def create_order(
    payload: CreateOrderRequest,
    service: OrderLifecycleService = Depends(get_order_service),
):
    created = await service.create_order(payload.user_id, payload.plan_id)
    return CreateOrderResponse(
        order_id=created.order_id,
        amount=created.amount,
        currency=created.currency,
        plan=_plan_view(created.plan),
    )


@router.post(
    "/verify-payment",
    summary="Verify payment signature",
    response_model=VerifyPaymentResponse,
    response_model_exclude_none=True,
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": VerifyPaymentRequest.model_json_schema()}},
        }
    },
)
async def verify_payment(
    request: Request,
    service: OrderLifecycleService = Depends(get_order_service),
):
    # Parsed here so malformed bodies get the same 400 shape as bad signatures
    try:
        payload = VerifyPaymentRequest.model_validate_json(await request.body() or b"{}")
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        return _verification_failed(
            f"Invalid fields: {', '.join(fields)}" if fields else "Invalid request body"
        )

    try:
        outcome = await service.confirm_payment(
            payload.razorpay_order_id,
            payload.razorpay_payment_id,
            payload.razorpay_signature,
        )
    except MissingFieldsException as exc:
        return _verification_failed(exc.message)

    if not outcome.success:
        return _verification_failed(outcome.error)
    return VerifyPaymentResponse(
        success=True,
        order_id=outcome.order_id,
        payment_id=outcome.payment_id,
        signature=outcome.signature,
    )


def _verification_failed(error: Optional[str]) -> JSONResponse:
    body = VerifyPaymentResponse(success=False, error=error)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@router.post("/payment-failed", summary="Record client-reported payment failure")
async def payment_failed(
    payload: PaymentFailedRequest,
    service: OrderLifecycleService = Depends(get_order_service),
):
    await service.report_failure(payload.razorpay_order_id, payload.reason())
    return {"success": True}


@router.get(
    "/user-payment-history/{user_id}",
    summary="Payment history, newest first",
    response_model=list[OrderView],
)
async def user_payment_history(
    user_id: str,
    service: OrderLifecycleService = Depends(get_order_service),
):
    orders = await service.payment_history(user_id)
    return [_order_view(o) for o in orders]


@router.get("/user-plan/{user_id}", summary="Current premium plan", response_model=CurrentPlanResponse)
async def user_plan(
    user_id: str,
    service: OrderLifecycleService = Depends(get_order_service),
):
    order = await service.current_plan(user_id)
    if order is None:
        return CurrentPlanResponse(current_plan=None)
    return CurrentPlanResponse(
        current_plan=ActivePlanView(
            plan_id=order.plan_id,
            plan_name=order.plan_name,
            amount=order.amount,
            currency=order.currency,
            order_id=order.order_id,
            payment_id=order.payment_id,
            activated_at=order.verified_at,
        )
    )


@router.post("/webhooks/razorpay", summary="Razorpay webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(default=None),
    service: OrderLifecycleService = Depends(get_order_service),
):
    raw_body = await request.body()
    event = await service.handle_webhook(raw_body, x_razorpay_signature)
    # 200 acknowledges receipt; the gateway retries anything else
    return {"received": True, "event": event.event}
