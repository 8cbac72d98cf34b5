from application.dtos.payments import (
    FAILURE_REASON_MAX_LENGTH,
    CreateOrderRequest,
    PaymentFailedRequest,
    WebhookEvent,
)


def test_create_order_request_ignores_client_price():
    req = CreateOrderRequest.model_validate({"planId": "basic", "userId": "u1", "amount": 1})
    assert req.plan_id == "basic"
    assert req.user_id == "u1"
    assert not hasattr(req, "amount")


def test_failure_reason_from_string():
    assert PaymentFailedRequest(razorpay_order_id="o", error="declined").reason() == "declined"


def test_failure_reason_from_gateway_error_object():
    req = PaymentFailedRequest(
        razorpay_order_id="o",
        error={"code": "BAD_REQUEST_ERROR", "description": "Payment failed", "reason": "payment_failed"},
    )
    assert req.reason() == "Payment failed | payment_failed | BAD_REQUEST_ERROR"


def test_failure_reason_is_bounded():
    req = PaymentFailedRequest(razorpay_order_id="o", error="x" * 2000)
    assert len(req.reason()) == FAILURE_REASON_MAX_LENGTH


def test_failure_reason_empty():
    assert PaymentFailedRequest(razorpay_order_id="o").reason() is None
    assert PaymentFailedRequest(razorpay_order_id="o", error={}).reason() is None


def test_webhook_payment_entity():
    evt = WebhookEvent.model_validate({"event": "payment.failed", "payload": None})
    assert evt.payment_entity() == {}
