import hashlib
import hmac

import pytest

from domain.payment.signature import SignatureVerifier


SECRET = "s3cr3t"


def _expected(order_id: str, payment_id: str) -> str:
    return hmac.new(SECRET.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def test_compute_matches_hmac_sha256_hex():
    v = SignatureVerifier(SECRET)
    assert v.compute("order_1", "pay_1") == _expected("order_1", "pay_1")


def test_verify_accepts_valid_signature():
    v = SignatureVerifier(SECRET)
    assert v.verify("order_1", "pay_1", _expected("order_1", "pay_1")) is True


@pytest.mark.parametrize("provided", ["", None, "deadbeef", "ü" * 64])
def test_verify_rejects_bad_signature(provided):
    v = SignatureVerifier(SECRET)
    assert v.verify("order_1", "pay_1", provided) is False


def test_signature_is_bound_to_both_ids():
    v = SignatureVerifier(SECRET)
    sig = v.compute("order_1", "pay_1")
    assert v.verify("order_1", "pay_2", sig) is False
    assert v.verify("order_2", "pay_1", sig) is False


def test_empty_secret_rejected():
    with pytest.raises(ValueError):
        SignatureVerifier("")


def test_webhook_verification():
    v = SignatureVerifier(SECRET, webhook_secret="whsec")
    body = b'{"event":"payment.failed"}'
    sig = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()
    assert v.accepts_webhooks
    assert v.verify_webhook(body, sig) is True
    assert v.verify_webhook(body + b" ", sig) is False


def test_webhook_disabled_without_secret():
    v = SignatureVerifier(SECRET)
    assert not v.accepts_webhooks
    assert v.verify_webhook(b"{}", "anything") is False
