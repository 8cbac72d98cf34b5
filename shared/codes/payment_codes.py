"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003

    # Catalog errors (61xxx)
    UNKNOWN_PLAN = 61000


# Provider→internal order status mapping (Razorpay order.status)
PROVIDER_STATUS_TO_INTERNAL = {
    "razorpay": {
        "created": "pending",
        "attempted": "pending",
        "paid": "paid",
    },
}
