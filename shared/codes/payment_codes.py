"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Reconciliation errors (2xxxx range shared with business errors)
    METADATA_MALFORMED = 21000
    METADATA_INVALID = 21001
    PARAMETER_MISMATCH = 21002
    INTENT_UNRESOLVED = 21003
    METHOD_UNAVAILABLE = 21004
    INTENT_STATUS_INVALID = 21005

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider→internal intent status mapping
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "requires_payment_method": "failed",
        "requires_confirmation": "pending",
        "requires_action": "pending",
        "processing": "pending",
        "requires_capture": "authorized",
        "succeeded": "succeeded",
        "canceled": "canceled",
    },
}


# Codes raised by processor client failures; the application treats them as
# "processor lookup failed" without importing infrastructure exceptions.
PROCESSOR_ERROR_CODES = frozenset({
    PaymentCode.PROVIDER_ERROR,
    PaymentCode.PROVIDER_RECOVERABLE,
    PaymentCode.TIMEOUT,
    PaymentCode.RATE_LIMITED,
})
