"""
Payment processor port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
Every call is bounded by the processor timeout configured in settings and
raises PaymentProviderError (or its recoverable subclass) on failure.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    Charge,
    CheckoutSession,
    PaymentIntent,
    ProcessorEvent,
)
from domain.order.entity import Cart


@runtime_checkable
class ProcessorClient(Protocol):
    """Client protocol for the card processor.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    def is_configured(self) -> bool: ...

    async def get_event(self, event_id: str) -> ProcessorEvent: ...

    async def get_charge(self, charge_id: str, previous_attributes: Optional[dict[str, Any]] = None) -> Charge: ...

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent: ...

    async def get_checkout_session(self, session_id: str) -> CheckoutSession: ...

    async def create_payment_intent(
        self,
        cart: Cart,
        *,
        method_type: str,
        payment_method_data: Optional[dict[str, Any]],
        return_url: str,
        confirm: bool,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent: ...
