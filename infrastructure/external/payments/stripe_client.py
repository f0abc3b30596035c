"""
Stripe adapter using the official stripe-python SDK.

Notes on SDK usage:
- Module-level resources (`stripe.Event`, `stripe.Charge`, `stripe.PaymentIntent`,
  `stripe.checkout.Session`) are used with the module-level api key.
- Idempotency keys are supplied via the `idempotency_key` kwarg on create.
- Webhook payloads are never trusted: events are re-fetched by id.
"""
from __future__ import annotations

from collections.abc import Mapping
import uuid
from typing import Any, Optional

import stripe

from application.dtos.payments import (
    Charge,
    CheckoutSession,
    PaymentIntent,
    ProcessorEvent,
)
from domain.order.entity import Cart
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)
from core.settings import payment_settings
from shared.codes.payment_codes import PaymentCode


def _plain(obj: Any) -> Any:
    """StripeObject → 普通 dict（兼容不同 SDK 版本）"""
    for attr in ("to_dict_recursive", "to_dict"):
        convert = getattr(obj, attr, None)
        if callable(convert):
            return convert()
    if isinstance(obj, Mapping):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_plain(v) for v in obj]
    return obj


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(self, secret_key: Optional[str] = None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
        self._secret_key = secret_key if secret_key is not None else payment_settings.stripe.secret_key
        if self._secret_key:
            # Configure module-level key for compatibility across SDK variants
            stripe.api_key = self._secret_key
        if payment_settings.stripe.api_version:
            stripe.api_version = payment_settings.stripe.api_version

    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def _map_error(self, operation: str, exc: Exception) -> PaymentProviderError:
        code = getattr(exc, "code", None)
        details = {"operation": operation, "http_status": getattr(exc, "http_status", None)}
        if isinstance(exc, stripe.RateLimitError):
            return PaymentRecoverableError(
                str(exc), provider=self.provider, provider_code=code, details=details,
                code=PaymentCode.RATE_LIMITED,
            )
        if isinstance(exc, (stripe.APIConnectionError, stripe.APIError)):
            return PaymentRecoverableError(str(exc), provider=self.provider, provider_code=code, details=details)
        return PaymentProviderError(str(exc), provider=self.provider, provider_code=code, details=details)

    async def get_event(self, event_id: str) -> ProcessorEvent:
        event = await self._call("event.retrieve", stripe.Event.retrieve, event_id)
        result = ProcessorEvent.from_stripe(_plain(event))
        self._log("payment_event_fetched", event_id=result.id, event_type=result.type)
        return result

    async def get_charge(self, charge_id: str, previous_attributes: Optional[dict[str, Any]] = None) -> Charge:
        charge = await self._call("charge.retrieve", stripe.Charge.retrieve, charge_id)
        return Charge.from_stripe(_plain(charge), previous_attributes)

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent:
        pi = await self._call(
            "payment_intent.retrieve", stripe.PaymentIntent.retrieve, intent_id, expand=["latest_charge"]
        )
        intent = PaymentIntent.from_stripe(_plain(pi))
        self._log(
            "payment_intent_fetched",
            intent_id=intent.id,
            status=intent.status,
            internal_status=self._map_status(intent.status),
        )
        return intent

    async def get_checkout_session(self, session_id: str) -> CheckoutSession:
        session = await self._call("checkout_session.retrieve", stripe.checkout.Session.retrieve, session_id)
        return CheckoutSession.from_stripe(_plain(session))

    async def create_payment_intent(
        self,
        cart: Cart,
        *,
        method_type: str,
        payment_method_data: Optional[dict[str, Any]],
        return_url: str,
        confirm: bool,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        params: dict[str, Any] = {
            "amount": cart.total,
            "currency": cart.currency.lower(),
            "payment_method_types": [method_type],
            "metadata": {"cart_id": str(cart.id)},
        }
        if payment_method_data:
            params["payment_method_data"] = payment_method_data
        if confirm:
            params["confirm"] = True
            params["return_url"] = return_url
        # 在重试之前确定幂等键，使 tenacity 重试复用同一个键
        key = idempotency_key or f"pi-{cart.id}-{method_type}-{uuid.uuid4().hex}"
        pi = await self._call("payment_intent.create", stripe.PaymentIntent.create, idempotency_key=key, **params)
        intent = PaymentIntent.from_stripe(_plain(pi))
        self._log("payment_intent_created", intent_id=intent.id, cart_id=cart.id, method_type=method_type)
        return intent
