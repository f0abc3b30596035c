"""
Payment processor DTOs (Pydantic v2) used at application boundaries.

Processor objects are normalised from Stripe's wire shape into these models
by the `from_stripe` constructors; amounts are integer minor currency units.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional
from pydantic import BaseModel, Field, ConfigDict


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Dict-style access that tolerates StripeObject, dicts and None."""
    if obj is None:
        return default
    try:
        value = obj.get(key, default)
    except AttributeError:
        value = getattr(obj, key, default)
    return default if value is None else value


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return {str(k): v for k, v in obj.items()}
    return dict(obj)


class ProcessorEvent(BaseModel):
    id: str
    type: str
    data_object: dict[str, Any] = Field(default_factory=dict)
    previous_attributes: dict[str, Any] = Field(default_factory=dict)
    livemode: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def from_stripe(cls, event: Any) -> "ProcessorEvent":
        data = _get(event, "data", {})
        return cls(
            id=str(_get(event, "id", "")),
            type=str(_get(event, "type", "")),
            data_object=_as_dict(_get(data, "object", {})),
            previous_attributes=_as_dict(_get(data, "previous_attributes", {})),
            livemode=bool(_get(event, "livemode", False)),
        )


class RefundItem(BaseModel):
    id: str
    amount: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def from_back_office(self) -> bool:
        return str(self.metadata.get("from_back_office", "")).lower() == "true"


class Charge(BaseModel):
    id: str
    amount: int = 0
    amount_refunded: int = 0
    currency: str = ""
    payment_intent: Optional[str] = None
    payment_method_type: Optional[str] = None
    card_last4: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    refunds: list[RefundItem] = Field(default_factory=list)
    previous_refund_ids: list[str] = Field(default_factory=list)

    @property
    def from_back_office(self) -> bool:
        return bool(self.metadata.get("from_back_office"))

    @property
    def cart_id(self) -> Optional[int]:
        raw = self.metadata.get("cart_id")
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    def new_refunds(self) -> list[RefundItem]:
        """Refunds not already present before this event."""
        previous = set(self.previous_refund_ids)
        return [r for r in self.refunds if r.id not in previous]

    @classmethod
    def from_stripe(cls, charge: Any, previous_attributes: Optional[Mapping[str, Any]] = None) -> "Charge":
        details = _get(charge, "payment_method_details", {})
        last4 = _get(_get(details, "card", {}), "last4") or _get(_get(charge, "source", {}), "last4")
        refunds = [
            RefundItem(
                id=str(_get(r, "id", "")),
                amount=int(_get(r, "amount", 0)),
                metadata=_as_dict(_get(r, "metadata", {})),
            )
            for r in _get(_get(charge, "refunds", {}), "data", []) or []
        ]
        previous_ids = [
            str(_get(r, "id", ""))
            for r in _get(_get(previous_attributes or {}, "refunds", {}), "data", []) or []
        ]
        intent = _get(charge, "payment_intent")
        if intent is not None and not isinstance(intent, str):
            intent = _get(intent, "id")
        return cls(
            id=str(_get(charge, "id", "")),
            amount=int(_get(charge, "amount", 0)),
            amount_refunded=int(_get(charge, "amount_refunded", 0)),
            currency=str(_get(charge, "currency", "")).upper(),
            payment_intent=intent,
            payment_method_type=_get(details, "type"),
            card_last4=str(last4) if last4 else None,
            metadata=_as_dict(_get(charge, "metadata", {})),
            refunds=refunds,
            previous_refund_ids=previous_ids,
        )


class Review(BaseModel):
    id: str
    charge: Optional[str] = None
    reason: Optional[str] = None
    open: bool = False

    @classmethod
    def from_stripe(cls, review: Any) -> "Review":
        charge = _get(review, "charge")
        if charge is not None and not isinstance(charge, str):
            charge = _get(charge, "id")
        return cls(
            id=str(_get(review, "id", "")),
            charge=charge,
            reason=_get(review, "reason"),
            open=bool(_get(review, "open", False)),
        )


class PaymentIntent(BaseModel):
    id: str
    status: str
    amount: int = 0
    amount_received: int = 0
    currency: str = ""
    latest_charge: Optional[str] = None
    card_last4: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    object: str = "payment_intent"

    @property
    def charge_id(self) -> str:
        """Ledger key of this intent: its latest charge, or the intent itself."""
        return self.latest_charge or self.id

    @classmethod
    def from_stripe(cls, pi: Any) -> "PaymentIntent":
        latest = _get(pi, "latest_charge")
        last4 = None
        if latest is not None and not isinstance(latest, str):
            last4 = _get(_get(_get(latest, "payment_method_details", {}), "card", {}), "last4")
            latest = _get(latest, "id")
        next_action = _get(pi, "next_action", {})
        redirect = _get(_get(next_action, "redirect_to_url", {}), "url")
        return cls(
            id=str(_get(pi, "id", "")),
            status=str(_get(pi, "status", "")),
            amount=int(_get(pi, "amount", 0)),
            amount_received=int(_get(pi, "amount_received", 0)),
            currency=str(_get(pi, "currency", "")).upper(),
            latest_charge=latest,
            card_last4=last4,
            client_secret=_get(pi, "client_secret"),
            redirect_url=redirect,
            metadata=_as_dict(_get(pi, "metadata", {})),
        )


class CheckoutSession(BaseModel):
    id: str
    payment_intent: Optional[str] = None
    status: Optional[str] = None
    url: Optional[str] = None
    object: str = "checkout.session"

    @classmethod
    def from_stripe(cls, session: Any) -> "CheckoutSession":
        intent = _get(session, "payment_intent")
        if intent is not None and not isinstance(intent, str):
            intent = _get(intent, "id")
        return cls(
            id=str(_get(session, "id", "")),
            payment_intent=intent,
            status=_get(session, "status"),
            url=_get(session, "url"),
        )


class CheckoutStart(BaseModel):
    """Result of starting a payment for the active cart."""
    method_id: str
    kind: str
    redirect_url: Optional[str] = None
    client_secret: Optional[str] = None
    token: Optional[str] = None
