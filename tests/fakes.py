"""In-memory doubles for the repositories, unit of work and processor client."""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional

from application.dtos.payments import Charge, CheckoutSession, PaymentIntent, ProcessorEvent
from domain.common.exceptions import OrderAlreadyExistsException, OrderNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import CONFIRMING_TYPES, REFUND_TYPES, LedgerEntry, TransactionSource, TransactionType
from domain.ledger.repository import LedgerRepository
from domain.order.entity import Cart, CartLine, CreditNote, Order, OrderLine, OrderStatus
from domain.order.repository import CartRepository, OrderRepository
from domain.payment.attempt import PaymentAttempt, PaymentAttemptRepository
from domain.review.entity import ReviewRecord
from domain.review.repository import ReviewRepository
from shared.codes.payment_codes import PaymentCode
from infrastructure.external.payments.exceptions import PaymentRecoverableError


class InMemoryLedgerRepository(LedgerRepository):
    def __init__(self):
        self.entries: list[LedgerEntry] = []

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        saved = replace(entry, id=len(self.entries) + 1, created_at=datetime.now(timezone.utc))
        self.entries.append(saved)
        return saved

    async def find_pending_charge_transaction(self, charge_id: str) -> Optional[LedgerEntry]:
        if any(
            e.charge_id == charge_id and e.source == TransactionSource.WEBHOOK and e.type in CONFIRMING_TYPES
            for e in self.entries
        ):
            return None
        candidates = [
            e for e in self.entries
            if e.charge_id == charge_id
            and e.source == TransactionSource.FRONT_OFFICE
            and e.type == TransactionType.CHARGE
            and not self._order_settled(e.order_id)
        ]
        return candidates[-1] if candidates else None

    def _order_settled(self, order_id: int) -> bool:
        # intent-keyed pending entries carry charge_id == payment_intent_id
        return any(
            e.order_id == order_id and e.type == TransactionType.CHARGE and e.charge_id != e.payment_intent_id
            for e in self.entries
        )

    async def get_order_id_by_charge(self, charge_id: str) -> Optional[int]:
        for entry in self.entries:
            if entry.charge_id == charge_id:
                return entry.order_id
        return None

    async def get_refunded_amount(self, charge_id: str) -> int:
        return sum(e.amount for e in self.entries if e.charge_id == charge_id and e.type in REFUND_TYPES)

    async def get_last_four_digits_by_charge(self, charge_id: str) -> Optional[str]:
        for entry in reversed(self.entries):
            if entry.charge_id == charge_id and entry.card_last_digits:
                return entry.card_last_digits
        return None

    async def exists(self, charge_id, type, source=None) -> bool:
        return any(
            e.charge_id == charge_id and e.type == type and (source is None or e.source == source)
            for e in self.entries
        )

    def of_type(self, type: TransactionType) -> list[LedgerEntry]:
        return [e for e in self.entries if e.type == type]


class InMemoryOrderRepository(OrderRepository):
    def __init__(self):
        self.orders: dict[int, Order] = {}
        self.history: list[tuple[int, str, str]] = []
        self.credit_notes: list[CreditNote] = []
        self.locked: list[int] = []

    def seed(self, order: Order) -> Order:
        if order.id is None:
            order.id = len(self.orders) + 1
        self.orders[order.id] = order
        return order

    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        if for_update:
            self.locked.append(order_id)
        return self.orders.get(order_id)

    async def get_by_cart_id(self, cart_id: int) -> Optional[Order]:
        for order in self.orders.values():
            if order.cart_id == cart_id:
                return order
        return None

    async def create(self, order: Order) -> Order:
        if await self.get_by_cart_id(order.cart_id) is not None:
            raise OrderAlreadyExistsException(order.cart_id)
        order.lines = [
            OrderLine(id=index, product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price)
            for index, line in enumerate(order.lines, start=1)
        ]
        return self.seed(order)

    async def change_status(self, order_id: int, status: OrderStatus) -> bool:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        if order.status == status:
            return False
        self.history.append((order_id, order.status.value, status.value))
        order.status = status
        return True

    async def add_credit_note(self, credit_note: CreditNote) -> CreditNote:
        credit_note.id = len(self.credit_notes) + 1
        self.credit_notes.append(credit_note)
        return credit_note


class InMemoryCartRepository(CartRepository):
    def __init__(self):
        self.carts: dict[int, Cart] = {}

    async def get_by_id(self, cart_id: int) -> Optional[Cart]:
        return self.carts.get(cart_id)


class InMemoryReviewRepository(ReviewRepository):
    def __init__(self):
        self.reviews: dict[int, ReviewRecord] = {}

    async def get_by_order_id(self, order_id: int) -> Optional[ReviewRecord]:
        return self.reviews.get(order_id)

    async def save(self, review: ReviewRecord) -> ReviewRecord:
        if review.id is None:
            review.id = len(self.reviews) + 1
        self.reviews[review.order_id] = review
        return review


class InMemoryAttemptRepository(PaymentAttemptRepository):
    def __init__(self):
        self.attempts: list[PaymentAttempt] = []

    async def add(self, attempt: PaymentAttempt) -> PaymentAttempt:
        attempt.id = len(self.attempts) + 1
        attempt.created_at = datetime.now(timezone.utc)
        self.attempts.append(attempt)
        return attempt

    async def get_active_by_cart(self, cart_id: int) -> Optional[PaymentAttempt]:
        active = [a for a in self.attempts if a.cart_id == cart_id and a.is_active]
        return active[-1] if active else None

    async def clear(self, cart_id: int) -> int:
        cleared = 0
        for attempt in self.attempts:
            if attempt.cart_id == cart_id and attempt.is_active:
                attempt.cleared_at = datetime.now(timezone.utc)
                cleared += 1
        return cleared


class InMemoryStore:
    """Shared state behind every FakeUnitOfWork created by one factory."""

    def __init__(self):
        self.ledger = InMemoryLedgerRepository()
        self.orders = InMemoryOrderRepository()
        self.carts = InMemoryCartRepository()
        self.reviews = InMemoryReviewRepository()
        self.attempts = InMemoryAttemptRepository()
        self.commits = 0
        self.rollbacks = 0

    def uow_factory(self, **kwargs) -> "FakeUnitOfWork":
        return FakeUnitOfWork(self, **kwargs)

    def add_cart(self, cart_id: int = 1, total: int = 5000, *, shipping: int = 500) -> Cart:
        cart = Cart(
            id=cart_id,
            currency="CHF",
            total=total,
            customer_id=42,
            shipping=shipping,
            lines=[CartLine(product_id=7, quantity=2, unit_price=(total - shipping) // 2)],
        )
        self.carts.carts[cart_id] = cart
        return cart

    def add_order(self, cart: Cart, *, status: OrderStatus = OrderStatus.PENDING, method: str = "Card") -> Order:
        order = Order.from_cart(cart, payment_method=method, total_paid=cart.total)
        order.status = status
        order.lines = [
            OrderLine(id=index, product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price)
            for index, line in enumerate(order.lines, start=1)
        ]
        return self.orders.seed(order)


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.store = store

    async def __aenter__(self) -> "FakeUnitOfWork":
        self.ledger_repository = self.store.ledger
        self.order_repository = self.store.orders
        self.cart_repository = self.store.carts
        self.review_repository = self.store.reviews
        self.attempt_repository = self.store.attempts
        return self

    async def commit(self) -> None:
        self.store.commits += 1
        self._committed = True

    async def rollback(self) -> None:
        self.store.rollbacks += 1


class StubProcessorClient:
    """ProcessorClient returning canned Stripe objects keyed by id."""

    provider = "stripe"

    def __init__(self, *, configured: bool = True):
        self.configured = configured
        self.events: dict[str, dict[str, Any]] = {}
        self.charges: dict[str, dict[str, Any]] = {}
        self.intents: dict[str, dict[str, Any]] = {}
        self.sessions: dict[str, dict[str, Any]] = {}
        self.created: list[dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None
        self.next_intent: Optional[dict[str, Any]] = None

    def is_configured(self) -> bool:
        return self.configured

    def _raise_if_failing(self):
        if self.fail_with is not None:
            raise self.fail_with

    def _lookup(self, store: dict, key: str, kind: str) -> dict[str, Any]:
        self._raise_if_failing()
        if key not in store:
            raise PaymentRecoverableError(f"No such {kind}: {key}", provider=self.provider,
                                          code=PaymentCode.PROVIDER_RECOVERABLE)
        return store[key]

    async def get_event(self, event_id: str) -> ProcessorEvent:
        return ProcessorEvent.from_stripe(self._lookup(self.events, event_id, "event"))

    async def get_charge(self, charge_id: str, previous_attributes=None) -> Charge:
        return Charge.from_stripe(self._lookup(self.charges, charge_id, "charge"), previous_attributes)

    async def get_payment_intent(self, intent_id: str) -> PaymentIntent:
        return PaymentIntent.from_stripe(self._lookup(self.intents, intent_id, "payment_intent"))

    async def get_checkout_session(self, session_id: str) -> CheckoutSession:
        return CheckoutSession.from_stripe(self._lookup(self.sessions, session_id, "checkout session"))

    async def create_payment_intent(self, cart, *, method_type, payment_method_data, return_url, confirm,
                                    idempotency_key=None) -> PaymentIntent:
        self._raise_if_failing()
        self.created.append({
            "cart_id": cart.id,
            "method_type": method_type,
            "payment_method_data": payment_method_data,
            "return_url": return_url,
            "confirm": confirm,
        })
        raw = self.next_intent or intent_payload(
            f"pi_{cart.id}", "requires_payment_method", cart.total, charge_id=None, cart_id=cart.id
        )
        if confirm and "next_action" not in raw:
            raw = {**raw, "status": "requires_action",
                   "next_action": {"redirect_to_url": {"url": f"https://pay.example/{raw['id']}"}}}
        self.intents[raw["id"]] = raw
        return PaymentIntent.from_stripe(raw)


class RecordingNotifier:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[int, str, Optional[str]]] = []

    def notify_status_changed(self, order_id: int, status: str, *, correlation_id: Optional[str] = None) -> None:
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.calls.append((order_id, status, correlation_id))


class RecordingClaimStore:
    def __init__(self, *, accept: bool = True):
        self.accept = accept
        self.claimed: list[str] = []
        self.released: list[str] = []

    async def claim(self, event_id: str) -> bool:
        self.claimed.append(event_id)
        return self.accept

    async def release(self, event_id: str) -> None:
        self.released.append(event_id)


def charge_payload(
    charge_id: str = "ch_1",
    *,
    amount: int = 5000,
    amount_refunded: int = 0,
    intent: Optional[str] = "pi_1",
    method_type: str = "card",
    last4: Optional[str] = "4242",
    metadata: Optional[dict] = None,
    refunds: Optional[list[dict]] = None,
) -> dict[str, Any]:
    details: dict[str, Any] = {"type": method_type}
    if last4:
        details["card"] = {"last4": last4}
    return {
        "id": charge_id,
        "object": "charge",
        "amount": amount,
        "amount_refunded": amount_refunded,
        "currency": "chf",
        "payment_intent": intent,
        "payment_method_details": details,
        "metadata": metadata or {},
        "refunds": {"data": refunds or []},
    }


def intent_payload(intent_id: str = "pi_1", status: str = "succeeded", amount: int = 5000,
                   *, charge_id: Optional[str] = "ch_1", cart_id: int = 1) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": intent_id,
        "object": "payment_intent",
        "status": status,
        "amount": amount,
        "amount_received": amount if status == "succeeded" else 0,
        "currency": "chf",
        "client_secret": f"{intent_id}_secret_x",
        "metadata": {"cart_id": str(cart_id)},
    }
    if charge_id:
        payload["latest_charge"] = {
            "id": charge_id,
            "payment_method_details": {"type": "card", "card": {"last4": "4242"}},
        }
    return payload


def event_payload(event_id: str, event_type: str, obj: dict[str, Any],
                  previous_attributes: Optional[dict] = None) -> dict[str, Any]:
    data: dict[str, Any] = {"object": obj}
    if previous_attributes is not None:
        data["previous_attributes"] = previous_attributes
    return {"id": event_id, "type": event_type, "livemode": False, "data": data}


def pending_entry(order_id: int, charge_id: str = "pi_1", amount: int = 5000,
                  method: str = "card") -> LedgerEntry:
    return LedgerEntry(
        charge_id=charge_id,
        order_id=order_id,
        type=TransactionType.CHARGE,
        source=TransactionSource.FRONT_OFFICE,
        amount=amount,
        source_type=method,
        payment_intent_id=charge_id,
    )
