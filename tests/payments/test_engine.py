import pytest

from application.dtos.payments import Charge, PaymentIntent, Review
from domain.ledger.entity import LedgerEntry, TransactionSource, TransactionType
from domain.order.entity import OrderStatus
from domain.payment.events import CreditNoteIssued, OrderStatusChanged
from domain.payment.method import PaymentMethodRegistry
from domain.reconciliation.classifier import ReconciliationAction
from domain.reconciliation.engine import ReconciliationEngine
from domain.reconciliation.outcome import OutcomeKind
from domain.reconciliation.policy import ReconciliationPolicy
from domain.review.entity import ReviewStatus
from tests.fakes import InMemoryOrderRepository, charge_payload, intent_payload, pending_entry


def _engine(store, policy=None):
    return ReconciliationEngine(
        store.ledger,
        store.orders,
        store.reviews,
        policy or ReconciliationPolicy(),
        PaymentMethodRegistry.default(),
    )


def _charge(**kwargs) -> Charge:
    previous = kwargs.pop("previous_attributes", None)
    return Charge.from_stripe(charge_payload(**kwargs), previous)


async def _paid_order(store, *, total=5000, charge_id="ch_1", status=OrderStatus.PAYMENT_ACCEPTED):
    cart = store.add_cart(total=total)
    order = store.add_order(cart, status=status)
    await store.ledger.append(LedgerEntry(
        charge_id=charge_id,
        order_id=order.id,
        type=TransactionType.CHARGE,
        source=TransactionSource.WEBHOOK,
        amount=total,
        source_type="card",
        card_last_digits="4242",
    ))
    return order


# ---- refunds ----

@pytest.mark.asyncio
async def test_full_refund_in_one_event(store):
    order = await _paid_order(store)
    engine = _engine(store)

    outcome = await engine.process_refund(_charge(amount_refunded=5000))

    assert outcome.kind == OutcomeKind.RESOLVED
    assert outcome.message == f"Full refund processed for order id {order.id}"
    refunds = store.ledger.of_type(TransactionType.FULL_REFUND)
    assert [(r.amount, r.source) for r in refunds] == [(5000, TransactionSource.WEBHOOK)]
    assert order.status == OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_two_refund_events_append_deltas(store):
    order = await _paid_order(store)
    engine = _engine(store)

    first = await engine.process_refund(_charge(amount_refunded=2000))
    assert first.message == f"Partial refund processed for order id {order.id}"
    assert order.status == OrderStatus.PARTIALLY_REFUNDED

    # 累计退款达到实付金额，第二笔即为全额退款
    second = await engine.process_refund(_charge(amount_refunded=5000))
    assert second.message == f"Full refund processed for order id {order.id}"

    partial = store.ledger.of_type(TransactionType.PARTIAL_REFUND)
    full = store.ledger.of_type(TransactionType.FULL_REFUND)
    assert [e.amount for e in partial] == [2000]
    assert [e.amount for e in full] == [3000]
    assert await store.ledger.get_refunded_amount("ch_1") == 5000
    assert order.status == OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_redelivered_refund_is_noop(store):
    await _paid_order(store)
    engine = _engine(store)

    await engine.process_refund(_charge(amount_refunded=2000))
    again = await engine.process_refund(_charge(amount_refunded=2000))

    assert again.kind == OutcomeKind.ALREADY_PROCESSED
    assert len(store.ledger.of_type(TransactionType.PARTIAL_REFUND)) == 1


@pytest.mark.asyncio
async def test_refund_locks_order_before_reading_refunded_amount(store, monkeypatch):
    order = await _paid_order(store)
    seen_locks = []
    read_refunded = store.ledger.get_refunded_amount

    async def _tracked(charge_id):
        seen_locks.append(list(store.orders.locked))
        return await read_refunded(charge_id)

    monkeypatch.setattr(store.ledger, "get_refunded_amount", _tracked)

    await _engine(store).process_refund(_charge(amount_refunded=2000))

    # 增量计算发生在订单行加锁之后
    assert seen_locks == [[order.id]]


@pytest.mark.asyncio
async def test_refund_beyond_total_is_rejected(store):
    await _paid_order(store)
    outcome = await _engine(store).process_refund(_charge(amount_refunded=6000))

    assert outcome.kind == OutcomeKind.VALIDATION_ERRORS
    assert store.ledger.of_type(TransactionType.FULL_REFUND) == []


@pytest.mark.asyncio
async def test_back_office_refund_is_skipped(store):
    order = await _paid_order(store)
    charge = _charge(
        amount_refunded=1000,
        refunds=[{"id": "re_1", "amount": 1000, "metadata": {"from_back_office": "true"}}],
    )

    outcome = await _engine(store).process_refund(charge)

    assert outcome.kind == OutcomeKind.SKIPPED
    assert outcome.message == "Not processed"
    assert len(store.ledger.entries) == 1


@pytest.mark.asyncio
async def test_only_new_refunds_are_checked_for_back_office_origin(store):
    await _paid_order(store)
    charge = _charge(
        amount_refunded=3000,
        refunds=[
            {"id": "re_2", "amount": 2000, "metadata": {}},
            {"id": "re_1", "amount": 1000, "metadata": {"from_back_office": "true"}},
        ],
        previous_attributes={"refunds": {"data": [{"id": "re_1"}]}},
    )

    outcome = await _engine(store).process_refund(charge)

    assert outcome.kind == OutcomeKind.RESOLVED
    assert [e.amount for e in store.ledger.of_type(TransactionType.PARTIAL_REFUND)] == [3000]


@pytest.mark.asyncio
async def test_refund_for_unknown_charge(store):
    outcome = await _engine(store).process_refund(_charge(charge_id="ch_unknown", intent=None, amount_refunded=100))
    assert outcome.kind == OutcomeKind.NOT_FOUND
    assert outcome.message == "Order not found for charge ch_unknown"


@pytest.mark.asyncio
async def test_full_refund_issues_credit_note_when_enabled(store):
    order = await _paid_order(store)
    engine = _engine(store, ReconciliationPolicy(generate_credit_note=True))

    await engine.process_refund(_charge(amount_refunded=5000))

    [note] = store.orders.credit_notes
    assert note.order_id == order.id
    assert note.amount == 5000
    assert note.shipping == 500
    assert note.quantities == {1: 2}
    assert any(isinstance(e, CreditNoteIssued) for e in engine.clear_events())


@pytest.mark.asyncio
async def test_partial_refund_never_issues_credit_note(store):
    await _paid_order(store)
    await _engine(store, ReconciliationPolicy(generate_credit_note=True)).process_refund(_charge(amount_refunded=100))
    assert store.orders.credit_notes == []


@pytest.mark.asyncio
async def test_disabled_status_toggle_still_appends_entry(store):
    order = await _paid_order(store)
    engine = _engine(store, ReconciliationPolicy(use_status_refund=False))

    await engine.process_refund(_charge(amount_refunded=5000))

    assert len(store.ledger.of_type(TransactionType.FULL_REFUND)) == 1
    assert order.status == OrderStatus.PAYMENT_ACCEPTED
    assert not any(isinstance(e, OrderStatusChanged) for e in engine.clear_events())


# ---- charge succeeded / failed ----

@pytest.mark.asyncio
async def test_charge_succeeded_without_pending_transaction(store):
    outcome = await _engine(store).process_succeeded(_charge(charge_id="ch_new", intent="pi_new"))

    assert outcome.kind == OutcomeKind.NOT_FOUND
    assert outcome.message == "No pending transaction for charge id ch_new"
    assert store.ledger.entries == []


@pytest.mark.asyncio
async def test_charge_succeeded_confirms_pending_by_intent_id(store):
    cart = store.add_cart()
    order = store.add_order(cart)
    await store.ledger.append(pending_entry(order.id, "pi_1"))
    engine = _engine(store)

    outcome = await engine.process_succeeded(_charge(charge_id="ch_1", intent="pi_1"))

    assert outcome.kind == OutcomeKind.RESOLVED
    assert outcome.message == f"Order id {order.id} validated"
    [confirmed] = [e for e in store.ledger.entries if e.source == TransactionSource.WEBHOOK]
    assert (confirmed.charge_id, confirmed.type, confirmed.amount) == ("ch_1", TransactionType.CHARGE, 5000)
    assert confirmed.source_type == "card"
    assert confirmed.card_last_digits == "4242"
    assert order.status == OrderStatus.PAYMENT_ACCEPTED
    assert [e.status for e in engine.clear_events() if isinstance(e, OrderStatusChanged)] == ["payment_accepted"]


@pytest.mark.asyncio
async def test_duplicate_charge_succeeded_is_already_processed(store):
    cart = store.add_cart()
    order = store.add_order(cart)
    await store.ledger.append(pending_entry(order.id))
    engine = _engine(store)

    await engine.process_succeeded(_charge())
    again = await engine.process_succeeded(_charge())

    assert again.kind == OutcomeKind.ALREADY_PROCESSED
    assert again.order_id == order.id
    webhook_charges = [e for e in store.ledger.of_type(TransactionType.CHARGE) if e.source == TransactionSource.WEBHOOK]
    assert len(webhook_charges) == 1
    assert len(store.orders.history) == 1


@pytest.mark.asyncio
async def test_charge_failed_cancels_pending_order(store):
    cart = store.add_cart()
    order = store.add_order(cart)
    await store.ledger.append(pending_entry(order.id))

    outcome = await _engine(store).process_failed(_charge())

    assert outcome.message == f"Order id {order.id} marked as cancelled"
    [failed] = store.ledger.of_type(TransactionType.CHARGE_FAIL)
    assert failed.amount == 0
    assert order.status == OrderStatus.CANCELED


@pytest.mark.asyncio
async def test_charge_failed_without_pending_transaction(store):
    outcome = await _engine(store).process_failed(_charge())
    assert outcome.kind == OutcomeKind.NOT_FOUND


@pytest.mark.asyncio
async def test_late_failure_of_earlier_attempt_keeps_paid_order(store):
    cart = store.add_cart()
    order = store.add_order(cart)
    await store.ledger.append(pending_entry(order.id))
    engine = _engine(store)

    paid = await engine.process_succeeded(_charge(charge_id="ch_2"))
    late = await engine.process_failed(_charge(charge_id="ch_1"))

    assert paid.kind == OutcomeKind.RESOLVED
    assert late.kind == OutcomeKind.NOT_FOUND
    assert store.ledger.of_type(TransactionType.CHARGE_FAIL) == []
    assert order.status == OrderStatus.PAYMENT_ACCEPTED
    assert len(store.orders.history) == 1


@pytest.mark.asyncio
async def test_failed_attempt_then_successful_retry(store):
    cart = store.add_cart()
    order = store.add_order(cart)
    await store.ledger.append(pending_entry(order.id))
    engine = _engine(store)

    failed = await engine.process_failed(_charge(charge_id="ch_1"))
    assert order.status == OrderStatus.CANCELED

    retry = await engine.process_succeeded(_charge(charge_id="ch_2"))

    assert (failed.kind, retry.kind) == (OutcomeKind.RESOLVED, OutcomeKind.RESOLVED)
    assert order.status == OrderStatus.PAYMENT_ACCEPTED


@pytest.mark.asyncio
async def test_second_pending_intent_does_not_settle_order(store):
    cart = store.add_cart()
    order = store.add_order(cart)
    await store.ledger.append(pending_entry(order.id, "pi_1"))
    await store.ledger.append(pending_entry(order.id, "pi_2"))

    outcome = await _engine(store).process_succeeded(_charge(charge_id="ch_1", intent="pi_1"))

    assert outcome.kind == OutcomeKind.RESOLVED
    assert order.status == OrderStatus.PAYMENT_ACCEPTED


@pytest.mark.asyncio
async def test_webhook_after_browser_confirmation_appends_nothing(store, methods):
    cart = store.add_cart()
    intent = PaymentIntent.from_stripe(intent_payload())
    engine = _engine(store)

    confirmed = await engine.finalize_success(cart, intent, methods.get("paypal"), source=TransactionSource.FRONT_OFFICE)
    succeeded = await engine.process_succeeded(_charge(method_type="paypal", last4=None))
    failed = await engine.process_failed(_charge(method_type="paypal", last4=None))

    assert succeeded.kind == OutcomeKind.ALREADY_PROCESSED
    assert succeeded.order_id == confirmed.order_id
    assert failed.kind == OutcomeKind.NOT_FOUND
    [entry] = store.ledger.entries
    assert (entry.charge_id, entry.source, entry.payment_intent_id) == ("ch_1", TransactionSource.FRONT_OFFICE, "pi_1")
    assert store.orders.orders[confirmed.order_id].status == OrderStatus.PAYMENT_ACCEPTED


@pytest.mark.asyncio
async def test_redirect_method_success_is_delegated(store):
    outcome = await _engine(store).process_succeeded(_charge(method_type="twint", last4=None))
    assert outcome.kind == OutcomeKind.DELEGATED
    assert store.ledger.entries == []


# ---- review / capture ----

@pytest.mark.asyncio
async def test_review_approved_appends_authorized_entry(store):
    order = await _paid_order(store, status=OrderStatus.PENDING)
    review = Review(id="prv_1", charge="ch_1", reason="approved")

    outcome = await _engine(store).process_approved(_charge(last4=None), review)

    assert outcome.message == f"Order id {order.id} authorized"
    [authorized] = store.ledger.of_type(TransactionType.AUTHORIZED)
    assert authorized.card_last_digits == "4242"
    assert store.reviews.reviews[order.id].status == ReviewStatus.AUTHORIZED
    # use_status_authorized 默认关闭
    assert order.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_review_approved_moves_status_when_enabled(store):
    order = await _paid_order(store, status=OrderStatus.PENDING)
    engine = _engine(store, ReconciliationPolicy(use_status_authorized=True))

    outcome = await engine.process_approved(_charge(), Review(id="prv_1", charge="ch_1", reason="approved"))

    assert outcome.message == f"Order id {order.id} marked as authorized"
    assert order.status == OrderStatus.AUTHORIZED


@pytest.mark.asyncio
async def test_review_closed_as_fraud_rejects_without_ledger_entry(store):
    order = await _paid_order(store)
    engine = _engine(store)
    before = list(store.ledger.entries)

    outcome = await engine.process_approved(_charge(), Review(id="prv_1", charge="ch_1", reason="refunded_as_fraud"))

    assert outcome.kind == OutcomeKind.RESOLVED
    assert store.ledger.entries == before
    record = store.reviews.reviews[order.id]
    assert (record.status, record.reason) == (ReviewStatus.REJECTED, "refunded_as_fraud")

    captured = await engine.process_captured(_charge())
    assert captured.kind == OutcomeKind.VALIDATION_ERRORS


@pytest.mark.asyncio
async def test_capture_appends_captured_entry_once(store):
    order = await _paid_order(store, status=OrderStatus.AUTHORIZED)
    engine = _engine(store)

    first = await engine.process_captured(_charge())
    second = await engine.process_captured(_charge())

    assert first.message == f"Captured payment for order id {order.id}"
    assert second.kind == OutcomeKind.ALREADY_PROCESSED
    assert len(store.ledger.of_type(TransactionType.CAPTURED)) == 1
    assert order.status == OrderStatus.CAPTURED
    assert store.reviews.reviews[order.id].status == ReviewStatus.CAPTURED


@pytest.mark.asyncio
async def test_back_office_capture_is_skipped(store):
    await _paid_order(store)
    outcome = await _engine(store).process_captured(_charge(metadata={"from_back_office": "1"}))
    assert outcome.kind == OutcomeKind.SKIPPED
    assert store.ledger.of_type(TransactionType.CAPTURED) == []


# ---- dispatch ----

@pytest.mark.asyncio
async def test_handle_ignores_unknown_events(store):
    outcome = await _engine(store).handle(ReconciliationAction.IGNORE, None, event_type="payment_intent.created")
    assert outcome.kind == OutcomeKind.IGNORED
    assert outcome.message == 'Ignoring event "payment_intent.created"'


@pytest.mark.asyncio
async def test_handle_without_charge(store):
    outcome = await _engine(store).handle(ReconciliationAction.PROCESS_APPROVED, None, event_type="review.closed")
    assert outcome.kind == OutcomeKind.NOT_FOUND


# ---- success path ----

@pytest.mark.asyncio
async def test_finalize_success_creates_order_once(store, methods):
    cart = store.add_cart()
    intent = PaymentIntent.from_stripe(intent_payload())
    engine = _engine(store)

    first = await engine.finalize_success(cart, intent, methods.get("twint"), source=TransactionSource.FRONT_OFFICE)
    second = await engine.finalize_success(cart, intent, methods.get("twint"), source=TransactionSource.WEBHOOK)

    assert first.kind == OutcomeKind.RESOLVED
    assert second.kind == OutcomeKind.ALREADY_PROCESSED
    assert second.order_id == first.order_id
    [entry] = store.ledger.of_type(TransactionType.CHARGE)
    assert (entry.charge_id, entry.source, entry.source_type) == ("ch_1", TransactionSource.FRONT_OFFICE, "twint")
    assert store.orders.orders[first.order_id].status == OrderStatus.PAYMENT_ACCEPTED
    assert store.orders.orders[first.order_id].payment_method == "Twint"


@pytest.mark.asyncio
async def test_finalize_success_reuses_pending_order(store, methods):
    cart = store.add_cart()
    order = store.add_order(cart)
    intent = PaymentIntent.from_stripe(intent_payload())

    outcome = await _engine(store).finalize_success(cart, intent, methods.get("card"), source=TransactionSource.WEBHOOK)

    assert outcome.order_id == order.id
    assert len(store.orders.orders) == 1


@pytest.mark.asyncio
async def test_finalize_success_rejects_amount_mismatch(store, methods):
    cart = store.add_cart(total=5000)
    intent = PaymentIntent.from_stripe(intent_payload(amount=4000))

    outcome = await _engine(store).finalize_success(cart, intent, methods.get("twint"), source=TransactionSource.WEBHOOK)

    assert outcome.kind == OutcomeKind.VALIDATION_ERRORS
    assert store.orders.orders == {}
    assert store.ledger.entries == []


class _RacingOrderRepository(InMemoryOrderRepository):
    """Another request creates the order between lookup and insert."""

    def __init__(self):
        super().__init__()
        self._raced = False

    async def get_by_cart_id(self, cart_id):
        if not self._raced:
            return None
        return await super().get_by_cart_id(cart_id)

    async def create(self, order):
        self._raced = True
        await super().create(order)
        return await super().create(order)


@pytest.mark.asyncio
async def test_finalize_success_converges_on_concurrent_order(store, methods):
    cart = store.add_cart()
    store.orders = _RacingOrderRepository()
    intent = PaymentIntent.from_stripe(intent_payload())

    outcome = await _engine(store).finalize_success(cart, intent, methods.get("twint"), source=TransactionSource.WEBHOOK)

    assert outcome.kind == OutcomeKind.ALREADY_PROCESSED
    assert outcome.order_id is not None
    assert len(store.orders.orders) == 1
    assert store.ledger.entries == []


@pytest.mark.asyncio
async def test_record_pending_charge_is_keyed_by_intent(store, methods):
    cart = store.add_cart()
    intent = PaymentIntent.from_stripe(intent_payload(status="requires_payment_method", charge_id=None))
    engine = _engine(store)

    outcome = await engine.record_pending_charge(cart, intent, methods.get("card"))
    again = await engine.record_pending_charge(cart, intent, methods.get("card"))

    assert outcome.kind == OutcomeKind.RESOLVED
    assert again.kind == OutcomeKind.ALREADY_PROCESSED
    pending = await store.ledger.find_pending_charge_transaction("pi_1")
    assert pending is not None and pending.order_id == outcome.order_id
    assert store.orders.orders[outcome.order_id].status == OrderStatus.PENDING
