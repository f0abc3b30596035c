import json

import pytest

from application.services.confirmation_service import ConfirmationService
from application.services.webhook_service import WebhookService
from domain.ledger.entity import LedgerEntry, TransactionSource, TransactionType
from domain.order.entity import OrderStatus
from domain.payment.metadata import MetadataType, PaymentMetadata
from domain.reconciliation.outcome import OutcomeKind
from infrastructure.external.payments.exceptions import PaymentRecoverableError
from tests.fakes import (
    RecordingClaimStore,
    StubProcessorClient,
    charge_payload,
    event_payload,
    intent_payload,
    pending_entry,
)


def _service(store, client, codec, methods, policy, *, claims=None, notifier=None):
    confirmation = ConfirmationService(store.uow_factory, client, codec, methods, policy, notifier=notifier)
    return WebhookService(
        store.uow_factory, client, methods, policy, confirmation, claims=claims, notifier=notifier
    )


def _body(event_id="evt_1", **extra) -> bytes:
    return json.dumps({"id": event_id, **extra}).encode()


async def _paid_order(store):
    cart = store.add_cart()
    order = store.add_order(cart, status=OrderStatus.PAYMENT_ACCEPTED)
    await store.ledger.append(LedgerEntry(
        charge_id="ch_1",
        order_id=order.id,
        type=TransactionType.CHARGE,
        source=TransactionSource.WEBHOOK,
        amount=5000,
        source_type="card",
    ))
    return order


@pytest.mark.asyncio
async def test_unconfigured_processor(store, codec, methods, policy):
    service = _service(store, StubProcessorClient(configured=False), codec, methods, policy)
    outcome = await service.handle(_body())
    assert outcome.kind == OutcomeKind.VALIDATION_ERRORS
    assert outcome.message == "Invalid stripe configuration"


@pytest.mark.parametrize(
    "body, error",
    [
        (b"", "Empty payload"),
        (b"   ", "Empty payload"),
        (b"not json", "Failed to parse input"),
        (b"[1, 2]", "Failed to parse input"),
        (b'{"type": "charge.refunded"}', "Payload does not contain event id"),
        (b'{"id": 12}', "Payload does not contain event id"),
    ],
)
def test_parse_event_id_errors(body, error):
    assert WebhookService.parse_event_id(body) == (None, error)


@pytest.mark.asyncio
async def test_unparseable_body_is_reported(store, client, codec, methods, policy):
    outcome = await _service(store, client, codec, methods, policy).handle(b"not json")
    assert outcome.kind == OutcomeKind.VALIDATION_ERRORS
    assert outcome.message == "Failed to parse input"


@pytest.mark.asyncio
async def test_unknown_event_type_is_ignored(store, client, codec, methods, policy):
    client.events["evt_1"] = event_payload("evt_1", "payment_intent.created", {"id": "pi_1"})
    outcome = await _service(store, client, codec, methods, policy).handle(_body())
    assert outcome.kind == OutcomeKind.IGNORED
    assert outcome.message == 'Ignoring event "payment_intent.created"'


@pytest.mark.asyncio
async def test_embedded_payload_is_not_trusted(store, client, codec, methods, policy):
    await _paid_order(store)
    client.events["evt_1"] = event_payload("evt_1", "payment_intent.created", {"id": "pi_1"})
    spoofed = _body(type="charge.refunded", data={"object": charge_payload(amount_refunded=5000)})

    outcome = await _service(store, client, codec, methods, policy).handle(spoofed)

    assert outcome.kind == OutcomeKind.IGNORED
    assert store.ledger.of_type(TransactionType.FULL_REFUND) == []


@pytest.mark.asyncio
async def test_refund_event_is_reconciled_and_notified(store, client, codec, methods, policy, notifier):
    order = await _paid_order(store)
    client.events["evt_1"] = event_payload("evt_1", "charge.refunded", charge_payload(amount_refunded=5000))

    outcome = await _service(store, client, codec, methods, policy, notifier=notifier).handle(
        _body(), correlation_id="req-9"
    )

    assert outcome.message == f"Full refund processed for order id {order.id}"
    assert notifier.calls == [(order.id, "refunded", "req-9")]
    assert store.commits == 1


@pytest.mark.asyncio
async def test_duplicate_delivery_is_noop(store, client, codec, methods, policy):
    await _paid_order(store)
    client.events["evt_1"] = event_payload("evt_1", "charge.refunded", charge_payload(amount_refunded=2000))
    service = _service(store, client, codec, methods, policy)

    await service.handle(_body())
    again = await service.handle(_body())

    assert again.kind == OutcomeKind.ALREADY_PROCESSED
    assert len(store.ledger.of_type(TransactionType.PARTIAL_REFUND)) == 1


@pytest.mark.asyncio
async def test_claimed_event_is_not_processed_twice(store, client, codec, methods, policy):
    claims = RecordingClaimStore(accept=False)
    outcome = await _service(store, client, codec, methods, policy, claims=claims).handle(_body())
    assert outcome.kind == OutcomeKind.ALREADY_PROCESSED
    assert outcome.message == "Event evt_1 is already being processed"


@pytest.mark.asyncio
async def test_processor_failure_releases_claim_and_propagates(store, client, codec, methods, policy):
    claims = RecordingClaimStore()
    service = _service(store, client, codec, methods, policy, claims=claims)

    with pytest.raises(PaymentRecoverableError):
        await service.handle(_body("evt_missing"))

    assert claims.claimed == ["evt_missing"]
    assert claims.released == ["evt_missing"]


@pytest.mark.asyncio
async def test_charge_succeeded_without_pending(store, client, codec, methods, policy):
    client.events["evt_1"] = event_payload("evt_1", "charge.succeeded", charge_payload())
    outcome = await _service(store, client, codec, methods, policy).handle(_body())
    assert outcome.kind == OutcomeKind.NOT_FOUND
    assert outcome.message == "No pending transaction for charge id ch_1"
    assert store.ledger.entries == []


@pytest.mark.asyncio
async def test_charge_succeeded_confirms_card_payment(store, client, codec, methods, policy):
    cart = store.add_cart()
    order = store.add_order(cart)
    await store.ledger.append(pending_entry(order.id, "pi_1"))
    client.events["evt_1"] = event_payload("evt_1", "charge.succeeded", charge_payload())

    outcome = await _service(store, client, codec, methods, policy).handle(_body())

    assert outcome.message == f"Order id {order.id} validated"
    assert order.status == OrderStatus.PAYMENT_ACCEPTED


@pytest.mark.parametrize("method_id", ["paypal", "card"])
@pytest.mark.asyncio
async def test_browser_confirmation_then_charge_succeeded(store, client, codec, methods, policy, method_id):
    cart = store.add_cart()
    if method_id == "card":
        # 3DS 回跳：结账时已建单并写入以支付意图为键的待确认流水
        order = store.add_order(cart)
        await store.ledger.append(pending_entry(order.id))
    client.intents["pi_1"] = intent_payload("pi_1", "succeeded", 5000)
    client.events["evt_1"] = event_payload("evt_1", "charge.succeeded", charge_payload(method_type=method_id))
    token = codec.encode(PaymentMetadata(type=MetadataType.PAYMENT_INTENT, id="pi_1", cart_id=1, method_id=method_id))
    confirmation = ConfirmationService(store.uow_factory, client, codec, methods, policy)

    confirmed = await confirmation.confirm(method_id, cart_id=1, token=token)
    outcome = await _service(store, client, codec, methods, policy).handle(_body())

    assert confirmed.kind == OutcomeKind.RESOLVED
    assert outcome.kind == OutcomeKind.ALREADY_PROCESSED
    assert outcome.order_id == confirmed.order_id
    charges = [e for e in store.ledger.of_type(TransactionType.CHARGE) if e.charge_id == "ch_1"]
    assert [e.source for e in charges] == [TransactionSource.FRONT_OFFICE]
    assert store.orders.orders[confirmed.order_id].status == OrderStatus.PAYMENT_ACCEPTED


@pytest.mark.asyncio
async def test_late_failure_after_paid_retry_is_noop(store, client, codec, methods, policy):
    cart = store.add_cart()
    order = store.add_order(cart)
    await store.ledger.append(pending_entry(order.id))
    client.events["evt_1"] = event_payload("evt_1", "charge.succeeded", charge_payload("ch_2"))
    client.events["evt_2"] = event_payload("evt_2", "charge.failed", charge_payload("ch_1"))
    service = _service(store, client, codec, methods, policy)

    paid = await service.handle(_body("evt_1"))
    late = await service.handle(_body("evt_2"))

    assert paid.message == f"Order id {order.id} validated"
    assert late.kind == OutcomeKind.NOT_FOUND
    assert late.message == "No pending transaction for charge id ch_1"
    assert store.ledger.of_type(TransactionType.CHARGE_FAIL) == []
    assert order.status == OrderStatus.PAYMENT_ACCEPTED


@pytest.mark.asyncio
async def test_redirect_charge_success_resolves_cart(store, client, codec, methods, policy, notifier):
    store.add_cart()
    client.intents["pi_1"] = intent_payload("pi_1", "succeeded", 5000)
    charge = charge_payload(method_type="twint", last4=None, metadata={"cart_id": "1"})
    client.events["evt_1"] = event_payload("evt_1", "charge.succeeded", charge)

    outcome = await _service(store, client, codec, methods, policy, notifier=notifier).handle(_body())

    assert outcome.kind == OutcomeKind.RESOLVED
    assert outcome.message == "Payment successfully processed"
    [entry] = store.ledger.of_type(TransactionType.CHARGE)
    assert entry.source == TransactionSource.WEBHOOK
    assert [status for _, status, _ in notifier.calls] == ["payment_accepted"]


@pytest.mark.asyncio
async def test_review_closed_fetches_charge(store, client, codec, methods, policy):
    order = await _paid_order(store)
    client.charges["ch_1"] = charge_payload()
    review = {"id": "prv_1", "object": "review", "charge": "ch_1", "reason": "approved", "open": False}
    client.events["evt_1"] = event_payload("evt_1", "review.closed", review)

    outcome = await _service(store, client, codec, methods, policy).handle(_body())

    assert outcome.message == f"Order id {order.id} authorized"
    assert len(store.ledger.of_type(TransactionType.AUTHORIZED)) == 1
