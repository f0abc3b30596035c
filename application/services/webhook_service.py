"""
Webhook 应用服务 - 处理渠道推送的事件通知

请求体只用于取得事件ID，事件内容一律按ID向渠道重新获取（防伪造）。
预期内的分支以 ReconciliationOutcome 返回；渠道调用失败等异常在记录日志后继续抛出，
由传输层返回非 2xx 以触发渠道的自动重投。
"""
from __future__ import annotations

import json
from typing import Callable, Optional

from application.dtos.payments import Charge, ProcessorEvent, Review
from application.ports.idempotency import EventClaimStore, NoopClaimStore
from application.ports.notifications import OrderNotifier
from application.ports.payment_gateway import ProcessorClient
from application.services.confirmation_service import ConfirmationService
from application.services.reconciliation_support import build_engine, dispatch_events, log_outcome
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.method import PaymentMethodRegistry
from domain.reconciliation.classifier import ReconciliationAction, classify
from domain.reconciliation.outcome import OutcomeKind, ReconciliationOutcome
from domain.reconciliation.policy import ReconciliationPolicy


logger = get_logger(__name__)


class WebhookService:
    """Webhook 通知处理"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        client: ProcessorClient,
        methods: PaymentMethodRegistry,
        policy: ReconciliationPolicy,
        confirmation: ConfirmationService,
        *,
        claims: Optional[EventClaimStore] = None,
        notifier: Optional[OrderNotifier] = None,
    ):
        self._uow_factory = uow_factory
        self._client = client
        self._methods = methods
        self._policy = policy
        self._confirmation = confirmation
        self._claims = claims or NoopClaimStore()
        self._notifier = notifier

    @staticmethod
    def parse_event_id(body: bytes | str) -> tuple[Optional[str], Optional[str]]:
        """从请求体提取事件ID，返回 (event_id, error)"""
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        if not body or not body.strip():
            return None, "Empty payload"
        try:
            payload = json.loads(body)
        except ValueError:
            return None, "Failed to parse input"
        if not isinstance(payload, dict):
            return None, "Failed to parse input"
        event_id = payload.get("id")
        if not isinstance(event_id, str) or not event_id:
            return None, "Payload does not contain event id"
        return event_id, None

    async def handle(self, body: bytes | str, *, correlation_id: Optional[str] = None) -> ReconciliationOutcome:
        if not self._client.is_configured():
            logger.error("webhook_processor_not_configured", correlation_id=correlation_id)
            return ReconciliationOutcome.invalid(["Invalid stripe configuration"])

        event_id, error = self.parse_event_id(body)
        if error:
            logger.warning("webhook_payload_rejected", reason=error, correlation_id=correlation_id)
            return ReconciliationOutcome.invalid([error])

        if not await self._claims.claim(event_id):
            outcome = ReconciliationOutcome.already_processed(f"Event {event_id} is already being processed")
            log_outcome(outcome, "webhook_reconciled", event_id=event_id, correlation_id=correlation_id)
            return outcome

        try:
            outcome = await self._process(event_id, correlation_id)
        except Exception:
            await self._claims.release(event_id)
            logger.error("webhook_processing_failed", event_id=event_id, correlation_id=correlation_id, exc_info=True)
            raise
        return outcome

    async def _process(self, event_id: str, correlation_id: Optional[str]) -> ReconciliationOutcome:
        event = await self._client.get_event(event_id)
        action = classify(event.type)
        logger.info(
            "webhook_event_fetched",
            event_id=event.id,
            event_type=event.type,
            action=action.value,
            livemode=event.livemode,
            correlation_id=correlation_id,
        )

        charge: Optional[Charge] = None
        review: Optional[Review] = None
        if action != ReconciliationAction.IGNORE:
            charge, review = await self._load_charge(event)

        async with self._uow_factory() as uow:
            engine = build_engine(uow, self._policy, self._methods)
            outcome = await engine.handle(action, charge, review=review, event_type=event.type)
            events = engine.clear_events()
        dispatch_events(self._notifier, events, correlation_id=correlation_id)

        if outcome.kind == OutcomeKind.DELEGATED:
            log_outcome(outcome, "webhook_delegated", event_id=event.id, correlation_id=correlation_id)
            outcome = await self._confirmation.reconcile_charge(charge, correlation_id=correlation_id)

        log_outcome(
            outcome,
            "webhook_reconciled",
            event_id=event.id,
            event_type=event.type,
            charge_id=charge.id if charge else None,
            correlation_id=correlation_id,
        )
        return outcome

    async def _load_charge(self, event: ProcessorEvent) -> tuple[Optional[Charge], Optional[Review]]:
        if event.type.startswith("review."):
            review = Review.from_stripe(event.data_object)
            if not review.charge:
                return None, review
            return await self._client.get_charge(review.charge), review
        return Charge.from_stripe(event.data_object, event.previous_attributes), None
