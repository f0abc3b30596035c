"""
Shared helpers for services that drive the reconciliation engine.

Side effects of domain events are dispatched only after the unit of work has
committed; a failing notifier is logged and never undoes reconciled state.
"""
from __future__ import annotations

from typing import Iterable, Optional

from application.ports.notifications import OrderNotifier
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.events import OrderStatusChanged
from domain.payment.method import PaymentMethodRegistry
from domain.reconciliation.engine import ReconciliationEngine
from domain.reconciliation.outcome import OutcomeKind, ReconciliationOutcome
from domain.reconciliation.policy import ReconciliationPolicy
from shared.codes.payment_codes import PROCESSOR_ERROR_CODES
from core.logging_config import get_logger


logger = get_logger(__name__)


def build_engine(
    uow: AbstractUnitOfWork,
    policy: ReconciliationPolicy,
    methods: PaymentMethodRegistry,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        ledger_repository=uow.ledger_repository,
        order_repository=uow.order_repository,
        review_repository=uow.review_repository,
        policy=policy,
        methods=methods,
    )


def is_processor_error(exc: BaseException) -> bool:
    return isinstance(exc, BusinessException) and exc.code in PROCESSOR_ERROR_CODES


def dispatch_events(
    notifier: Optional[OrderNotifier],
    events: Iterable[object],
    *,
    correlation_id: Optional[str] = None,
) -> None:
    for event in events:
        logger.info("reconciliation_event", event_name=type(event).__name__, **_event_fields(event))
        if notifier is None or not isinstance(event, OrderStatusChanged):
            continue
        try:
            notifier.notify_status_changed(event.order_id, event.status, correlation_id=correlation_id)
        except Exception as exc:
            logger.error(
                "order_notification_failed",
                order_id=event.order_id,
                status=event.status,
                error=str(exc),
                exc_info=True,
            )


def log_outcome(outcome: ReconciliationOutcome, event: str, **fields) -> None:
    fields.update(kind=outcome.kind.value, message=outcome.message, order_id=outcome.order_id)
    if outcome.kind == OutcomeKind.VALIDATION_ERRORS:
        logger.warning(event, errors=list(outcome.errors), **fields)
    elif outcome.is_benign:
        logger.info(f"{event}_noop", **fields)
    else:
        logger.info(event, **fields)


def _event_fields(event: object) -> dict:
    fields = {}
    for name in ("order_id", "charge_id", "transaction_type", "amount", "status"):
        if hasattr(event, name):
            fields[name] = getattr(event, name)
    return fields
