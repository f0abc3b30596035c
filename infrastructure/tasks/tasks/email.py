"""Email related Celery tasks"""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


STATUS_SUBJECTS = {
    "authorized": "Payment authorized for order #{order_id}",
    "payment_accepted": "Payment accepted for order #{order_id}",
    "captured": "Payment captured for order #{order_id}",
    "refunded": "Order #{order_id} has been refunded",
    "partially_refunded": "Order #{order_id} has been partially refunded",
    "canceled": "Payment failed for order #{order_id}",
}


def render_status_subject(order_id: int, status: str) -> str:
    template = STATUS_SUBJECTS.get(status, "Order #{order_id} status changed to {status}")
    return template.format(order_id=order_id, status=status)


@shared_task(
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def send_order_status_email(self, order_id: int, status: str, correlation_id: str | None = None) -> str:
    """Notify the customer that the order status changed.

    Replace the body with real email integration (SMTP/ESP).
    """
    subject = render_status_subject(order_id, status)
    logger.info(
        "send_order_status_email",
        order_id=order_id,
        status=status,
        subject=subject,
        mail_from=settings.celery.mail_from,
        correlation_id=correlation_id,
    )
    return subject
