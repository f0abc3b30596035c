"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from ..tasks.email import send_order_status_email


class TaskDispatcher:
    """OrderNotifier backed by Celery: schedules status e-mails fire-and-forget."""

    def notify_status_changed(self, order_id: int, status: str, *, correlation_id: str | None = None) -> None:
        # apply_async honours task_always_eager in development
        send_order_status_email.apply_async(
            kwargs={"order_id": order_id, "status": status, "correlation_id": correlation_id},
        )
