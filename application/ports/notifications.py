"""
Notification port for side effects of order status changes.

Dispatch happens after the reconciliation transaction commits; failures are
logged by the caller and never roll back reconciled state.
"""
from __future__ import annotations

from typing import Protocol


class OrderNotifier(Protocol):
    def notify_status_changed(self, order_id: int, status: str, *, correlation_id: str | None = None) -> None: ...
