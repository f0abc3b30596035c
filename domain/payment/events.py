"""
Reconciliation domain events.

Dataclass events record the facts produced by one unit of reconciliation work
so the application can dispatch side effects (status e-mails) after commit.
Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class ReconciliationEvent:
    order_id: int
    charge_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class LedgerEntryRecorded(ReconciliationEvent):
    transaction_type: str = ""
    amount: int = 0


@dataclass
class OrderStatusChanged(ReconciliationEvent):
    status: str = ""


@dataclass
class CreditNoteIssued(ReconciliationEvent):
    amount: int = 0
