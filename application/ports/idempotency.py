"""
Event claim port.

A claim store lets one worker own a processor event id for a bounded time so
that concurrent deliveries of the same event do not race through the engine.
Ledger pre-checks remain the source of truth; the claim only narrows races.
"""
from __future__ import annotations

from typing import Protocol


class EventClaimStore(Protocol):
    async def claim(self, event_id: str) -> bool:
        """Return True if the caller now owns the event id."""
        ...

    async def release(self, event_id: str) -> None: ...


class NoopClaimStore:
    """Claim store used when no shared cache is configured: every claim succeeds."""

    async def claim(self, event_id: str) -> bool:
        return True

    async def release(self, event_id: str) -> None:
        return None
