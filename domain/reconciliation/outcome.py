"""
对账结果 - 预期内的分支以判别结果返回，而不是抛出异常
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class OutcomeKind(str, Enum):
    RESOLVED = "resolved"
    ALREADY_PROCESSED = "already_processed"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"
    SKIPPED = "skipped"  # 后台发起的事件，本地已处理
    VALIDATION_ERRORS = "validation_errors"
    DELEGATED = "delegated"  # 交由确认路径处理


BENIGN_KINDS = frozenset({
    OutcomeKind.ALREADY_PROCESSED,
    OutcomeKind.NOT_FOUND,
    OutcomeKind.IGNORED,
    OutcomeKind.SKIPPED,
})


@dataclass(frozen=True)
class ReconciliationOutcome:
    kind: OutcomeKind
    message: str
    order_id: Optional[int] = None
    errors: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_benign(self) -> bool:
        return self.kind in BENIGN_KINDS

    @property
    def succeeded(self) -> bool:
        return self.kind in (OutcomeKind.RESOLVED, OutcomeKind.ALREADY_PROCESSED)

    @classmethod
    def resolved(cls, message: str, order_id: Optional[int] = None) -> "ReconciliationOutcome":
        return cls(OutcomeKind.RESOLVED, message, order_id)

    @classmethod
    def already_processed(cls, message: str, order_id: Optional[int] = None) -> "ReconciliationOutcome":
        return cls(OutcomeKind.ALREADY_PROCESSED, message, order_id)

    @classmethod
    def not_found(cls, message: str) -> "ReconciliationOutcome":
        return cls(OutcomeKind.NOT_FOUND, message)

    @classmethod
    def ignored(cls, message: str) -> "ReconciliationOutcome":
        return cls(OutcomeKind.IGNORED, message)

    @classmethod
    def skipped(cls, message: str = "Not processed") -> "ReconciliationOutcome":
        return cls(OutcomeKind.SKIPPED, message)

    @classmethod
    def invalid(cls, errors) -> "ReconciliationOutcome":
        errors = tuple(errors)
        return cls(OutcomeKind.VALIDATION_ERRORS, "\n".join(errors), errors=errors)

    @classmethod
    def delegated(cls, message: str) -> "ReconciliationOutcome":
        return cls(OutcomeKind.DELEGATED, message)
