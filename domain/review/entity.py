"""
风控审核记录 - 独立于订单状态的人工/反欺诈审核状态
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class ReviewStatus(str, Enum):
    NEW = "new"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    REJECTED = "rejected"


# review.closed 事件中表示拒绝的关闭原因
REJECTING_REASONS = frozenset({"refunded", "refunded_as_fraud", "disputed"})


@dataclass
class ReviewRecord:
    """
    审核记录

    业务规则：NEW → AUTHORIZED → CAPTURED；REJECTED 为终态
    """

    id: Optional[int]
    order_id: int
    status: ReviewStatus = ReviewStatus.NEW
    reason: Optional[str] = None
    updated_at: Optional[datetime] = None

    def authorize(self) -> None:
        if self.status == ReviewStatus.REJECTED:
            raise DomainValidationException(
                f"Review for order {self.order_id} was rejected and cannot be authorized",
                field="status",
            )
        # 已捕获的审核不回退
        if self.status != ReviewStatus.CAPTURED:
            self.status = ReviewStatus.AUTHORIZED
        self.updated_at = datetime.now(timezone.utc)

    def capture(self) -> None:
        if self.status == ReviewStatus.REJECTED:
            raise DomainValidationException(
                f"Review for order {self.order_id} was rejected and cannot be captured",
                field="status",
            )
        self.status = ReviewStatus.CAPTURED
        self.updated_at = datetime.now(timezone.utc)

    def reject(self, reason: Optional[str] = None) -> None:
        self.status = ReviewStatus.REJECTED
        self.reason = reason
        self.updated_at = datetime.now(timezone.utc)
