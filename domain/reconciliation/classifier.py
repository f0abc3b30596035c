"""
事件分类器 - 将渠道通知的事件类型标签映射为对账动作

未知类型一律分类为 IGNORE，保证渠道新增事件类型时向前兼容。
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class ReconciliationAction(str, Enum):
    PROCESS_APPROVED = "process_approved"
    PROCESS_REFUND = "process_refund"
    PROCESS_SUCCEEDED = "process_succeeded"
    PROCESS_CAPTURED = "process_captured"
    PROCESS_FAILED = "process_failed"
    IGNORE = "ignore"


EVENT_ACTIONS = {
    "review.closed": ReconciliationAction.PROCESS_APPROVED,
    "charge.refunded": ReconciliationAction.PROCESS_REFUND,
    "charge.succeeded": ReconciliationAction.PROCESS_SUCCEEDED,
    "charge.captured": ReconciliationAction.PROCESS_CAPTURED,
    "charge.failed": ReconciliationAction.PROCESS_FAILED,
}


def classify(event_type: Optional[str]) -> ReconciliationAction:
    if not event_type:
        return ReconciliationAction.IGNORE
    return EVENT_ACTIONS.get(event_type, ReconciliationAction.IGNORE)
