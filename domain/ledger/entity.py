"""
交易流水实体 - 订单资金事件的不可变审计记录
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class TransactionType(str, Enum):
    """流水类型枚举"""
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    CHARGE = "charge"
    CHARGE_FAIL = "charge_fail"
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"


class TransactionSource(str, Enum):
    """流水来源：前台（浏览器）/ Webhook / 后台（商户操作）"""
    FRONT_OFFICE = "front_office"
    WEBHOOK = "webhook"
    BACK_OFFICE = "back_office"


REFUND_TYPES = frozenset({TransactionType.FULL_REFUND, TransactionType.PARTIAL_REFUND})

# 对前台待确认流水而言，只有 webhook 写入的这两类流水才算"已确认"
CONFIRMING_TYPES = frozenset({TransactionType.CHARGE, TransactionType.CHARGE_FAIL})


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class LedgerEntry:
    """
    流水记录 - 创建后不可修改、不可删除

    业务规则：
    1. 金额以最小货币单位的整数表示，且不能为负
    2. charge_id 为支付渠道分配的扣款ID（或尚未产生扣款时的支付意图ID）
       payment_intent_id 记录扣款所属的支付意图；两者相同即为以意图为键的待确认流水
    3. 退款流水的金额是增量金额，而非累计金额
    """

    charge_id: str
    order_id: int
    type: TransactionType
    source: TransactionSource
    amount: int
    source_type: Optional[str] = None
    card_last_digits: Optional[str] = None
    payment_intent_id: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.charge_id:
            raise DomainValidationException("charge_id is required", field="charge_id")
        if self.amount < 0:
            raise DomainValidationException(
                f"Ledger amount must not be negative: {self.amount}",
                field="amount",
            )
        object.__setattr__(self, "created_at", _ensure_utc(self.created_at))

