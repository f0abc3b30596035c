"""
状态迁移策略 - 商户对每类自动状态变更的开关

流水始终追加（无条件审计）；状态迁移是叠加在流水之上的策略。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from domain.ledger.entity import TransactionType
from domain.order.entity import OrderStatus


@dataclass(frozen=True)
class ReconciliationPolicy:
    use_status_authorized: bool = False
    use_status_captured: bool = True
    use_status_accepted: bool = True
    use_status_canceled: bool = True
    use_status_refund: bool = True
    use_status_partial_refund: bool = True
    generate_credit_note: bool = False

    def target_status(self, transaction_type: TransactionType) -> Optional[OrderStatus]:
        """返回流水类型对应的目标状态；商户未开启时返回 None"""
        table = {
            TransactionType.AUTHORIZED: (self.use_status_authorized, OrderStatus.AUTHORIZED),
            TransactionType.CAPTURED: (self.use_status_captured, OrderStatus.CAPTURED),
            TransactionType.CHARGE: (self.use_status_accepted, OrderStatus.PAYMENT_ACCEPTED),
            TransactionType.CHARGE_FAIL: (self.use_status_canceled, OrderStatus.CANCELED),
            TransactionType.FULL_REFUND: (self.use_status_refund, OrderStatus.REFUNDED),
            TransactionType.PARTIAL_REFUND: (self.use_status_partial_refund, OrderStatus.PARTIALLY_REFUNDED),
        }
        enabled, status = table[transaction_type]
        return status if enabled else None
