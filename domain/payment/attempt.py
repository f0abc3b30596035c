"""
支付尝试记录 - 一次重定向支付的关联记录（购物车 + 令牌）

确认路径只读取该记录，仅在终态（成功或失败）时显式清除。
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class PaymentAttempt:
    id: Optional[int]
    cart_id: int
    method_id: str
    token: str
    created_at: Optional[datetime] = None
    cleared_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.cleared_at is None


class PaymentAttemptRepository(ABC):

    @abstractmethod
    async def add(self, attempt: PaymentAttempt) -> PaymentAttempt:
        pass

    @abstractmethod
    async def get_active_by_cart(self, cart_id: int) -> Optional[PaymentAttempt]:
        """该购物车最近一次尚未清除的支付尝试"""
        pass

    @abstractmethod
    async def clear(self, cart_id: int) -> int:
        """清除该购物车的所有活动尝试，返回清除数量"""
        pass
