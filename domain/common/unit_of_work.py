"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.ledger.repository import LedgerRepository
from domain.order.repository import CartRepository, OrderRepository
from domain.payment.attempt import PaymentAttemptRepository
from domain.review.repository import ReviewRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    一次对账的流水追加与订单状态迁移必须在同一事务内提交。
    """

    ledger_repository: LedgerRepository
    order_repository: OrderRepository
    cart_repository: CartRepository
    review_repository: ReviewRepository
    attempt_repository: PaymentAttemptRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.ledger_repository = None  # type: ignore[assignment]
        self.order_repository = None  # type: ignore[assignment]
        self.cart_repository = None  # type: ignore[assignment]
        self.review_repository = None  # type: ignore[assignment]
        self.attempt_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
