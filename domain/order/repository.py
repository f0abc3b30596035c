"""
订单/购物车仓储接口 - 外部订单存储的简单 CRUD 访问器
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Cart, CreditNote, Order, OrderStatus


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        """for_update=True 时对订单行加锁，直到事务结束"""
        pass

    @abstractmethod
    async def get_by_cart_id(self, cart_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """
        创建订单

        同一购物车只能有一个订单，冲突时抛出 OrderAlreadyExistsException。
        """
        pass

    @abstractmethod
    async def change_status(self, order_id: int, status: OrderStatus) -> bool:
        """
        比较并设置订单状态

        订单已处于目标状态时不做任何写入并返回 False；否则写入状态及历史记录并返回 True。
        """
        pass

    @abstractmethod
    async def add_credit_note(self, credit_note: CreditNote) -> CreditNote:
        pass


class CartRepository(ABC):
    """购物车仓储抽象接口（只读）"""

    @abstractmethod
    async def get_by_id(self, cart_id: int) -> Optional[Cart]:
        pass
