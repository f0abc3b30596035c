"""
流水仓储接口 - 只追加，不更新、不删除
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import LedgerEntry, TransactionSource, TransactionType


class LedgerRepository(ABC):
    """
    流水仓储抽象接口

    append 不做唯一性约束，调用方在写入前通过查询接口完成幂等判断。
    读接口必须能看到此前所有已追加的流水（退款增量计算依赖于此）。
    """

    @abstractmethod
    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        """追加一条流水"""
        pass

    @abstractmethod
    async def find_pending_charge_transaction(self, charge_id: str) -> Optional[LedgerEntry]:
        """
        返回该扣款最近一条待确认的前台扣款流水

        已有同键 webhook 扣款/失败流水，或所属订单已有落到真实扣款上的 CHARGE 流水时，不再视为待确认。
        """
        pass

    @abstractmethod
    async def get_order_id_by_charge(self, charge_id: str) -> Optional[int]:
        """根据扣款ID获取订单ID"""
        pass

    @abstractmethod
    async def get_refunded_amount(self, charge_id: str) -> int:
        """该扣款所有退款流水的金额之和"""
        pass

    @abstractmethod
    async def get_last_four_digits_by_charge(self, charge_id: str) -> Optional[str]:
        """该扣款已记录的卡号后四位"""
        pass

    @abstractmethod
    async def exists(
        self,
        charge_id: str,
        type: TransactionType,
        source: Optional[TransactionSource] = None,
    ) -> bool:
        """是否已存在同一扣款、同一类型（可选同一来源）的流水"""
        pass

