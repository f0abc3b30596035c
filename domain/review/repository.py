"""审核记录仓储接口"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import ReviewRecord


class ReviewRepository(ABC):

    @abstractmethod
    async def get_by_order_id(self, order_id: int) -> Optional[ReviewRecord]:
        pass

    @abstractmethod
    async def save(self, review: ReviewRecord) -> ReviewRecord:
        """新建或更新审核记录"""
        pass
