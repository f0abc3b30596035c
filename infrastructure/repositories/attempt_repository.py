"""
支付尝试仓储实现
"""
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from domain.payment.attempt import PaymentAttempt, PaymentAttemptRepository
from infrastructure.models.attempt import PaymentAttemptModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentAttemptRepository(PaymentAttemptRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentAttemptModel) -> PaymentAttempt:
        return PaymentAttempt(
            id=model.id,
            cart_id=model.cart_id,
            method_id=model.method_id,
            token=model.token,
            created_at=model.created_at,
            cleared_at=model.cleared_at,
        )

    async def add(self, attempt: PaymentAttempt) -> PaymentAttempt:
        db_attempt = PaymentAttemptModel(
            cart_id=attempt.cart_id,
            method_id=attempt.method_id,
            token=attempt.token,
        )
        self.session.add(db_attempt)
        await self.session.flush()
        await self.session.refresh(db_attempt)
        return self._to_entity(db_attempt)

    async def get_active_by_cart(self, cart_id: int) -> Optional[PaymentAttempt]:
        result = await self.session.execute(
            select(PaymentAttemptModel)
            .where(PaymentAttemptModel.cart_id == cart_id, PaymentAttemptModel.cleared_at.is_(None))
            .order_by(PaymentAttemptModel.id.desc())
            .limit(1)
        )
        db_attempt = result.scalar_one_or_none()
        return self._to_entity(db_attempt) if db_attempt else None

    async def clear(self, cart_id: int) -> int:
        result = await self.session.execute(
            update(PaymentAttemptModel)
            .where(PaymentAttemptModel.cart_id == cart_id, PaymentAttemptModel.cleared_at.is_(None))
            .values(cleared_at=datetime.now(timezone.utc))
        )
        cleared = result.rowcount or 0
        if cleared:
            logger.info("payment_attempt_cleared", cart_id=cart_id, count=cleared)
        return cleared
