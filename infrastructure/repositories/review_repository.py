"""
审核记录仓储实现
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.review.entity import ReviewRecord, ReviewStatus
from domain.review.repository import ReviewRepository
from infrastructure.models.review import StripeReviewModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyReviewRepository(ReviewRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: StripeReviewModel) -> ReviewRecord:
        return ReviewRecord(
            id=model.id,
            order_id=model.order_id,
            status=ReviewStatus(model.status),
            reason=model.reason,
            updated_at=model.updated_at,
        )

    async def get_by_order_id(self, order_id: int) -> Optional[ReviewRecord]:
        result = await self.session.execute(
            select(StripeReviewModel).where(StripeReviewModel.order_id == order_id)
        )
        db_review = result.scalar_one_or_none()
        return self._to_entity(db_review) if db_review else None

    async def save(self, review: ReviewRecord) -> ReviewRecord:
        db_review = None
        if review.id is not None:
            result = await self.session.execute(
                select(StripeReviewModel).where(StripeReviewModel.id == review.id)
            )
            db_review = result.scalar_one_or_none()
        if db_review is None:
            db_review = StripeReviewModel(order_id=review.order_id)
            self.session.add(db_review)

        db_review.status = review.status.value
        db_review.reason = review.reason
        if review.updated_at is not None:
            db_review.updated_at = review.updated_at

        await self.session.flush()
        await self.session.refresh(db_review)
        logger.info("review_saved", order_id=db_review.order_id, status=db_review.status, reason=db_review.reason)
        return self._to_entity(db_review)
