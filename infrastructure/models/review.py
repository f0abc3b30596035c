"""
风控审核数据库模型
"""
from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime, timezone

from .base import Base


class StripeReviewModel(Base):
    __tablename__ = "stripe_reviews"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, nullable=False, unique=True, index=True, comment="订单ID")
    status = Column(String(20), nullable=False, default="new", comment="new/authorized/captured/rejected")
    reason = Column(String(50), nullable=True, comment="审核关闭原因")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
