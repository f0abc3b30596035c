"""
支付尝试数据库模型 - 替代会话中的“支付进行中”标记
"""
from sqlalchemy import Column, Integer, String, DateTime, Index
from datetime import datetime, timezone

from .base import Base


class PaymentAttemptModel(Base):
    __tablename__ = "payment_attempts"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, nullable=False, comment="购物车ID")
    method_id = Column(String(50), nullable=False, comment="支付方式")
    token = Column(String(512), nullable=False, comment="支付元数据令牌")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    cleared_at = Column(DateTime(timezone=True), nullable=True, comment="终态清除时间")

    __table_args__ = (
        Index("ix_payment_attempts_cart_cleared", "cart_id", "cleared_at"),
    )
