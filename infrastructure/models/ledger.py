"""
流水数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Index
from datetime import datetime, timezone

from .base import Base


class StripeTransactionModel(Base):
    """
    支付流水数据库模型

    只追加：仓储不提供更新与删除
    """
    __tablename__ = "stripe_transactions"

    id = Column(Integer, primary_key=True, index=True)

    charge_id = Column(String(100), nullable=False, comment="渠道扣款ID（或待确认时的支付意图ID）")
    order_id = Column(Integer, nullable=False, index=True, comment="订单ID")

    type = Column(String(30), nullable=False, comment="authorized/captured/charge/charge_fail/full_refund/partial_refund")
    source = Column(String(20), nullable=False, comment="front_office/webhook/back_office")
    source_type = Column(String(50), nullable=True, comment="发起的支付方式")

    # 金额以最小货币单位整数存储
    amount = Column(BigInteger, nullable=False, default=0, comment="金额")
    card_last_digits = Column(String(4), nullable=True, comment="卡号后四位")
    payment_intent_id = Column(String(100), nullable=True, comment="扣款所属的支付意图ID")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    __table_args__ = (
        Index("ix_stripe_transactions_charge_type", "charge_id", "type"),
        Index("ix_stripe_transactions_charge_source", "charge_id", "source"),
    )

    def __repr__(self):
        return (
            f"<StripeTransactionModel(id={self.id}, charge_id='{self.charge_id}', "
            f"type='{self.type}', source='{self.source}', amount={self.amount})>"
        )
