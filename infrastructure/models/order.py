"""
订单/购物车数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, Boolean, JSON,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class CartModel(Base):
    """购物车（由外部商城维护，这里只读）"""
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, nullable=True, index=True, comment="顾客ID")
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")
    total = Column(BigInteger, nullable=False, comment="应付总额（最小货币单位）")
    shipping = Column(BigInteger, nullable=False, default=0, comment="运费")
    # [{"product_id": 1, "quantity": 2, "unit_price": 1000}]
    lines = Column(JSON, nullable=False, default=list, comment="商品行")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")


class OrderModel(Base):
    """订单数据库模型"""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    # 同一购物车只能生成一个订单：并发成功路径依赖该约束收敛
    cart_id = Column(Integer, nullable=False, unique=True, index=True, comment="购物车ID")
    customer_id = Column(Integer, nullable=True, index=True, comment="顾客ID")
    currency = Column(String(3), nullable=False, comment="货币代码")
    total_paid = Column(BigInteger, nullable=False, comment="实付金额（最小货币单位）")
    shipping = Column(BigInteger, nullable=False, default=0, comment="运费")
    status = Column(String(30), nullable=False, default="pending", index=True, comment="订单状态")
    payment_method = Column(String(50), nullable=False, comment="支付方式名称")
    has_invoice = Column(Boolean, nullable=False, default=False, comment="是否已开票")
    lines = Column(JSON, nullable=False, default=list, comment="订单行")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")

    history = relationship("OrderHistoryModel", back_populates="order", lazy="select")

    def __repr__(self):
        return f"<OrderModel(id={self.id}, cart_id={self.cart_id}, status='{self.status}')>"


class OrderHistoryModel(Base):
    """订单状态历史"""
    __tablename__ = "order_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    previous_status = Column(String(30), nullable=True, comment="变更前状态")
    status = Column(String(30), nullable=False, comment="变更后状态")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="变更时间")

    order = relationship("OrderModel", back_populates="history")


class CreditNoteModel(Base):
    """贷项通知单"""
    __tablename__ = "credit_notes"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False, comment="退款金额")
    shipping = Column(BigInteger, nullable=False, default=0, comment="退还运费")
    # {"<order_line_id>": quantity}
    quantities = Column(JSON, nullable=False, default=dict, comment="各订单行退回数量")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_credit_notes_order_id"),
    )
