"""
订单/购物车实体 - 外部订单存储的最小契约

对账核心只负责推进订单状态，不负责订单金额、运费、发票等计算。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """订单业务状态"""
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PAYMENT_ACCEPTED = "payment_accepted"
    CAPTURED = "captured"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CANCELED = "canceled"


@dataclass
class CartLine:
    product_id: int
    quantity: int
    unit_price: int


@dataclass
class Cart:
    """
    购物车 - 金额均为最小货币单位整数
    """

    id: int
    currency: str
    total: int
    customer_id: Optional[int] = None
    shipping: int = 0
    lines: List[CartLine] = field(default_factory=list)

    def __post_init__(self):
        if self.total < 0:
            raise DomainValidationException(f"Cart total must not be negative: {self.total}", field="total")
        self.currency = (self.currency or "").upper()


@dataclass
class OrderLine:
    id: Optional[int]
    product_id: int
    quantity: int
    unit_price: int


@dataclass
class Order:
    """
    订单 - 由外部订单存储持有

    total_paid 以最小货币单位整数表示，退款全额/部分判定直接与其比较。
    """

    id: Optional[int]
    cart_id: int
    currency: str
    total_paid: int
    status: OrderStatus
    payment_method: str
    customer_id: Optional[int] = None
    shipping: int = 0
    lines: List[OrderLine] = field(default_factory=list)
    has_invoice: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_cart(cls, cart: Cart, *, payment_method: str, total_paid: int) -> "Order":
        """由购物车生成待支付订单"""
        return cls(
            id=None,
            cart_id=cart.id,
            currency=cart.currency,
            total_paid=total_paid,
            status=OrderStatus.PENDING,
            payment_method=payment_method,
            customer_id=cart.customer_id,
            shipping=cart.shipping,
            lines=[
                OrderLine(id=None, product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price)
                for line in cart.lines
            ],
        )


@dataclass
class CreditNote:
    """全额退款时生成的贷项通知单，覆盖订单全部商品行及运费"""

    id: Optional[int]
    order_id: int
    amount: int
    shipping: int
    quantities: dict[int, int] = field(default_factory=dict)  # order_line_id -> quantity
    created_at: Optional[datetime] = None

    @classmethod
    def covering(cls, order: Order) -> "CreditNote":
        if order.id is None:
            raise DomainValidationException("Cannot issue a credit note for an unsaved order", field="order_id")
        return cls(
            id=None,
            order_id=order.id,
            amount=order.total_paid,
            shipping=order.shipping,
            quantities={line.id: line.quantity for line in order.lines if line.id is not None},
        )
