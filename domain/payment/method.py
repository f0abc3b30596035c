"""
支付方式 - 固定的封闭变体集合，通过注册表按 method_id 解析

每种支付方式提供统一能力：{method_id, name, 可用性校验, execute}。
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from domain.order.entity import Cart
from domain.payment.metadata import PaymentMetadata


class ExecutionKind(str, Enum):
    REDIRECT = "redirect"
    CLIENT_CONFIRMATION = "client_confirmation"
    ERROR = "error"


@dataclass(frozen=True)
class ExecutionResult:
    kind: ExecutionKind
    redirect_url: Optional[str] = None
    metadata: Optional[PaymentMetadata] = None
    intent: Any = None
    error: Optional[str] = None

    @classmethod
    def redirect(cls, metadata: PaymentMetadata, url: str, intent: Any = None) -> "ExecutionResult":
        return cls(kind=ExecutionKind.REDIRECT, redirect_url=url, metadata=metadata, intent=intent)

    @classmethod
    def client_confirmation(cls, metadata: PaymentMetadata, intent: Any) -> "ExecutionResult":
        return cls(kind=ExecutionKind.CLIENT_CONFIRMATION, metadata=metadata, intent=intent)

    @classmethod
    def failure(cls, message: str) -> "ExecutionResult":
        return cls(kind=ExecutionKind.ERROR, error=message)


class PaymentMethod(ABC):
    """支付方式基类"""

    method_id: str = ""
    name: str = ""
    # 渠道侧支付方式类型（payment_method_details.type）
    processor_type: str = ""
    # 是否为浏览器重定向流程
    redirect_flow: bool = False
    # 扣款成功通知是否需要回溯到购物车（通过渠道 metadata 中的 cart_id）
    requires_cart_resolution: bool = False

    def __init__(self, *, enabled: bool = True):
        self.enabled = enabled

    @property
    def short_name(self) -> str:
        return self.name

    def validate_method(self, cart: Cart) -> list[str]:
        """校验该支付方式能否用于购物车，返回错误列表"""
        errors: list[str] = []
        if not self.enabled:
            errors.append(f"Payment method {self.name} is not enabled")
        if cart.total <= 0:
            errors.append(f"{self.name} cannot be used for an empty cart")
        return errors

    def payment_method_data(self, cart: Cart) -> Dict[str, Any]:
        return {"type": self.processor_type}

    @abstractmethod
    async def execute(self, cart: Cart, gateway: Any, *, return_url: str, correlation_id: Optional[str] = None) -> ExecutionResult:
        """向渠道发起支付"""
        ...

    async def _start_redirect_payment_flow(
        self,
        cart: Cart,
        gateway: Any,
        *,
        return_url: str,
        correlation_id: Optional[str] = None,
    ) -> ExecutionResult:
        intent = await gateway.create_payment_intent(
            cart,
            method_type=self.processor_type,
            payment_method_data=self.payment_method_data(cart),
            return_url=return_url,
            confirm=True,
        )
        if not intent.redirect_url:
            return ExecutionResult.failure("Processor response does not contain redirect url")
        metadata = PaymentMetadata.create_for_payment_intent(
            self.method_id, cart, intent, correlation_id=correlation_id
        )
        return ExecutionResult.redirect(metadata, intent.redirect_url, intent=intent)


class CardMethod(PaymentMethod):
    """银行卡：浏览器端确认，扣款结果由 webhook 异步确认"""

    method_id = "card"
    name = "Card"
    processor_type = "card"

    async def execute(self, cart, gateway, *, return_url, correlation_id=None) -> ExecutionResult:
        intent = await gateway.create_payment_intent(
            cart,
            method_type=self.processor_type,
            payment_method_data=None,
            return_url=return_url,
            confirm=False,
        )
        metadata = PaymentMetadata.create_for_payment_intent(
            self.method_id, cart, intent, correlation_id=correlation_id
        )
        return ExecutionResult.client_confirmation(metadata, intent)


class TwintMethod(PaymentMethod):
    method_id = "twint"
    name = "Twint"
    processor_type = "twint"
    redirect_flow = True
    requires_cart_resolution = True

    def payment_method_data(self, cart: Cart) -> Dict[str, Any]:
        return {"type": self.processor_type, "billing_details": {"name": f"Customer {cart.customer_id or cart.id}"}}

    async def execute(self, cart, gateway, *, return_url, correlation_id=None) -> ExecutionResult:
        return await self._start_redirect_payment_flow(cart, gateway, return_url=return_url, correlation_id=correlation_id)


class PaypalMethod(PaymentMethod):
    method_id = "paypal"
    name = "Paypal"
    processor_type = "paypal"
    redirect_flow = True

    def payment_method_data(self, cart: Cart) -> Dict[str, Any]:
        return {"type": self.processor_type, "billing_details": {"name": f"Customer {cart.customer_id or cart.id}"}}

    async def execute(self, cart, gateway, *, return_url, correlation_id=None) -> ExecutionResult:
        return await self._start_redirect_payment_flow(cart, gateway, return_url=return_url, correlation_id=correlation_id)


ALL_METHODS = (CardMethod, TwintMethod, PaypalMethod)


class PaymentMethodRegistry:
    """按 method_id 解析支付方式"""

    def __init__(self, methods: Iterable[PaymentMethod]):
        self._methods: Dict[str, PaymentMethod] = {m.method_id: m for m in methods}

    @classmethod
    def default(cls, enabled: Optional[Iterable[str]] = None) -> "PaymentMethodRegistry":
        enabled_ids = None if enabled is None else {e.lower() for e in enabled}
        return cls(
            method_cls(enabled=enabled_ids is None or method_cls.method_id in enabled_ids)
            for method_cls in ALL_METHODS
        )

    def get(self, method_id: Optional[str]) -> Optional[PaymentMethod]:
        if not method_id:
            return None
        return self._methods.get(method_id.lower())

    def requires_cart_resolution(self, processor_type: Optional[str]) -> bool:
        method = self.get(processor_type)
        return bool(method and method.requires_cart_resolution)

    def __iter__(self):
        return iter(self._methods.values())
