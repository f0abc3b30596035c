"""
确认路径应用服务 - 顾客从重定向支付返回时的同步确认

webhook 可能晚于浏览器回跳到达，浏览器回跳也可能根本不发生；两条路径都汇入
ReconciliationEngine.finalize_success，并以扣款ID保证只生效一次。
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.payments import Charge, PaymentIntent
from application.ports.notifications import OrderNotifier
from application.ports.payment_gateway import ProcessorClient
from application.services.reconciliation_support import (
    build_engine,
    dispatch_events,
    is_processor_error,
    log_outcome,
)
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    CartNotFoundException,
    IntentUnresolvedException,
    MetadataValidationException,
    ParameterMismatchException,
    PaymentIntentStatusException,
    PaymentMethodUnavailableException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ledger.entity import TransactionSource
from domain.order.entity import Cart
from domain.payment.metadata import MetadataType, PaymentMetadata, PaymentMetadataCodec
from domain.payment.method import PaymentMethod, PaymentMethodRegistry
from domain.reconciliation.outcome import OutcomeKind, ReconciliationOutcome
from domain.reconciliation.policy import ReconciliationPolicy
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


def is_succeeded(intent: PaymentIntent, provider: str = "stripe") -> bool:
    mapping = PROVIDER_STATUS_TO_INTERNAL.get(provider, {})
    return mapping.get(intent.status, intent.status) == "succeeded"


class ConfirmationService:
    """确认路径应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        client: ProcessorClient,
        codec: PaymentMetadataCodec,
        methods: PaymentMethodRegistry,
        policy: ReconciliationPolicy,
        *,
        notifier: Optional[OrderNotifier] = None,
    ):
        self._uow_factory = uow_factory
        self._client = client
        self._codec = codec
        self._methods = methods
        self._policy = policy
        self._notifier = notifier

    async def confirm(
        self,
        method_id: str,
        *,
        cart_id: Optional[int] = None,
        token: Optional[str] = None,
        expected_intent_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> ReconciliationOutcome:
        """
        确认一次重定向支付

        Args:
            method_id: 回跳地址中的支付方式
            cart_id: 会话中的当前购物车
            token: 支付元数据令牌；缺省时读取当前购物车的支付尝试记录
            expected_intent_id: 渠道回跳时附带的 payment_intent 参数

        Raises:
            IntentUnresolvedException: 无法解析支付意图，调用方应重定向回结账页
            BusinessException: 其余失败，调用方展示错误列表
        """
        method = self._methods.get(method_id)
        if method is None:
            raise PaymentMethodUnavailableException(method_id)

        metadata, cart = await self._resolve_cart(cart_id, token)
        intent_id = await self._resolve_intent_id(metadata)

        if expected_intent_id is not None and expected_intent_id != intent_id:
            raise ParameterMismatchException("payment_intent")

        errors = metadata.validate(method, cart)
        if errors:
            raise MetadataValidationException(errors)

        try:
            intent = await self._client.get_payment_intent(intent_id)
        except BusinessException as exc:
            if not is_processor_error(exc):
                raise
            raise IntentUnresolvedException(intent_id, exc.message) from exc

        if not is_succeeded(intent):
            # 终态失败：清除该购物车的支付尝试
            async with self._uow_factory() as uow:
                await uow.attempt_repository.clear(cart.id)
            logger.warning(
                "confirmation_failed",
                cart_id=cart.id,
                intent_id=intent.id,
                status=intent.status,
                correlation_id=correlation_id,
            )
            raise PaymentIntentStatusException(intent.id, intent.status)

        outcome = await self._finalize(cart, intent, method, TransactionSource.FRONT_OFFICE, correlation_id)
        log_outcome(outcome, "confirmation_reconciled", cart_id=cart.id, intent_id=intent.id,
                    correlation_id=correlation_id)
        if outcome.kind == OutcomeKind.VALIDATION_ERRORS:
            raise MetadataValidationException(list(outcome.errors))
        return outcome

    async def reconcile_charge(self, charge: Charge, *, correlation_id: Optional[str] = None) -> ReconciliationOutcome:
        """
        webhook 路径下需要回溯购物车的扣款成功通知

        通过渠道 metadata 中的 cart_id 找回购物车，重新获取权威的支付意图后执行
        与浏览器确认相同的成功处理。
        """
        method = self._methods.get(charge.payment_method_type)
        if method is None:
            return ReconciliationOutcome.not_found(
                f"Payment method {charge.payment_method_type} is not registered"
            )
        cart_id = charge.cart_id
        if cart_id is None:
            return ReconciliationOutcome.not_found(f"Charge {charge.id} does not reference a cart")
        if not charge.payment_intent:
            return ReconciliationOutcome.not_found(f"Charge {charge.id} does not reference a payment intent")

        intent = await self._client.get_payment_intent(charge.payment_intent)

        async with self._uow_factory(readonly=True) as uow:
            cart = await uow.cart_repository.get_by_id(cart_id)
        if cart is None:
            return ReconciliationOutcome.not_found(f"Cart {cart_id} not found")

        metadata = PaymentMetadata.create_for_payment_intent(
            method.method_id, cart, intent, correlation_id=correlation_id
        )
        errors = metadata.validate(method, cart)
        if errors:
            return ReconciliationOutcome.invalid(errors)
        if not is_succeeded(intent):
            return ReconciliationOutcome.ignored(f"Payment intent {intent.id} has status {intent.status}")

        return await self._finalize(cart, intent, method, TransactionSource.WEBHOOK, correlation_id)

    async def _finalize(
        self,
        cart: Cart,
        intent: PaymentIntent,
        method: PaymentMethod,
        source: TransactionSource,
        correlation_id: Optional[str],
    ) -> ReconciliationOutcome:
        async with self._uow_factory() as uow:
            engine = build_engine(uow, self._policy, self._methods)
            outcome = await engine.finalize_success(cart, intent, method, source=source)
            if outcome.succeeded:
                await uow.attempt_repository.clear(cart.id)
            events = engine.clear_events()
        dispatch_events(self._notifier, events, correlation_id=correlation_id)
        return outcome

    async def _resolve_cart(self, cart_id: Optional[int], token: Optional[str]) -> tuple[PaymentMetadata, Cart]:
        async with self._uow_factory(readonly=True) as uow:
            if token is None:
                if cart_id is None:
                    raise CartNotFoundException()
                attempt = await uow.attempt_repository.get_active_by_cart(cart_id)
                if attempt is None:
                    raise IntentUnresolvedException(f"cart {cart_id}", "no payment in progress")
                token = attempt.token
            metadata = self._codec.decode(token)
            active_cart_id = cart_id if cart_id is not None else metadata.cart_id
            cart = await uow.cart_repository.get_by_id(active_cart_id)
        if cart is None:
            raise CartNotFoundException(active_cart_id)
        return metadata, cart

    async def _resolve_intent_id(self, metadata: PaymentMetadata) -> str:
        if metadata.type == MetadataType.PAYMENT_INTENT:
            return metadata.id
        try:
            session = await self._client.get_checkout_session(metadata.id)
        except BusinessException as exc:
            if not is_processor_error(exc):
                raise
            raise IntentUnresolvedException(metadata.id, exc.message) from exc
        if not session.payment_intent:
            raise IntentUnresolvedException(metadata.id, "session has no payment intent")
        return session.payment_intent
