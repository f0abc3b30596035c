"""
结账应用服务 - 为当前购物车发起一次支付

重定向类支付方式返回渠道跳转地址；银行卡等浏览器端确认的支付方式建立待支付订单，
并写入待确认的前台扣款流水，由 webhook 完成确认。每次发起都会记录一条支付尝试
（购物车 + 令牌），供确认路径读取。
"""
from __future__ import annotations

from typing import Callable, Optional

from application.dtos.payments import CheckoutStart
from application.ports.notifications import OrderNotifier
from application.ports.payment_gateway import ProcessorClient
from application.services.reconciliation_support import build_engine, dispatch_events, log_outcome
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    CartNotFoundException,
    PaymentMethodUnavailableException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.attempt import PaymentAttempt
from domain.payment.metadata import PaymentMetadataCodec
from domain.payment.method import ExecutionKind, PaymentMethodRegistry
from domain.reconciliation.policy import ReconciliationPolicy
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)


class CheckoutService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        client: ProcessorClient,
        codec: PaymentMetadataCodec,
        methods: PaymentMethodRegistry,
        policy: ReconciliationPolicy,
        *,
        validation_url: str,
        notifier: Optional[OrderNotifier] = None,
    ):
        self._uow_factory = uow_factory
        self._client = client
        self._codec = codec
        self._methods = methods
        self._policy = policy
        self._validation_url = validation_url
        self._notifier = notifier

    async def start(self, method_id: str, cart_id: Optional[int], *, correlation_id: Optional[str] = None) -> CheckoutStart:
        method = self._methods.get(method_id)
        if method is None:
            raise PaymentMethodUnavailableException(method_id)
        if cart_id is None:
            raise CartNotFoundException()

        async with self._uow_factory(readonly=True) as uow:
            cart = await uow.cart_repository.get_by_id(cart_id)
        if cart is None:
            raise CartNotFoundException(cart_id)

        errors = method.validate_method(cart)
        if errors:
            logger.warning("checkout_method_rejected", cart_id=cart.id, method_id=method.method_id, errors=errors)
            raise PaymentMethodUnavailableException(method.method_id)

        return_url = self._validation_url.format(method_id=method.method_id)
        result = await method.execute(cart, self._client, return_url=return_url, correlation_id=correlation_id)
        if result.kind == ExecutionKind.ERROR:
            logger.error("checkout_start_failed", cart_id=cart.id, method_id=method.method_id, error=result.error)
            raise BusinessException(
                code=PaymentCode.PROVIDER_ERROR,
                message=result.error or "Payment could not be started",
                error_type="CheckoutFailed",
                details={"method_id": method.method_id},
            )

        token = self._codec.encode(result.metadata)
        events = []
        async with self._uow_factory() as uow:
            # 新的尝试取代该购物车此前未完成的尝试
            await uow.attempt_repository.clear(cart.id)
            await uow.attempt_repository.add(
                PaymentAttempt(id=None, cart_id=cart.id, method_id=method.method_id, token=token)
            )
            if result.kind == ExecutionKind.CLIENT_CONFIRMATION:
                engine = build_engine(uow, self._policy, self._methods)
                outcome = await engine.record_pending_charge(cart, result.intent, method)
                events = engine.clear_events()
                log_outcome(outcome, "checkout_pending_recorded", cart_id=cart.id, intent_id=result.intent.id,
                            correlation_id=correlation_id)
        dispatch_events(self._notifier, events, correlation_id=correlation_id)

        logger.info(
            "checkout_started",
            cart_id=cart.id,
            method_id=method.method_id,
            kind=result.kind.value,
            intent_id=result.metadata.id,
            correlation_id=correlation_id,
        )
        return CheckoutStart(
            method_id=method.method_id,
            kind=result.kind.value,
            redirect_url=result.redirect_url,
            client_secret=getattr(result.intent, "client_secret", None),
            token=token,
        )
