"""
API依赖项 - 对账相关应用服务的装配
"""
from fastapi import Depends

from application.ports.idempotency import EventClaimStore, NoopClaimStore
from application.ports.notifications import OrderNotifier
from application.ports.payment_gateway import ProcessorClient
from application.services.checkout_service import CheckoutService
from application.services.confirmation_service import ConfirmationService
from application.services.webhook_service import WebhookService
from core.config import settings
from core.settings import reconciliation_settings
from domain.payment.metadata import PaymentMetadataCodec
from domain.payment.method import PaymentMethodRegistry
from domain.reconciliation.policy import ReconciliationPolicy
from infrastructure.cache import get_event_claim_store
from infrastructure.external.payments import get_processor_client
from infrastructure.tasks import TaskDispatcher
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


async def get_processor() -> ProcessorClient:
    return get_processor_client("stripe")


def get_metadata_codec() -> PaymentMetadataCodec:
    return PaymentMetadataCodec(settings.SECRET_KEY)


def get_payment_methods() -> PaymentMethodRegistry:
    return PaymentMethodRegistry.default(reconciliation_settings.enabled_methods)


def get_policy() -> ReconciliationPolicy:
    return reconciliation_settings.to_policy()


def get_notifier() -> OrderNotifier:
    return TaskDispatcher()


def get_claim_store() -> EventClaimStore:
    # 未配置 Redis 时不做事件级去重，仅依赖流水存在性检查
    return get_event_claim_store() or NoopClaimStore()


async def get_confirmation_service(
    client: ProcessorClient = Depends(get_processor),
    codec: PaymentMetadataCodec = Depends(get_metadata_codec),
    methods: PaymentMethodRegistry = Depends(get_payment_methods),
    policy: ReconciliationPolicy = Depends(get_policy),
    notifier: OrderNotifier = Depends(get_notifier),
) -> ConfirmationService:
    return ConfirmationService(SQLAlchemyUnitOfWork, client, codec, methods, policy, notifier=notifier)


async def get_webhook_service(
    client: ProcessorClient = Depends(get_processor),
    methods: PaymentMethodRegistry = Depends(get_payment_methods),
    policy: ReconciliationPolicy = Depends(get_policy),
    confirmation: ConfirmationService = Depends(get_confirmation_service),
    claims: EventClaimStore = Depends(get_claim_store),
    notifier: OrderNotifier = Depends(get_notifier),
) -> WebhookService:
    return WebhookService(
        SQLAlchemyUnitOfWork,
        client,
        methods,
        policy,
        confirmation,
        claims=claims,
        notifier=notifier,
    )


async def get_checkout_service(
    client: ProcessorClient = Depends(get_processor),
    codec: PaymentMetadataCodec = Depends(get_metadata_codec),
    methods: PaymentMethodRegistry = Depends(get_payment_methods),
    policy: ReconciliationPolicy = Depends(get_policy),
    notifier: OrderNotifier = Depends(get_notifier),
) -> CheckoutService:
    return CheckoutService(
        SQLAlchemyUnitOfWork,
        client,
        codec,
        methods,
        policy,
        validation_url=reconciliation_settings.validation_url,
        notifier=notifier,
    )
