"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings: processor credentials and merchant
reconciliation toggles are read here, e.g. ``PAYMENT__STRIPE__SECRET_KEY`` or
``RECONCILIATION__USE_STATUS_AUTHORIZED``.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field

from domain.reconciliation.policy import ReconciliationPolicy


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks
    # 事件ID占用时长（秒），仅在配置 Redis 时生效
    claim_ttl_seconds: int = 300


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    api_version: Optional[str] = None


class PaymentSettings(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


class ReconciliationSettings(BaseSettings):
    """商户对自动状态变更的开关及前台地址"""

    use_status_authorized: bool = False
    use_status_captured: bool = True
    use_status_accepted: bool = True
    use_status_canceled: bool = True
    use_status_refund: bool = True
    use_status_partial_refund: bool = True
    generate_credit_note: bool = False

    enabled_methods: list[str] | None = None  # None 表示全部启用
    checkout_url: str = "/checkout"
    order_confirmation_url: str = "/order-confirmation?id_order={order_id}"
    # 重定向支付完成后渠道回跳的确认地址，渠道会附加 payment_intent 查询参数
    validation_url: str = "http://localhost:8000/api/v1/stripe/validation/{method_id}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RECONCILIATION__",
        case_sensitive=False,
        extra="allow",
    )

    def to_policy(self) -> ReconciliationPolicy:
        return ReconciliationPolicy(
            use_status_authorized=self.use_status_authorized,
            use_status_captured=self.use_status_captured,
            use_status_accepted=self.use_status_accepted,
            use_status_canceled=self.use_status_canceled,
            use_status_refund=self.use_status_refund,
            use_status_partial_refund=self.use_status_partial_refund,
            generate_credit_note=self.generate_credit_note,
        )


payment_settings = PaymentSettings()
reconciliation_settings = ReconciliationSettings()
