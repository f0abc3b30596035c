"""
Exceptions for the payment processor mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        code: int = PaymentCode.PROVIDER_ERROR,
        error_type: str = "PaymentProviderError",
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        self.provider = provider
        self.provider_code = provider_code
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=full_details,
        )


class PaymentRecoverableError(PaymentProviderError):
    """网络抖动、限流等可重试错误；webhook 路径应返回非 2xx 以便渠道重投"""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        code: int = PaymentCode.PROVIDER_RECOVERABLE,
    ):
        super().__init__(
            message,
            provider=provider,
            provider_code=provider_code,
            details=details,
            code=code,
            error_type="PaymentRecoverableError",
        )


class PaymentTimeoutError(PaymentRecoverableError):
    def __init__(self, operation: str, *, provider: str, timeout: float):
        super().__init__(
            f"{provider} {operation} timed out after {timeout}s",
            provider=provider,
            provider_code="timeout",
            details={"operation": operation, "timeout": timeout},
            code=PaymentCode.TIMEOUT,
        )
