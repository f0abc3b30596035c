"""
Base payment client implementing shared concerns: timeouts, retry, logging, mapping.

Concrete providers subclass and implement provider-specific calls. Provider SDKs
are blocking, so every call runs in a worker thread bounded by the total timeout.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception

from core.logging_config import get_logger
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentTimeoutError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    # 超时不重试：单次调用的时长上界必须保持有界
    return isinstance(exc, PaymentRecoverableError) and not isinstance(exc, PaymentTimeoutError)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    @property
    def total_timeout(self) -> float:
        return float(self._timeouts_cfg["total"])

    def is_configured(self) -> bool:
        return True

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """在线程中执行阻塞调用，超时与错误统一映射为 PaymentProviderError 体系"""

        async def once() -> Any:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(fn, *args, **kwargs), timeout=self.total_timeout
                )
            except asyncio.TimeoutError as exc:
                raise PaymentTimeoutError(operation, provider=self.provider, timeout=self.total_timeout) from exc
            except PaymentProviderError:
                raise
            except Exception as exc:
                raise self._map_error(operation, exc) from exc

        try:
            return await self._retry(once)
        except PaymentProviderError as exc:
            logger.warning(
                "payment_provider_call_failed",
                provider=self.provider,
                operation=operation,
                error_type=exc.error_type,
                error=exc.message,
            )
            raise

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                return await fn()

    def _map_error(self, operation: str, exc: Exception) -> PaymentProviderError:
        return PaymentProviderError(str(exc), provider=self.provider, details={"operation": operation})

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
