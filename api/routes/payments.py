"""
Stripe payment routes.

Three entry points feed the reconciliation engine: the processor's webhook,
the browser return from a redirect payment, and checkout start. Keep this
thin: no SDK details here.
"""
from __future__ import annotations

import html
import ipaddress
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse

from application.dtos.payments import CheckoutStart
from application.services.checkout_service import CheckoutService
from application.services.confirmation_service import ConfirmationService
from application.services.webhook_service import WebhookService
from api.dependencies import get_checkout_service, get_confirmation_service, get_webhook_service
from core.exceptions import business_code_to_http_status
from core.logging_config import get_logger
from core.response import Response, success_response
from core.settings import payment_settings, reconciliation_settings
from domain.common.exceptions import (
    BusinessException,
    IntentUnresolvedException,
    MetadataValidationException,
)


router = APIRouter(prefix="/stripe", tags=["Stripe"])
logger = get_logger(__name__)

CART_COOKIE = "cart_id"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or "-"


def _remote_allowed(remote_ip: str) -> bool:
    allowlist = payment_settings.webhook.ip_allowlist or []
    if not allowlist:
        return True
    rip = ipaddress.ip_address(remote_ip)
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif remote_ip == entry:
                return True
        except ValueError:
            continue
    return False


def _error_page(errors: list[str], request_id: str, status_code: int) -> HTMLResponse:
    items = "\n".join(f"    <li>{html.escape(message)}</li>" for message in errors)
    checkout_url = html.escape(reconciliation_settings.checkout_url, quote=True)
    content = (
        "<!DOCTYPE html>\n"
        "<html>\n<head><meta charset=\"utf-8\"><title>Payment error</title></head>\n<body>\n"
        "  <h1>Your payment could not be confirmed</h1>\n"
        f"  <ul>\n{items}\n  </ul>\n"
        f"  <p><a href=\"{checkout_url}\">Back to checkout</a></p>\n"
        f"  <p><small>Reference: {html.escape(request_id)}</small></p>\n"
        "</body>\n</html>\n"
    )
    return HTMLResponse(content=content, status_code=status_code)


@router.post("/hook", response_class=PlainTextResponse, summary="Processor webhook")
async def stripe_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    request_id = _request_id(request)

    # Optional IP allowlist
    if request.client and request.client.host:
        try:
            permitted = _remote_allowed(request.client.host)
        except ValueError:
            logger.warning("webhook_invalid_remote_ip", remote_ip=request.client.host)
            return PlainTextResponse(f"[{request_id}] Invalid remote address")
        if not permitted:
            logger.warning("webhook_ip_not_allowed", remote_ip=request.client.host)
            return PlainTextResponse(f"[{request_id}] Remote address not allowed")

    raw_body = await request.body()
    # 异常不在此处捕获：由全局处理器返回 5xx，渠道会自动重投
    outcome = await service.handle(raw_body, correlation_id=request_id)
    return PlainTextResponse(f"[{request_id}] {outcome.message}")


@router.get("/validation/{method_id}", summary="Confirm a redirect payment")
async def validate_payment(
    method_id: str,
    request: Request,
    token: Optional[str] = Query(default=None),
    payment_intent: Optional[str] = Query(default=None),
    cart_id: Optional[int] = Cookie(default=None),
    service: ConfirmationService = Depends(get_confirmation_service),
):
    request_id = _request_id(request)
    try:
        outcome = await service.confirm(
            method_id,
            cart_id=cart_id,
            token=token,
            expected_intent_id=payment_intent,
            correlation_id=request_id,
        )
    except IntentUnresolvedException as exc:
        logger.warning(
            "confirmation_redirect_to_checkout",
            method_id=method_id,
            cart_id=cart_id,
            reason=exc.message,
            details=exc.details,
        )
        return RedirectResponse(reconciliation_settings.checkout_url, status_code=303)
    except MetadataValidationException as exc:
        return _error_page(exc.errors, request_id, business_code_to_http_status(exc.code))
    except BusinessException as exc:
        logger.warning(
            "confirmation_rejected",
            method_id=method_id,
            cart_id=cart_id,
            code=exc.code,
            error_type=exc.error_type,
            message=exc.message,
        )
        return _error_page([exc.message], request_id, business_code_to_http_status(exc.code))

    target = reconciliation_settings.order_confirmation_url.format(order_id=outcome.order_id)
    return RedirectResponse(target, status_code=303)


@router.post("/payment/{method_id}", response_model=Response[CheckoutStart], summary="Start a payment")
async def start_payment(
    method_id: str,
    request: Request,
    cart_id: Optional[int] = Cookie(default=None),
    service: CheckoutService = Depends(get_checkout_service),
):
    result = await service.start(method_id, cart_id, correlation_id=_request_id(request))
    return success_response(data=result, message="Payment started")
