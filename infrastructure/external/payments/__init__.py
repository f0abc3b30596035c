"""
Factory for payment processor clients.
"""
from __future__ import annotations

from core.settings import payment_settings
from application.ports.payment_gateway import ProcessorClient


def get_processor_client(provider: str = "stripe") -> ProcessorClient:
    name = provider.lower()
    if name == "stripe":
        from .stripe_client import StripeClient
        return StripeClient(payment_settings.stripe.secret_key)
    raise ValueError(f"Unsupported payment provider: {name}")
