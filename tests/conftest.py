"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT__STRIPE__SECRET_KEY", "sk_test_123")

import pytest

from domain.payment.metadata import PaymentMetadataCodec
from domain.payment.method import PaymentMethodRegistry
from domain.reconciliation.policy import ReconciliationPolicy
from tests.fakes import InMemoryStore, RecordingNotifier, StubProcessorClient


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def client() -> StubProcessorClient:
    return StubProcessorClient()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def codec() -> PaymentMetadataCodec:
    return PaymentMetadataCodec("test-secret-key")


@pytest.fixture
def methods() -> PaymentMethodRegistry:
    return PaymentMethodRegistry.default()


@pytest.fixture
def policy() -> ReconciliationPolicy:
    return ReconciliationPolicy()
