"""
Shared fixtures for the billing test suite.

Config reads the environment once at import time, so the test environment is
exported here before anything under ``src`` is imported.
"""

import os

os.environ.update(
    {
        "APP_ENV": "testing",
        "SENTRY_ENABLED": "false",
        "SUPABASE_URL": "https://test-project.supabase.co",
        "SUPABASE_KEY": "test-service-key",
        "STRIPE_SECRET_KEY": "sk_test_123",
        "STRIPE_WEBHOOK_SECRET": "whsec_test_123",
        "SUBSCRIPTION_CACHE_BACKEND": "memory",
        "SUBSCRIPTION_CACHE_RESET_HOUR": "6",
        "SUBSCRIPTION_CACHE_TIMEZONE": "UTC",
        "FRONTEND_URL": "https://app.example.com",
        "STRIPE_PRICE_ID_BASIC_MONTHLY": "price_basic_monthly",
        "STRIPE_PRICE_ID_BASIC_ANNUAL": "price_basic_annual",
        "STRIPE_PRICE_ID_ESSENTIALS_MONTHLY": "price_essentials_monthly",
        "STRIPE_PRICE_ID_ESSENTIALS_ANNUAL": "price_essentials_annual",
        "STRIPE_PRICE_ID_PLUS_MONTHLY": "price_plus_monthly",
        "STRIPE_PRICE_ID_PLUS_ANNUAL": "price_plus_annual",
        "STRIPE_PRICE_ID_ADVANCED_MONTHLY": "price_advanced_monthly",
        "STRIPE_PRICE_ID_ADVANCED_ANNUAL": "price_advanced_annual",
    }
)
os.environ.pop("SENTRY_DSN", None)

from datetime import UTC, datetime  # noqa: E402

import pytest  # noqa: E402

from src.services.plan_catalog import PlanCatalog  # noqa: E402
from src.services.subscription_cache import InMemorySubscriptionCache  # noqa: E402
from tests.helpers.mocks import (  # noqa: E402
    PRICE_IDS,
    FakeBillingProvider,
    FixedClock,
    RecordingAuditLog,
    make_subscription,
)


@pytest.fixture
def catalog():
    return PlanCatalog.from_price_ids(PRICE_IDS)


@pytest.fixture
def clock():
    """Mid-period: 2025-02-14 12:00 UTC"""
    return FixedClock(datetime(2025, 2, 14, 12, 0, tzinfo=UTC))


@pytest.fixture
def cache(clock):
    return InMemorySubscriptionCache(clock=clock)


@pytest.fixture
def audit_log():
    return RecordingAuditLog()


@pytest.fixture
def cached_plans():
    """Stands in for profiles.update_cached_plan, recording (customer_ref, plan_id, subscription_ref)."""
    calls = []

    def _update(customer_ref, plan_id, subscription_ref=None):
        calls.append((customer_ref, plan_id, subscription_ref))

    _update.calls = calls
    return _update


@pytest.fixture
def plus_monthly_subscription():
    return make_subscription(price_ref=PRICE_IDS["plus"]["monthly"])


@pytest.fixture
def provider(plus_monthly_subscription):
    return FakeBillingProvider([plus_monthly_subscription])
