from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None


class ObservedSubscription(BaseModel):
    """Subscription fields the client last saw (echoed from GET /subscription)"""

    price_id: str | None = None
    current_period_end: datetime | None = None
    status: str | None = None


class PlanChangeRequest(BaseModel):
    """Body of change-plan and upgrade-preview"""

    target_plan_id: str = Field(..., min_length=1, max_length=64)
    billing_period: str = Field(..., min_length=1, max_length=16)
    # change-plan only: refuse with 409 when Stripe no longer matches
    expected_subscription: ObservedSubscription | None = None


class ChangePlanResponse(BaseModel):
    success: bool = True
    type: str  # upgrade_immediate | downgrade_scheduled
    message: str
    effective_date: str  # ISO-8601 UTC, "Z" suffix


class PreviewAmounts(BaseModel):
    """Proration preview in major currency units, serialized as decimal strings ("38.00")"""

    immediate_charge: Decimal
    proration_credit: Decimal
    new_plan_charge: Decimal
    currency: str
    next_invoice_date: str | None = None


class UpgradePreviewResponse(BaseModel):
    success: bool = True
    available: bool
    preview: PreviewAmounts | None = None
    reason: str | None = None


class CancelPlanChangeResponse(BaseModel):
    success: bool = True
    message: str


class SubscriptionResponse(BaseModel):
    plan_id: str
    billing_period: str | None = None
    status: str | None = None
    subscription_id: str | None = None
    current_period_end: str | None = None
    cancel_at_period_end: bool = False
    pending_plan_id: str | None = None
    pending_effective_date: str | None = None
    price_id: str | None = None


class CreateCheckoutSessionRequest(BaseModel):
    plan_id: str = Field(..., min_length=1, max_length=64)
    billing_period: str = Field(..., min_length=1, max_length=16)
    success_url: str | None = None
    cancel_url: str | None = None


class CheckoutSessionResponse(BaseModel):
    url: str | None = None
    session_id: str


class CreatePortalRequest(BaseModel):
    return_url: str | None = None


class PortalResponse(BaseModel):
    url: str


class SubscriptionActionResponse(BaseModel):
    success: bool = True
    message: str
    effective_date: str | None = None

