#!/usr/bin/env python3
"""
Stripe Billing Routes
Plan changes, upgrade previews, checkout, billing portal and the Stripe webhook.

Errors are raised as BillingError subclasses and rendered by the handlers in
src.utils.error_handlers as ``{"error": ..., "details": ...}``.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from src.schemas.billing import (
    CancelPlanChangeResponse,
    ChangePlanResponse,
    CheckoutSessionResponse,
    CreateCheckoutSessionRequest,
    CreatePortalRequest,
    ErrorResponse,
    PlanChangeRequest,
    PortalResponse,
    PreviewAmounts,
    SubscriptionActionResponse,
    SubscriptionResponse,
    UpgradePreviewResponse,
)
from src.security.deps import CurrentUser, get_current_user
from src.services.plan_change import ObservedState, isoformat_z
from src.services.proration_preview import ProrationPreview
from src.services.subscription_management import SubscriptionManagementService
from src.services.webhooks import WebhookService
from src.utils.exceptions import PreviewUnavailable

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/stripe",
    tags=["Stripe Billing"],
    responses={
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)

billing_service = SubscriptionManagementService()
webhook_service = WebhookService(billing_service.provider, billing_service.cache, billing_service.catalog)


def _iso(value: datetime | None) -> str | None:
    return isoformat_z(value) if value else None


def _preview_amounts(preview: ProrationPreview) -> PreviewAmounts:
    # Minor units are converted to major units here and nowhere else
    major = preview.to_major_units()
    return PreviewAmounts(
        immediate_charge=major["immediate_charge"],
        proration_credit=major["proration_credit"],
        new_plan_charge=major["new_plan_charge"],
        currency=preview.currency,
        next_invoice_date=_iso(preview.next_invoice_date),
    )


# ==================== Plan Changes ====================


@router.post(
    "/change-plan",
    response_model=ChangePlanResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
async def change_plan(request: PlanChangeRequest, current_user: CurrentUser = Depends(get_current_user)):
    """
    Change the subscription plan

    Upgrades are applied immediately and the prorated difference is invoiced
    right away. Downgrades are scheduled for the end of the current billing
    period without proration.

    Example response:
    {
        "success": true,
        "type": "downgrade_scheduled",
        "message": "Downgrade to basic scheduled for 2025-03-01",
        "effective_date": "2025-03-01T00:00:00Z"
    }
    """
    observed = None
    if request.expected_subscription is not None:
        expected = request.expected_subscription
        observed = ObservedState(expected.price_id, expected.current_period_end, expected.status)

    result = await run_in_threadpool(
        billing_service.change_plan, current_user.id, request.target_plan_id, request.billing_period, observed
    )
    return ChangePlanResponse(
        type=result.type.value,
        message=result.message,
        effective_date=isoformat_z(result.effective_date),
    )


@router.post("/upgrade-preview", response_model=UpgradePreviewResponse)
async def upgrade_preview(request: PlanChangeRequest, current_user: CurrentUser = Depends(get_current_user)):
    """
    Preview the immediate charge of an upgrade in major currency units

    When no preview can be computed the response carries ``available: false``
    and a reason instead of zero amounts.
    """
    try:
        preview = await run_in_threadpool(
            billing_service.preview_upgrade, current_user.id, request.target_plan_id, request.billing_period
        )
    except PreviewUnavailable as e:
        logger.info(f"Upgrade preview unavailable for user {current_user.id}: {e.reason}")
        return UpgradePreviewResponse(available=False, reason=e.reason)

    return UpgradePreviewResponse(available=True, preview=_preview_amounts(preview))


@router.post("/cancel-plan-change", response_model=CancelPlanChangeResponse)
async def cancel_plan_change(current_user: CurrentUser = Depends(get_current_user)):
    """Cancel a scheduled downgrade and keep the current plan"""
    result = await run_in_threadpool(billing_service.cancel_plan_change, current_user.id)
    message = (
        "Scheduled plan change cancelled" if result.changed else "There was no scheduled plan change to cancel"
    )
    return CancelPlanChangeResponse(success=result.success, message=message)


# ==================== Subscription ====================


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(current_user: CurrentUser = Depends(get_current_user)):
    """Current subscription summary (served from the subscription cache)"""
    summary = await run_in_threadpool(billing_service.get_subscription, current_user.id)
    return SubscriptionResponse(
        plan_id=summary.plan_id,
        billing_period=summary.billing_period.value if summary.billing_period else None,
        status=summary.status,
        subscription_id=summary.subscription_id,
        current_period_end=_iso(summary.current_period_end),
        cancel_at_period_end=summary.cancel_at_period_end,
        pending_plan_id=summary.pending_plan_id,
        pending_effective_date=_iso(summary.pending_effective_date),
        price_id=summary.price_ref,
    )


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CreateCheckoutSessionRequest, current_user: CurrentUser = Depends(get_current_user)
):
    """Create a Stripe Checkout session for a new paid subscription"""
    session = await run_in_threadpool(
        billing_service.create_checkout_session,
        current_user.id,
        current_user.email,
        request.plan_id,
        request.billing_period,
        request.success_url,
        request.cancel_url,
    )
    return CheckoutSessionResponse(url=session.url, session_id=session.id)


@router.post("/create-portal", response_model=PortalResponse)
async def create_portal(
    request: CreatePortalRequest | None = None, current_user: CurrentUser = Depends(get_current_user)
):
    """Create a Stripe billing portal session"""
    return_url = request.return_url if request else None
    session = await run_in_threadpool(billing_service.create_portal_session, current_user.id, return_url)
    return PortalResponse(url=session.url)


@router.post("/cancel-subscription", response_model=SubscriptionActionResponse)
async def cancel_subscription(current_user: CurrentUser = Depends(get_current_user)):
    """Cancel the subscription at the end of the current billing period"""
    result = await run_in_threadpool(billing_service.cancel_subscription, current_user.id)
    return SubscriptionActionResponse(message=result.message, effective_date=_iso(result.effective_date))


@router.post("/reactivate-subscription", response_model=SubscriptionActionResponse)
async def reactivate_subscription(current_user: CurrentUser = Depends(get_current_user)):
    """Undo a pending cancellation"""
    result = await run_in_threadpool(billing_service.reactivate_subscription, current_user.id)
    return SubscriptionActionResponse(message=result.message)


# ==================== Webhook Endpoint ====================


@router.post("/webhook", status_code=200)
async def stripe_webhook(request: Request, stripe_signature: str = Header(None, alias="stripe-signature")):
    """
    Stripe webhook endpoint for subscription lifecycle events

    Subscription Events:
    - customer.subscription.created - Subscription created, cache plan and audit
    - customer.subscription.updated - Subscription updated, refresh cached plan
    - customer.subscription.deleted - Subscription ended, back to the free plan

    This endpoint always answers 200. Failures are logged for investigation;
    Stripe is not asked to redeliver an event already recorded as processed.
    """
    payload = await request.body()

    try:
        result = await run_in_threadpool(webhook_service.handle_webhook, payload, stripe_signature)
        logger.info(f"Webhook processed: {result.event_type} - {result.message}")
        return JSONResponse(
            status_code=200,
            content={
                "success": result.success,
                "event_type": result.event_type,
                "event_id": result.event_id,
                "message": result.message,
            },
        )
    except Exception as e:
        logger.error(f"Webhook processing error: {e}", exc_info=True)
        return JSONResponse(
            status_code=200,
            content={
                "success": False,
                "event_type": "unknown",
                "event_id": "unknown",
                "message": f"Webhook rejected: {type(e).__name__}",
            },
        )
