"""
Subscription management service.

Entry point for the billing routes. Resolves the caller's profile and Stripe
subscription, then delegates plan changes to PlanChangeEngine and previews to
ProrationPreviewService. Decisions are always based on a subscription fetched
fresh from Stripe; the cache only serves the read-only summary.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from src.config.config import Config
from src.db import profiles
from src.db.profiles import Profile
from src.services.billing_provider import (
    BillingProvider,
    CheckoutSession,
    PortalSession,
    StripeBillingProvider,
    Subscription,
)
from src.services.plan_catalog import (
    FREE_PLAN_ID,
    ChangeKind,
    ChangeReason,
    Period,
    PlanCatalog,
    get_plan_catalog,
    parse_period,
)
from src.services.plan_change import (
    INVALID_CHANGE_MESSAGES,
    META_BILLING_PERIOD,
    META_PENDING_PLAN_ID,
    META_PLAN_ID,
    CancelChangeResult,
    ObservedState,
    PlanChangeEngine,
    PlanChangeResult,
    pending_effective_at,
    resolve_effective_period,
    resolve_effective_plan,
)
from src.services.proration_preview import ProrationPreview, ProrationPreviewService
from src.services.subscription_cache import Clock, SubscriptionCache, get_subscription_cache, utc_now
from src.utils.exceptions import (
    InputValidationError,
    InvalidPlanChange,
    NotFoundError,
    PreviewUnavailable,
    SubscriptionConflict,
)

logger = logging.getLogger(__name__)


def _frontend_url(path: str) -> str:
    return f"{Config.FRONTEND_URL.rstrip('/')}{path}"


@dataclass
class SubscriptionSummary:
    plan_id: str
    billing_period: Period | None = None
    status: str | None = None
    subscription_id: str | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    pending_plan_id: str | None = None
    pending_effective_date: datetime | None = None
    price_ref: str | None = None


@dataclass
class CancellationResult:
    message: str
    effective_date: datetime | None
    subscription: Subscription


class SubscriptionManagementService:
    def __init__(
        self,
        provider: BillingProvider | None = None,
        cache: SubscriptionCache | None = None,
        catalog: PlanCatalog | None = None,
        engine: PlanChangeEngine | None = None,
        previews: ProrationPreviewService | None = None,
        get_profile: Callable[[str], Profile | None] | None = None,
        set_customer_ref: Callable[[str, str], None] | None = None,
        clock: Clock | None = None,
    ):
        self.provider = provider or StripeBillingProvider()
        self.cache = cache or get_subscription_cache()
        self.catalog = catalog or get_plan_catalog()
        self.clock = clock or utc_now
        self.engine = engine or PlanChangeEngine(self.provider, self.cache, self.catalog, clock=self.clock)
        self.previews = previews or ProrationPreviewService(self.provider)
        self.get_profile = get_profile or profiles.get_profile
        self.set_customer_ref = set_customer_ref or profiles.set_customer_ref

    # ==================== Lookups ====================

    def _require_profile(self, user_id: str) -> Profile:
        profile = self.get_profile(user_id)
        if profile is None:
            raise NotFoundError("User profile not found")
        return profile

    def _require_customer(self, profile: Profile) -> str:
        if not profile.customer_ref:
            raise NotFoundError("No billing account found for this user")
        return profile.customer_ref

    def _active_subscription(self, customer_ref: str) -> Subscription:
        """Fetch the live subscription straight from Stripe, bypassing the cache."""
        subscriptions = self.provider.list_active_subscriptions(customer_ref)
        if not subscriptions:
            raise NotFoundError("No active subscription found")
        if len(subscriptions) > 1:
            logger.warning(
                f"Customer {customer_ref} has {len(subscriptions)} live subscriptions; using {subscriptions[0].id}"
            )
        return subscriptions[0]

    def _require_known_plan(self, plan_id: str) -> None:
        if self.catalog.get(plan_id) is None:
            raise InvalidPlanChange(
                INVALID_CHANGE_MESSAGES[ChangeReason.UNKNOWN_PLAN], reason=ChangeReason.UNKNOWN_PLAN.value
            )

    # ==================== Plan changes ====================

    def change_plan(
        self,
        user_id: str,
        target_plan_id: str,
        billing_period: str,
        observed: ObservedState | None = None,
    ) -> PlanChangeResult:
        """
        Upgrade or schedule a downgrade for the user's live subscription.

        ``observed`` is the subscription state the client last displayed. When
        Stripe no longer matches it the change is refused with a 409 instead of
        being applied to a plan the user did not see.
        """
        period = parse_period(billing_period)
        # Unknown targets are rejected before any provider call
        self._require_known_plan(target_plan_id)

        profile = self._require_profile(user_id)
        customer_ref = self._require_customer(profile)
        subscription = self._active_subscription(customer_ref)
        current_plan = resolve_effective_plan(
            subscription, self.catalog, self.clock(), fallback_plan_id=profile.cached_plan_id
        )

        logger.info(f"Plan change requested by user {user_id}: {current_plan} -> {target_plan_id} ({period.value})")
        return self.engine.change_plan(
            customer_ref,
            current_plan,
            target_plan_id,
            period,
            subscription=subscription,
            user_id=user_id,
            observed=observed,
        )

    def preview_upgrade(self, user_id: str, target_plan_id: str, billing_period: str) -> ProrationPreview:
        """
        Preview the immediate charge of an upgrade.

        Raises:
            PreviewUnavailable: The preview cannot be computed; callers report
                ``available: false`` instead of failing the request
        """
        period = parse_period(billing_period)
        self._require_known_plan(target_plan_id)

        profile = self._require_profile(user_id)
        customer_ref = self._require_customer(profile)
        subscription = self._active_subscription(customer_ref)
        current_plan = resolve_effective_plan(
            subscription, self.catalog, self.clock(), fallback_plan_id=profile.cached_plan_id
        )

        change = self.engine.classify(current_plan, target_plan_id)
        if not change.is_valid:
            raise InvalidPlanChange(INVALID_CHANGE_MESSAGES[change.reason], reason=change.reason.value)
        if change.kind is ChangeKind.DOWNGRADE:
            raise PreviewUnavailable("Downgrades take effect at the next renewal without an immediate charge")

        new_price_ref = self.catalog.price_ref(target_plan_id, period)
        return self.previews.preview_upgrade(subscription.id, new_price_ref)

    def cancel_plan_change(self, user_id: str) -> CancelChangeResult:
        profile = self._require_profile(user_id)
        customer_ref = self._require_customer(profile)
        subscription = self._active_subscription(customer_ref)

        now = self.clock()
        restore_plan = resolve_effective_plan(subscription, self.catalog, now, fallback_plan_id=profile.cached_plan_id)
        period = resolve_effective_period(subscription, self.catalog, now)
        if restore_plan is None or period is None:
            logger.error(
                f"Cannot determine the plan in effect for subscription {subscription.id} "
                f"(metadata={subscription.metadata})"
            )
            raise SubscriptionConflict("Could not determine the current plan of this subscription")

        return self.engine.cancel_scheduled_change(customer_ref, subscription, restore_plan, period)

    # ==================== Subscription lifecycle ====================

    def get_subscription(self, user_id: str) -> SubscriptionSummary:
        """Current subscription summary, served from the subscription cache."""
        profile = self._require_profile(user_id)
        if not profile.customer_ref:
            return SubscriptionSummary(plan_id=FREE_PLAN_ID)

        customer_ref = profile.customer_ref

        def _fetch() -> Subscription | None:
            subscriptions = self.provider.list_active_subscriptions(customer_ref)
            return subscriptions[0] if subscriptions else None

        subscription = self.cache.get_or_fetch(customer_ref, _fetch)
        if subscription is None:
            return SubscriptionSummary(plan_id=FREE_PLAN_ID)

        now = self.clock()
        plan_id = resolve_effective_plan(subscription, self.catalog, now, fallback_plan_id=profile.cached_plan_id)
        pending_plan = subscription.metadata.get(META_PENDING_PLAN_ID)
        pending_at = pending_effective_at(subscription)
        if pending_plan and (pending_plan == plan_id or (pending_at and now >= pending_at)):
            pending_plan, pending_at = None, None

        return SubscriptionSummary(
            plan_id=plan_id or FREE_PLAN_ID,
            billing_period=resolve_effective_period(subscription, self.catalog, now),
            price_ref=subscription.price_ref,
            status=subscription.status,
            subscription_id=subscription.id,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            pending_plan_id=pending_plan,
            pending_effective_date=pending_at if pending_plan else None,
        )

    def create_checkout_session(
        self,
        user_id: str,
        email: str | None,
        plan_id: str,
        billing_period: str,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CheckoutSession:
        period = parse_period(billing_period)
        if plan_id == FREE_PLAN_ID:
            raise InputValidationError("The starter plan is free and does not require checkout")
        self._require_known_plan(plan_id)
        price_ref = self.catalog.price_ref(plan_id, period)

        profile = self._require_profile(user_id)
        customer_ref = profile.customer_ref
        if customer_ref:
            if self.provider.list_active_subscriptions(customer_ref):
                raise SubscriptionConflict(
                    "An active subscription already exists", details="Use change-plan to switch plans"
                )
        else:
            customer_ref = self.provider.create_customer(profile.email or email, {"user_id": user_id})
            self.set_customer_ref(user_id, customer_ref)

        metadata = {"user_id": user_id, META_PLAN_ID: plan_id, META_BILLING_PERIOD: period.value}
        return self.provider.create_checkout_session(
            customer_ref,
            price_ref,
            success_url or _frontend_url(Config.CHECKOUT_SUCCESS_PATH),
            cancel_url or _frontend_url(Config.CHECKOUT_CANCEL_PATH),
            metadata,
        )

    def create_portal_session(self, user_id: str, return_url: str | None = None) -> PortalSession:
        profile = self._require_profile(user_id)
        customer_ref = self._require_customer(profile)
        return self.provider.create_portal_session(
            customer_ref, return_url or _frontend_url(Config.PORTAL_RETURN_PATH)
        )

    def cancel_subscription(self, user_id: str) -> CancellationResult:
        """Cancel at the end of the current period. Access continues until then."""
        profile = self._require_profile(user_id)
        customer_ref = self._require_customer(profile)
        subscription = self._active_subscription(customer_ref)

        if subscription.cancel_at_period_end:
            return CancellationResult(
                message="Subscription is already set to cancel at the end of the billing period",
                effective_date=subscription.current_period_end,
                subscription=subscription,
            )

        updated = self.provider.set_cancel_at_period_end(subscription.id, True)
        self._invalidate_cache(customer_ref)
        effective_date = updated.current_period_end or subscription.current_period_end
        return CancellationResult(
            message="Subscription will be canceled at the end of the current billing period",
            effective_date=effective_date,
            subscription=updated,
        )

    def reactivate_subscription(self, user_id: str) -> CancellationResult:
        profile = self._require_profile(user_id)
        customer_ref = self._require_customer(profile)
        subscription = self._active_subscription(customer_ref)

        if not subscription.cancel_at_period_end:
            raise InputValidationError("Subscription is not scheduled for cancellation")

        updated = self.provider.set_cancel_at_period_end(subscription.id, False)
        self._invalidate_cache(customer_ref)
        return CancellationResult(
            message="Subscription reactivated",
            effective_date=None,
            subscription=updated,
        )

    def _invalidate_cache(self, customer_ref: str) -> None:
        try:
            self.cache.invalidate(customer_ref)
        except Exception as e:
            logger.warning(f"Failed to invalidate subscription cache for customer {customer_ref}: {e}")
