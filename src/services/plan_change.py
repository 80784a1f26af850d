"""
Plan Change Engine

State machine over a single Stripe subscription:

    NoActiveSubscription -> Active(tier, period)

Transitions out of Active:

- Immediate upgrade: swap the sole item's price with prorations invoiced right
  away. The billing cycle anchor is unchanged, so upgrades never move the
  renewal date.
- Scheduled downgrade: swap the price with ``proration_behavior=none``. The
  customer keeps the plan they paid for and Stripe bills the new price from the
  next renewal (``current_period_end``). There is no local scheduler. The
  metadata keeps the plan and period in effect plus ``pending_*`` hints for the
  target; once the renewal has passed the hints are authoritative, and the
  ``customer.subscription.updated`` webhook folds them into ``plan_id``.
- Cancel scheduled change: put the price of the plan currently in effect back
  on the item, again without proration.

Ordering within one call: provider mutation, then cache invalidation, then the
audit append. Once Stripe has confirmed a mutation, failures in the later steps
are logged as warnings and never reported as a failed change. Nothing is rolled
back on the provider side. When the provider times out mid-mutation the cache
entry is dropped and nothing is audited.

Concurrent requests are not serialized locally. Before mutating, the engine
re-reads the subscription and compares it with the snapshot the caller based
its decision on; any difference raises SubscriptionConflict.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from src.db import profiles
from src.db.subscription_history import AuditEventType, AuditRecord, append_subscription_event
from src.services.billing_provider import BillingProvider, Subscription
from src.services.plan_catalog import (
    ChangeKind,
    ChangeReason,
    PlanCatalog,
    PlanChange,
    Period,
    get_plan_catalog,
    parse_period,
)
from src.services.subscription_cache import Clock, SubscriptionCache, utc_now
from src.utils.exceptions import (
    AmbiguousOutcome,
    InvalidPlanChange,
    NotFoundError,
    ProviderError,
    SubscriptionConflict,
)

logger = logging.getLogger(__name__)

# Subscription metadata keys
META_PLAN_ID = "plan_id"
META_BILLING_PERIOD = "billing_period"
# Display hints for a scheduled downgrade. Never used to decide a cancellation.
META_PENDING_PLAN_ID = "pending_plan_id"
META_PENDING_BILLING_PERIOD = "pending_billing_period"
META_PENDING_EFFECTIVE_AT = "pending_effective_at"
META_CHANGE_TYPE = "plan_change_type"
PENDING_HINT_KEYS = (META_PENDING_PLAN_ID, META_PENDING_BILLING_PERIOD, META_PENDING_EFFECTIVE_AT, META_CHANGE_TYPE)

PERIOD_VALUES = frozenset(period.value for period in Period)

PRORATE_AND_INVOICE = "always_invoice"
NO_PRORATION = "none"

INVALID_CHANGE_MESSAGES = {
    ChangeReason.SAME_PLAN: "You are already on the selected plan",
    ChangeReason.UNKNOWN_PLAN: "Unknown plan",
}


class PlanChangeType(str, Enum):  # noqa: UP042
    UPGRADE_IMMEDIATE = "upgrade_immediate"
    DOWNGRADE_SCHEDULED = "downgrade_scheduled"


@dataclass
class PlanChangeResult:
    type: PlanChangeType
    message: str
    effective_date: datetime
    plan_id: str
    price_ref: str
    subscription: Subscription


@dataclass
class CancelChangeResult:
    success: bool
    changed: bool
    restored_plan_id: str
    subscription: Subscription


@dataclass(frozen=True)
class ObservedState:
    """Subscription fields a client saw when it chose a change. ``None`` fields are not compared."""

    price_ref: str | None = None
    current_period_end: datetime | None = None
    status: str | None = None

    @classmethod
    def of(cls, subscription: Subscription) -> "ObservedState":
        return cls(subscription.price_ref, subscription.current_period_end, subscription.status)

    def differences(self, subscription: Subscription) -> list[str]:
        observed = {
            "price": (self.price_ref, subscription.price_ref),
            "current_period_end": (self.current_period_end, subscription.current_period_end),
            "status": (self.status, subscription.status),
        }
        return [
            f"{name} {seen} -> {actual}"
            for name, (seen, actual) in observed.items()
            if seen is not None and seen != actual
        ]


def isoformat_z(value: datetime) -> str:
    """ISO-8601 UTC with a ``Z`` suffix, e.g. 2025-03-01T00:00:00Z."""
    return value.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def pending_effective_at(subscription: Subscription) -> datetime | None:
    raw = subscription.metadata.get(META_PENDING_EFFECTIVE_AT)
    if not raw:
        return None
    try:
        return datetime.fromtimestamp(int(raw), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def resolve_effective_plan(
    subscription: Subscription,
    catalog: PlanCatalog,
    now: datetime,
    fallback_plan_id: str | None = None,
) -> str | None:
    """
    Derive the plan the customer is currently entitled to from a fresh subscription.

    During a scheduled downgrade the item already carries the lower price, so
    the price alone is not enough: ``plan_id`` in the metadata names the plan in
    effect until the period rolls over.
    """
    pending_plan = subscription.metadata.get(META_PENDING_PLAN_ID)
    if pending_change_applied(subscription, now) and catalog.get(pending_plan):
        return pending_plan

    plan_id = subscription.metadata.get(META_PLAN_ID)
    if catalog.get(plan_id):
        return plan_id

    if not pending_plan:
        tier = catalog.plan_for_price(subscription.price_ref)
        if tier:
            return tier.id

    if catalog.get(fallback_plan_id):
        return fallback_plan_id
    return None


def resolve_effective_period(subscription: Subscription, catalog: PlanCatalog, now: datetime) -> Period | None:
    """
    Billing period of the plan in effect.

    Once a scheduled change has taken effect the item already carries its
    price, so the pending period (or that price) wins over ``billing_period``.
    """
    if pending_change_applied(subscription, now):
        raw = subscription.metadata.get(META_PENDING_BILLING_PERIOD)
        if raw in PERIOD_VALUES:
            return Period(raw)
        return catalog.period_for_price(subscription.price_ref)

    raw = subscription.metadata.get(META_BILLING_PERIOD)
    if raw in PERIOD_VALUES:
        return Period(raw)
    if subscription.metadata.get(META_PENDING_PLAN_ID):
        return None
    return catalog.period_for_price(subscription.price_ref)


def pending_change_applied(subscription: Subscription, now: datetime) -> bool:
    """True once the renewal that a scheduled downgrade waited for has passed."""
    pending_at = pending_effective_at(subscription)
    return bool(subscription.metadata.get(META_PENDING_PLAN_ID)) and pending_at is not None and now >= pending_at


def applied_change_metadata(subscription: Subscription, catalog: PlanCatalog, now: datetime) -> dict[str, str] | None:
    """
    Metadata update that folds a scheduled change which has taken effect into
    ``plan_id`` and ``billing_period``. None when there is nothing to fold.
    """
    if not pending_change_applied(subscription, now):
        return None
    plan_id = resolve_effective_plan(subscription, catalog, now)
    period = resolve_effective_period(subscription, catalog, now)
    if plan_id is None or period is None:
        return None
    return {
        META_PLAN_ID: plan_id,
        META_BILLING_PERIOD: period.value,
        **{key: "" for key in PENDING_HINT_KEYS},
    }


class PlanChangeEngine:
    def __init__(
        self,
        provider: BillingProvider,
        cache: SubscriptionCache,
        catalog: PlanCatalog | None = None,
        record_event: Callable[[AuditRecord], object] | None = None,
        update_cached_plan: Callable[[str, str | None, str | None], object] | None = None,
        clock: Clock | None = None,
    ):
        self.provider = provider
        self.cache = cache
        self.catalog = catalog or get_plan_catalog()
        self.record_event = record_event or append_subscription_event
        self.update_cached_plan = update_cached_plan or profiles.update_cached_plan
        self.clock = clock or utc_now

    def classify(self, current_plan: str | None, target_plan: str | None) -> PlanChange:
        return self.catalog.classify(current_plan, target_plan)

    def change_plan(
        self,
        customer_ref: str,
        current_plan: str | None,
        target_plan: str | None,
        period: Period | str,
        subscription: Subscription | None = None,
        user_id: str | None = None,
        observed: ObservedState | None = None,
    ) -> PlanChangeResult:
        """
        Upgrade immediately or schedule a downgrade.

        Args:
            customer_ref: Stripe customer id
            current_plan: Plan currently in effect
            target_plan: Requested plan
            period: Billing period for the target price
            subscription: Snapshot the caller based ``current_plan`` on. When
                given, the engine re-reads it and raises SubscriptionConflict
                if it changed in the meantime.
            user_id: Application user id recorded on the audit row
            observed: State the end user last saw. Compared against the
                re-read subscription the same way as ``subscription``.

        Raises:
            InputValidationError: Unknown billing period
            InvalidPlanChange: Same plan or unknown plan id (no provider call made)
            ConfigurationError: Target price not configured
            NotFoundError: No active subscription
            SubscriptionConflict: Subscription changed underneath the request
            AmbiguousOutcome: Provider timed out during the mutation
            ProviderError: Provider rejected the call
        """
        period = parse_period(period)
        change = self.classify(current_plan, target_plan)
        if not change.is_valid:
            logger.info(
                f"Rejected plan change for customer {customer_ref}: "
                f"{current_plan} -> {target_plan} ({change.reason.value})"
            )
            raise InvalidPlanChange(INVALID_CHANGE_MESSAGES[change.reason], reason=change.reason.value)

        target_price = self.catalog.price_ref(change.target, period)
        current = self._load_current(customer_ref, subscription, observed)

        if change.kind is ChangeKind.UPGRADE:
            return self._immediate_upgrade(customer_ref, current, change, period, target_price, user_id)
        return self._scheduled_downgrade(customer_ref, current, change, period, target_price, user_id)

    def cancel_scheduled_change(
        self,
        customer_ref: str,
        subscription: Subscription,
        restore_plan: str,
        period: Period | str,
    ) -> CancelChangeResult:
        """
        Restore the price of the plan currently in effect.

        ``subscription`` must be fetched fresh from the provider, bypassing the
        cache. Calling this again after a successful restore sends nothing to
        the provider.
        """
        period = parse_period(period)
        if self.catalog.get(restore_plan) is None:
            raise InvalidPlanChange(
                INVALID_CHANGE_MESSAGES[ChangeReason.UNKNOWN_PLAN], reason=ChangeReason.UNKNOWN_PLAN.value
            )
        restore_price = self.catalog.price_ref(restore_plan, period)

        item = subscription.sole_item
        if item is None:
            raise SubscriptionConflict("Subscription must have exactly one item")

        has_hints = any(subscription.metadata.get(key) for key in PENDING_HINT_KEYS)
        if item.price_ref == restore_price and not has_hints:
            logger.info(
                f"No scheduled change to cancel for subscription {subscription.id} "
                f"(already on {restore_plan} {period.value})"
            )
            self._invalidate_cache(customer_ref)
            return CancelChangeResult(success=True, changed=False, restored_plan_id=restore_plan, subscription=subscription)

        metadata = {
            **subscription.metadata,
            META_PLAN_ID: restore_plan,
            META_BILLING_PERIOD: period.value,
            **{key: "" for key in PENDING_HINT_KEYS},
        }
        if item.price_ref == restore_price:
            updated = self._mutate(customer_ref, self.provider.update_subscription_metadata, subscription.id, metadata)
        else:
            updated = self._mutate(
                customer_ref,
                self.provider.update_subscription_item,
                subscription.id,
                item.id,
                restore_price,
                NO_PRORATION,
                metadata,
            )

        logger.info(f"Cancelled scheduled plan change on {subscription.id}; restored {restore_plan} {period.value}")
        self._invalidate_cache(customer_ref)
        return CancelChangeResult(success=True, changed=True, restored_plan_id=restore_plan, subscription=updated)

    def _load_current(
        self,
        customer_ref: str,
        snapshot: Subscription | None,
        observed: ObservedState | None = None,
    ) -> Subscription:
        if snapshot is None:
            subscriptions = self.provider.list_active_subscriptions(customer_ref)
            if not subscriptions:
                raise NotFoundError("No active subscription found")
            current = subscriptions[0]
        else:
            current = self.provider.retrieve_subscription(snapshot.id)

        for expected in (ObservedState.of(snapshot) if snapshot else None, observed):
            differences = expected.differences(current) if expected else []
            if differences:
                logger.warning(f"Subscription {current.id} changed during plan change ({', '.join(differences)})")
                raise SubscriptionConflict()

        if not current.is_live:
            raise SubscriptionConflict(f"Subscription is {current.status}")
        if current.sole_item is None:
            raise SubscriptionConflict("Subscription must have exactly one item")
        return current

    def _immediate_upgrade(
        self,
        customer_ref: str,
        current: Subscription,
        change: PlanChange,
        period: Period,
        target_price: str,
        user_id: str | None,
    ) -> PlanChangeResult:
        metadata = {
            **current.metadata,
            **{key: "" for key in PENDING_HINT_KEYS},
            META_PLAN_ID: change.target,
            META_BILLING_PERIOD: period.value,
            META_CHANGE_TYPE: "immediate_upgrade",
        }
        updated = self._mutate(
            customer_ref,
            self.provider.update_subscription_item,
            current.id,
            current.sole_item.id,
            target_price,
            PRORATE_AND_INVOICE,
            metadata,
        )
        now = self.clock()
        logger.info(f"Upgraded subscription {current.id}: {change.current} -> {change.target} ({period.value})")

        self._after_mutation(
            customer_ref,
            AuditRecord(
                subscription_ref=current.id,
                customer_ref=customer_ref,
                price_ref=target_price,
                plan_id=change.target,
                event_type=AuditEventType.UPGRADE_IMMEDIATE,
                occurred_at=now,
                effective_date=now,
                user_id=user_id,
            ),
        )
        self._refresh_cached_plan(customer_ref, change.target, current.id)

        return PlanChangeResult(
            type=PlanChangeType.UPGRADE_IMMEDIATE,
            message=(
                f"Upgraded to {change.target}. The prorated difference for the rest of "
                "the current billing period has been charged."
            ),
            effective_date=now,
            plan_id=change.target,
            price_ref=target_price,
            subscription=updated,
        )

    def _scheduled_downgrade(
        self,
        customer_ref: str,
        current: Subscription,
        change: PlanChange,
        period: Period,
        target_price: str,
        user_id: str | None,
    ) -> PlanChangeResult:
        effective_date = current.current_period_end
        if effective_date is None:
            raise ProviderError("Subscription has no current billing period")

        # Hints of an earlier change that already took effect are replaced here
        effective_period = resolve_effective_period(current, self.catalog, self.clock())
        metadata = {
            **current.metadata,
            META_PLAN_ID: change.current,
            META_PENDING_PLAN_ID: change.target,
            META_PENDING_BILLING_PERIOD: period.value,
            META_PENDING_EFFECTIVE_AT: str(int(effective_date.timestamp())),
            META_CHANGE_TYPE: "downgrade",
        }
        if effective_period is not None:
            metadata[META_BILLING_PERIOD] = effective_period.value

        updated = self._mutate(
            customer_ref,
            self.provider.update_subscription_item,
            current.id,
            current.sole_item.id,
            target_price,
            NO_PRORATION,
            metadata,
        )
        logger.info(
            f"Scheduled downgrade of subscription {current.id}: {change.current} -> {change.target} "
            f"at {isoformat_z(effective_date)}"
        )

        self._after_mutation(
            customer_ref,
            AuditRecord(
                subscription_ref=current.id,
                customer_ref=customer_ref,
                price_ref=target_price,
                plan_id=change.target,
                event_type=AuditEventType.DOWNGRADE_SCHEDULED,
                occurred_at=self.clock(),
                effective_date=effective_date,
                user_id=user_id,
            ),
        )

        return PlanChangeResult(
            type=PlanChangeType.DOWNGRADE_SCHEDULED,
            message=f"Downgrade to {change.target} scheduled for {effective_date.date().isoformat()}",
            effective_date=effective_date,
            plan_id=change.target,
            price_ref=target_price,
            subscription=updated,
        )

    def _mutate(self, customer_ref: str, operation: Callable[..., Subscription], *args) -> Subscription:
        """Run a provider mutation. On an unknown outcome the cached entry is dropped before re-raising."""
        try:
            return operation(*args)
        except AmbiguousOutcome:
            self._invalidate_cache(customer_ref)
            raise

    def _after_mutation(self, customer_ref: str, record: AuditRecord) -> None:
        """Cache invalidation then audit append. Never raises."""
        self._invalidate_cache(customer_ref)
        try:
            self.record_event(record)
        except Exception as e:
            logger.warning(
                f"Failed to record {record.event_type.value} for subscription {record.subscription_ref}: {e}"
            )

    def _invalidate_cache(self, customer_ref: str) -> None:
        try:
            self.cache.invalidate(customer_ref)
        except Exception as e:
            logger.warning(f"Failed to invalidate subscription cache for customer {customer_ref}: {e}")

    def _refresh_cached_plan(self, customer_ref: str, plan_id: str, subscription_ref: str) -> None:
        try:
            self.update_cached_plan(customer_ref, plan_id, subscription_ref)
        except Exception as e:
            logger.warning(f"Failed to update cached plan for customer {customer_ref}: {e}")
