"""
Tests for the plan change engine
Immediate upgrades, scheduled downgrades, cancelling a scheduled change and
the ordering of provider mutation, cache invalidation and audit append.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from src.db.subscription_history import AuditEventType
from src.services.billing_provider import SubscriptionItem
from src.services.plan_catalog import Period
from src.services.plan_change import (
    META_BILLING_PERIOD,
    META_CHANGE_TYPE,
    META_PENDING_BILLING_PERIOD,
    META_PENDING_EFFECTIVE_AT,
    META_PENDING_PLAN_ID,
    META_PLAN_ID,
    NO_PRORATION,
    PRORATE_AND_INVOICE,
    ObservedState,
    PlanChangeEngine,
    PlanChangeType,
    applied_change_metadata,
    isoformat_z,
    resolve_effective_period,
    resolve_effective_plan,
)
from src.services.subscription_cache import CacheStrategy
from src.utils.exceptions import (
    AmbiguousOutcome,
    ConfigurationError,
    InputValidationError,
    InvalidPlanChange,
    NotFoundError,
    ProviderError,
    SubscriptionConflict,
)
from tests.helpers.mocks import (
    PERIOD_END,
    PRICE_IDS,
    FakeBillingProvider,
    RecordingAuditLog,
    make_subscription,
)


@pytest.fixture
def engine(provider, cache, catalog, audit_log, cached_plans, clock):
    return PlanChangeEngine(
        provider,
        cache,
        catalog,
        record_event=audit_log,
        update_cached_plan=cached_plans,
        clock=clock,
    )


def _engine_for(subscription, cache, catalog, audit_log, clock, **kwargs):
    provider = FakeBillingProvider([subscription])
    engine = PlanChangeEngine(
        provider, cache, catalog, record_event=audit_log, update_cached_plan=MagicMock(), clock=clock, **kwargs
    )
    return engine, provider


class TestImmediateUpgrade:
    def test_basic_to_advanced(self, cache, catalog, audit_log, clock):
        """basic (rank 2) -> advanced (rank 5) upgrades right away"""
        subscription = make_subscription(price_ref=PRICE_IDS["basic"]["monthly"])
        engine, provider = _engine_for(subscription, cache, catalog, audit_log, clock)
        cache.set("cus_123", subscription, CacheStrategy.DAILY)

        result = engine.change_plan("cus_123", "basic", "advanced", "monthly", subscription=subscription)

        assert result.type is PlanChangeType.UPGRADE_IMMEDIATE
        assert result.plan_id == "advanced"
        assert result.effective_date == clock.now
        assert "prorated" in result.message

        assert len(audit_log.records) == 1
        record = audit_log.records[0]
        assert record.event_type is AuditEventType.UPGRADE_IMMEDIATE
        assert record.plan_id == "advanced"
        assert record.price_ref == PRICE_IDS["advanced"]["monthly"]

        assert cache.get("cus_123") is None

    def test_upgrade_swaps_price_with_immediate_proration(self, engine, provider, plus_monthly_subscription):
        engine.change_plan("cus_123", "plus", "advanced", Period.MONTHLY, subscription=plus_monthly_subscription)

        name, kwargs = provider.mutation_calls()[0]
        assert name == "update_subscription_item"
        assert kwargs["item_id"] == "si_123"
        assert kwargs["price_ref"] == PRICE_IDS["advanced"]["monthly"]
        assert kwargs["proration_behavior"] == PRORATE_AND_INVOICE
        assert kwargs["metadata"][META_PLAN_ID] == "advanced"
        assert kwargs["metadata"][META_BILLING_PERIOD] == "monthly"

    def test_upgrade_keeps_renewal_date(self, engine, provider, plus_monthly_subscription):
        result = engine.change_plan(
            "cus_123", "plus", "advanced", "monthly", subscription=plus_monthly_subscription
        )
        assert result.subscription.current_period_end == PERIOD_END

    def test_upgrade_refreshes_cached_plan(self, engine, cached_plans, plus_monthly_subscription):
        engine.change_plan("cus_123", "plus", "advanced", "annual", subscription=plus_monthly_subscription)
        assert cached_plans.calls == [("cus_123", "advanced", "sub_123")]

    def test_upgrade_clears_pending_hints(self, cache, catalog, audit_log, clock):
        subscription = make_subscription(
            price_ref=PRICE_IDS["basic"]["monthly"],
            metadata={
                META_PLAN_ID: "plus",
                META_BILLING_PERIOD: "annual",
                META_PENDING_PLAN_ID: "basic",
                META_PENDING_BILLING_PERIOD: "monthly",
                META_PENDING_EFFECTIVE_AT: str(int(PERIOD_END.timestamp())),
            },
        )
        engine, provider = _engine_for(subscription, cache, catalog, audit_log, clock)

        engine.change_plan("cus_123", "plus", "advanced", "monthly", subscription=subscription)

        assert provider.subscriptions["sub_123"].metadata == {
            META_PLAN_ID: "advanced",
            META_BILLING_PERIOD: "monthly",
            META_CHANGE_TYPE: "immediate_upgrade",
        }

    def test_upgrade_without_snapshot_lists_subscriptions(self, engine, provider):
        result = engine.change_plan("cus_123", "plus", "advanced", "monthly")

        assert result.type is PlanChangeType.UPGRADE_IMMEDIATE
        assert provider.call_names()[0] == "list_active_subscriptions"


class TestScheduledDowngrade:
    def test_plus_to_basic_scheduled_for_period_end(self, engine, provider, audit_log, plus_monthly_subscription):
        """plus (rank 4) -> basic (rank 2) takes effect at current_period_end"""
        result = engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=plus_monthly_subscription)

        assert result.type is PlanChangeType.DOWNGRADE_SCHEDULED
        assert result.type.value == "downgrade_scheduled"
        assert isoformat_z(result.effective_date) == "2025-03-01T00:00:00Z"
        assert result.message == "Downgrade to basic scheduled for 2025-03-01"

        record = audit_log.records[0]
        assert record.event_type is AuditEventType.DOWNGRADE_SCHEDULED
        assert record.plan_id == "basic"
        assert record.effective_date == PERIOD_END

    def test_downgrade_swaps_price_without_proration(self, engine, provider, plus_monthly_subscription):
        engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=plus_monthly_subscription)

        _, kwargs = provider.mutation_calls()[0]
        assert kwargs["price_ref"] == PRICE_IDS["basic"]["monthly"]
        assert kwargs["proration_behavior"] == NO_PRORATION

    def test_downgrade_keeps_current_plan_in_effect(self, engine, provider, catalog, clock, plus_monthly_subscription):
        result = engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=plus_monthly_subscription)

        stored = provider.subscriptions["sub_123"]
        assert stored.metadata[META_PLAN_ID] == "plus"
        assert stored.metadata[META_PENDING_PLAN_ID] == "basic"
        assert stored.metadata[META_CHANGE_TYPE] == "downgrade"
        assert stored.metadata[META_PENDING_EFFECTIVE_AT] == str(int(PERIOD_END.timestamp()))
        assert resolve_effective_plan(result.subscription, catalog, clock.now) == "plus"

    def test_downgrade_becomes_effective_after_period_end(self, engine, provider, catalog, clock, plus_monthly_subscription):
        engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=plus_monthly_subscription)

        clock.now = PERIOD_END
        assert resolve_effective_plan(provider.subscriptions["sub_123"], catalog, clock.now) == "basic"

    def test_downgrade_does_not_touch_cached_plan(self, engine, cached_plans, plus_monthly_subscription):
        engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=plus_monthly_subscription)
        assert cached_plans.calls == []

    def test_downgrade_without_period_end_fails_before_mutation(self, cache, catalog, audit_log, clock):
        subscription = make_subscription(current_period_end=None)
        engine, provider = _engine_for(subscription, cache, catalog, audit_log, clock)

        with pytest.raises(ProviderError):
            engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=subscription)

        assert provider.mutation_calls() == []


class TestInvalidChanges:
    def test_unknown_target_makes_no_provider_call(self, engine, provider, audit_log, plus_monthly_subscription):
        with pytest.raises(InvalidPlanChange) as exc_info:
            engine.change_plan("cus_123", "plus", "enterprise", "monthly", subscription=plus_monthly_subscription)

        assert exc_info.value.status_code == 400
        assert exc_info.value.reason == "unknown_plan"
        assert provider.calls == []
        assert audit_log.records == []

    def test_same_plan_makes_no_provider_call(self, engine, provider, plus_monthly_subscription):
        with pytest.raises(InvalidPlanChange) as exc_info:
            engine.change_plan("cus_123", "plus", "plus", "annual", subscription=plus_monthly_subscription)

        assert exc_info.value.reason == "same_plan"
        assert provider.calls == []

    def test_invalid_period_makes_no_provider_call(self, engine, provider):
        with pytest.raises(InputValidationError):
            engine.change_plan("cus_123", "plus", "advanced", "weekly")
        assert provider.calls == []

    def test_downgrade_to_free_plan_has_no_price(self, engine, provider, plus_monthly_subscription):
        with pytest.raises(ConfigurationError):
            engine.change_plan("cus_123", "plus", "starter", "monthly", subscription=plus_monthly_subscription)
        assert provider.calls == []


class TestSubscriptionState:
    def test_no_active_subscription(self, cache, catalog, audit_log, clock):
        engine = PlanChangeEngine(FakeBillingProvider([]), cache, catalog, record_event=audit_log, clock=clock)

        with pytest.raises(NotFoundError):
            engine.change_plan("cus_123", "plus", "advanced", "monthly")

    def test_concurrent_change_raises_conflict(self, engine, provider, audit_log, plus_monthly_subscription):
        """Another request upgraded the subscription after our snapshot was taken"""

        def concurrent_upgrade(fake):
            stored = fake.subscriptions["sub_123"]
            item = stored.items[0].model_copy(update={"price_ref": PRICE_IDS["advanced"]["monthly"]})
            fake.subscriptions["sub_123"] = stored.model_copy(update={"items": [item]})

        provider.on_retrieve = concurrent_upgrade

        with pytest.raises(SubscriptionConflict) as exc_info:
            engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=plus_monthly_subscription)

        assert exc_info.value.status_code == 409
        assert provider.mutation_calls() == []
        assert audit_log.records == []

    def test_observed_state_mismatch_raises_conflict(self, engine, provider, audit_log, plus_monthly_subscription):
        """The user chose the change while looking at an older price"""
        observed = ObservedState(price_ref=PRICE_IDS["advanced"]["monthly"])

        with pytest.raises(SubscriptionConflict):
            engine.change_plan(
                "cus_123", "plus", "basic", "monthly", subscription=plus_monthly_subscription, observed=observed
            )

        assert provider.mutation_calls() == []
        assert audit_log.records == []

    def test_matching_observed_state_proceeds(self, engine, provider, plus_monthly_subscription):
        observed = ObservedState(price_ref=PRICE_IDS["plus"]["monthly"], current_period_end=PERIOD_END, status="active")

        result = engine.change_plan("cus_123", "plus", "advanced", "monthly", observed=observed)

        assert result.type is PlanChangeType.UPGRADE_IMMEDIATE

    def test_multi_item_subscription_is_conflict(self, cache, catalog, audit_log, clock):
        subscription = make_subscription(items=[SubscriptionItem(id="si_1"), SubscriptionItem(id="si_2")])
        engine, provider = _engine_for(subscription, cache, catalog, audit_log, clock)

        with pytest.raises(SubscriptionConflict):
            engine.change_plan("cus_123", "plus", "advanced", "monthly", subscription=subscription)
        assert provider.mutation_calls() == []


class TestSideEffectOrdering:
    def test_mutation_then_invalidation_then_audit(self, provider, catalog, clock, plus_monthly_subscription):
        events = []
        cache = MagicMock()
        cache.invalidate.side_effect = lambda customer_ref: events.append("invalidate")

        original = provider.update_subscription_item

        def tracked_update(*args, **kwargs):
            events.append("mutate")
            return original(*args, **kwargs)

        provider.update_subscription_item = tracked_update
        engine = PlanChangeEngine(
            provider,
            cache,
            catalog,
            record_event=lambda record: events.append("audit"),
            update_cached_plan=MagicMock(),
            clock=clock,
        )

        engine.change_plan("cus_123", "plus", "advanced", "monthly", subscription=plus_monthly_subscription)

        assert events == ["mutate", "invalidate", "audit"]

    def test_audit_failure_still_reports_success(self, provider, cache, catalog, clock, plus_monthly_subscription, caplog):
        engine = PlanChangeEngine(
            provider,
            cache,
            catalog,
            record_event=RecordingAuditLog(fail_with=RuntimeError("db down")),
            update_cached_plan=MagicMock(),
            clock=clock,
        )

        result = engine.change_plan("cus_123", "plus", "advanced", "monthly", subscription=plus_monthly_subscription)

        assert result.type is PlanChangeType.UPGRADE_IMMEDIATE
        assert "Failed to record upgrade_immediate" in caplog.text

    def test_cache_failure_still_records_audit(self, provider, catalog, audit_log, clock, plus_monthly_subscription):
        cache = MagicMock()
        cache.invalidate.side_effect = RuntimeError("redis down")
        engine = PlanChangeEngine(
            provider, cache, catalog, record_event=audit_log, update_cached_plan=MagicMock(), clock=clock
        )

        result = engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=plus_monthly_subscription)

        assert result.type is PlanChangeType.DOWNGRADE_SCHEDULED
        assert audit_log.event_types == ["downgrade_scheduled"]

    def test_ambiguous_outcome_writes_no_audit(self, engine, provider, cache, audit_log, plus_monthly_subscription):
        provider.failures["update_subscription_item"] = AmbiguousOutcome()
        cache.set("cus_123", plus_monthly_subscription, CacheStrategy.DAILY)

        with pytest.raises(AmbiguousOutcome) as exc_info:
            engine.change_plan("cus_123", "plus", "advanced", "monthly", subscription=plus_monthly_subscription)

        assert exc_info.value.status_code == 504
        assert audit_log.records == []
        assert cache.get("cus_123") is None


class TestCancelScheduledChange:
    def _schedule_downgrade(self, engine, provider, subscription):
        engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=subscription)
        return provider.subscriptions["sub_123"].model_copy(deep=True)

    def test_restores_price_without_proration(self, engine, provider, plus_monthly_subscription):
        scheduled = self._schedule_downgrade(engine, provider, plus_monthly_subscription)

        result = engine.cancel_scheduled_change("cus_123", scheduled, "plus", "monthly")

        assert result.success is True
        assert result.changed is True
        assert result.restored_plan_id == "plus"
        name, kwargs = provider.mutation_calls()[-1]
        assert name == "update_subscription_item"
        assert kwargs["price_ref"] == PRICE_IDS["plus"]["monthly"]
        assert kwargs["proration_behavior"] == NO_PRORATION

        stored = provider.subscriptions["sub_123"]
        assert stored.price_ref == PRICE_IDS["plus"]["monthly"]
        assert META_PENDING_PLAN_ID not in stored.metadata
        assert META_PENDING_EFFECTIVE_AT not in stored.metadata

    def test_cancel_twice_is_idempotent(self, engine, provider, audit_log, plus_monthly_subscription):
        scheduled = self._schedule_downgrade(engine, provider, plus_monthly_subscription)
        engine.cancel_scheduled_change("cus_123", scheduled, "plus", "monthly")
        mutations_after_first = len(provider.mutation_calls())

        restored = provider.subscriptions["sub_123"].model_copy(deep=True)
        result = engine.cancel_scheduled_change("cus_123", restored, "plus", "monthly")

        assert result.success is True
        assert result.changed is False
        assert len(provider.mutation_calls()) == mutations_after_first
        assert audit_log.event_types == ["downgrade_scheduled"]

    def test_cancel_without_scheduled_change_is_noop(self, engine, provider, plus_monthly_subscription):
        result = engine.cancel_scheduled_change("cus_123", plus_monthly_subscription, "plus", Period.MONTHLY)

        assert result.changed is False
        assert provider.mutation_calls() == []

    def test_cancel_invalidates_cache(self, engine, provider, cache, plus_monthly_subscription):
        cache.set("cus_123", plus_monthly_subscription, CacheStrategy.DAILY)

        engine.cancel_scheduled_change("cus_123", plus_monthly_subscription, "plus", "monthly")

        assert cache.get("cus_123") is None

    def test_stale_hints_cleared_with_metadata_update(self, cache, catalog, audit_log, clock):
        subscription = make_subscription(
            price_ref=PRICE_IDS["plus"]["monthly"],
            metadata={META_PLAN_ID: "plus", META_PENDING_PLAN_ID: "basic", META_CHANGE_TYPE: "downgrade"},
        )
        engine, provider = _engine_for(subscription, cache, catalog, audit_log, clock)

        result = engine.cancel_scheduled_change("cus_123", subscription, "plus", "monthly")

        assert result.changed is True
        assert provider.call_names() == ["update_subscription_metadata"]
        assert provider.subscriptions["sub_123"].metadata == {META_PLAN_ID: "plus", META_BILLING_PERIOD: "monthly"}

    def test_unknown_restore_plan(self, engine, provider, plus_monthly_subscription):
        with pytest.raises(InvalidPlanChange):
            engine.cancel_scheduled_change("cus_123", plus_monthly_subscription, "enterprise", "monthly")
        assert provider.calls == []


class TestUpgradeRoundTrip:
    def test_upgrade_then_downgrade_returns_to_original_price(self, engine, provider, clock, plus_monthly_subscription):
        engine.change_plan("cus_123", "plus", "advanced", "monthly", subscription=plus_monthly_subscription)
        upgraded = provider.subscriptions["sub_123"].model_copy(deep=True)

        engine.change_plan("cus_123", "advanced", "plus", "monthly", subscription=upgraded)

        assert provider.subscriptions["sub_123"].price_ref == PRICE_IDS["plus"]["monthly"]
        prorations = [kwargs["proration_behavior"] for _, kwargs in provider.mutation_calls()]
        assert prorations == [PRORATE_AND_INVOICE, NO_PRORATION]


class TestScheduledChangesAcrossRenewal:
    """Scheduled downgrades once the renewal they waited for has passed"""

    RENEWED_AT = datetime(2025, 3, 10, tzinfo=UTC)
    NEXT_PERIOD_END = datetime(2025, 4, 1, tzinfo=UTC)

    def _renew(self, provider, clock):
        """Stripe rolled the subscription into its next period."""
        clock.now = self.RENEWED_AT
        stored = provider.subscriptions["sub_123"]
        provider.subscriptions["sub_123"] = stored.model_copy(
            update={"current_period_start": PERIOD_END, "current_period_end": self.NEXT_PERIOD_END}
        )
        return provider.subscriptions["sub_123"].model_copy(deep=True)

    def test_second_downgrade_keeps_plan_in_effect(self, cache, catalog, audit_log, clock):
        """advanced -> plus renews, then plus -> basic is scheduled and cancelled"""
        subscription = make_subscription(price_ref=PRICE_IDS["advanced"]["monthly"])
        engine, provider = _engine_for(subscription, cache, catalog, audit_log, clock)
        engine.change_plan("cus_123", "advanced", "plus", "monthly", subscription=subscription)

        renewed = self._renew(provider, clock)
        assert resolve_effective_plan(renewed, catalog, clock.now) == "plus"
        engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=renewed)

        stored = provider.subscriptions["sub_123"]
        assert stored.metadata[META_PLAN_ID] == "plus"
        assert stored.metadata[META_PENDING_PLAN_ID] == "basic"
        assert stored.metadata[META_PENDING_EFFECTIVE_AT] == str(int(self.NEXT_PERIOD_END.timestamp()))
        assert stored.price_ref == PRICE_IDS["basic"]["monthly"]

        plan = resolve_effective_plan(stored, catalog, clock.now)
        period = resolve_effective_period(stored, catalog, clock.now)
        assert plan == "plus"
        assert period is Period.MONTHLY

        result = engine.cancel_scheduled_change("cus_123", stored.model_copy(deep=True), plan, period)

        assert result.restored_plan_id == "plus"
        assert provider.subscriptions["sub_123"].price_ref == PRICE_IDS["plus"]["monthly"]
        assert provider.subscriptions["sub_123"].metadata == {META_PLAN_ID: "plus", META_BILLING_PERIOD: "monthly"}

    def test_downgrade_to_other_period_takes_that_period(self, cache, catalog, audit_log, clock):
        """plus annual -> basic monthly is billed monthly after the renewal"""
        subscription = make_subscription(price_ref=PRICE_IDS["plus"]["annual"])
        engine, provider = _engine_for(subscription, cache, catalog, audit_log, clock)
        engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=subscription)

        scheduled = provider.subscriptions["sub_123"]
        assert scheduled.metadata[META_BILLING_PERIOD] == "annual"
        assert scheduled.metadata[META_PENDING_BILLING_PERIOD] == "monthly"
        assert resolve_effective_period(scheduled, catalog, clock.now) is Period.ANNUAL

        renewed = self._renew(provider, clock)
        plan = resolve_effective_plan(renewed, catalog, clock.now)
        period = resolve_effective_period(renewed, catalog, clock.now)
        assert plan == "basic"
        assert period is Period.MONTHLY

        mutations_before = len(provider.mutation_calls())
        result = engine.cancel_scheduled_change("cus_123", renewed, plan, period)

        assert result.restored_plan_id == "basic"
        assert [name for name, _ in provider.mutation_calls()[mutations_before:]] == ["update_subscription_metadata"]
        assert provider.subscriptions["sub_123"].price_ref == PRICE_IDS["basic"]["monthly"]
        assert provider.subscriptions["sub_123"].metadata == {META_PLAN_ID: "basic", META_BILLING_PERIOD: "monthly"}

    def test_applied_change_metadata_folds_hints(self, cache, catalog, audit_log, clock):
        subscription = make_subscription(price_ref=PRICE_IDS["plus"]["annual"])
        engine, provider = _engine_for(subscription, cache, catalog, audit_log, clock)
        engine.change_plan("cus_123", "plus", "basic", "monthly", subscription=subscription)
        scheduled = provider.subscriptions["sub_123"]

        assert applied_change_metadata(scheduled, catalog, clock.now) is None

        renewed = self._renew(provider, clock)
        assert applied_change_metadata(renewed, catalog, clock.now) == {
            META_PLAN_ID: "basic",
            META_BILLING_PERIOD: "monthly",
            META_PENDING_PLAN_ID: "",
            META_PENDING_BILLING_PERIOD: "",
            META_PENDING_EFFECTIVE_AT: "",
            META_CHANGE_TYPE: "",
        }


class TestResolveEffectivePlan:
    def test_metadata_plan_wins_over_price(self, catalog):
        subscription = make_subscription(price_ref=PRICE_IDS["basic"]["monthly"], metadata={META_PLAN_ID: "plus"})
        assert resolve_effective_plan(subscription, catalog, datetime(2025, 2, 14, tzinfo=UTC)) == "plus"

    def test_price_lookup_without_metadata(self, catalog):
        subscription = make_subscription(price_ref=PRICE_IDS["essentials"]["annual"])
        now = datetime(2025, 2, 14, tzinfo=UTC)
        assert resolve_effective_plan(subscription, catalog, now) == "essentials"
        assert resolve_effective_period(subscription, catalog, now) is Period.ANNUAL

    def test_profile_fallback(self, catalog):
        subscription = make_subscription(price_ref="price_legacy")
        now = datetime(2025, 2, 14, tzinfo=UTC)
        assert resolve_effective_plan(subscription, catalog, now, fallback_plan_id="basic") == "basic"
        assert resolve_effective_plan(subscription, catalog, now) is None

    def test_pending_plan_without_metadata_plan_is_not_guessed_from_price(self, catalog):
        subscription = make_subscription(
            price_ref=PRICE_IDS["basic"]["monthly"], metadata={META_PENDING_PLAN_ID: "basic"}
        )
        now = datetime(2025, 2, 14, tzinfo=UTC)
        assert resolve_effective_plan(subscription, catalog, now, fallback_plan_id="plus") == "plus"
        assert resolve_effective_period(subscription, catalog, now) is None


def test_isoformat_z():
    assert isoformat_z(datetime(2025, 3, 1, tzinfo=UTC)) == "2025-03-01T00:00:00Z"
