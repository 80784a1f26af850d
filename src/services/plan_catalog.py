"""
Plan Catalog

Static table of subscription tiers. Each tier has a rank (a total order used to
tell upgrades from downgrades) and one Stripe price id per billing period.

The catalog is built once from Config at import time and never changes while
the process runs. Lookups for a (plan, period) pair without a configured price
raise ConfigurationError: that is a deployment defect, never a user error, and
the caller must not fall back to a different plan.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from src.config.config import Config
from src.utils.exceptions import ConfigurationError, InputValidationError

logger = logging.getLogger(__name__)


class Period(str, Enum):  # noqa: UP042
    """Billing periods"""

    MONTHLY = "monthly"
    ANNUAL = "annual"


class ChangeKind(str, Enum):  # noqa: UP042
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    INVALID = "invalid"


class ChangeReason(str, Enum):  # noqa: UP042
    """Why a plan change was classified as invalid"""

    SAME_PLAN = "same_plan"
    UNKNOWN_PLAN = "unknown_plan"


@dataclass(frozen=True)
class PlanTier:
    id: str
    rank: int
    price_refs: Mapping[Period, str | None] = field(default_factory=dict)
    free: bool = False


@dataclass(frozen=True)
class PlanChange:
    """Result of classifying a (current, target) plan pair."""

    kind: ChangeKind
    current: str
    target: str
    reason: ChangeReason | None = None

    @property
    def is_valid(self) -> bool:
        return self.kind is not ChangeKind.INVALID


# Ascending capability order. Rank is the 1-based position in this tuple.
PLAN_SEQUENCE = ("starter", "basic", "essentials", "plus", "advanced")
FREE_PLAN_ID = "starter"


def parse_period(value: str | Period | None) -> Period:
    """Parse a billing period string, raising InputValidationError for unknown values."""
    if isinstance(value, Period):
        return value
    try:
        return Period(str(value).strip().lower())
    except ValueError as e:
        raise InputValidationError(
            "Invalid billing period",
            details=f"Expected one of: {', '.join(p.value for p in Period)}",
        ) from e


class PlanCatalog:
    """Read-only lookup over the configured plan tiers."""

    def __init__(self, tiers: list[PlanTier]):
        ranks = [tier.rank for tier in tiers]
        if ranks != sorted(set(ranks)):
            raise ValueError("Plan ranks must be strictly increasing")
        self._tiers = MappingProxyType({tier.id: tier for tier in tiers})
        self._by_price = MappingProxyType(
            {
                price_ref: (tier, period)
                for tier in tiers
                for period, price_ref in tier.price_refs.items()
                if price_ref
            }
        )

    @classmethod
    def from_price_ids(cls, price_ids: Mapping[str, Mapping[str, str | None]]) -> "PlanCatalog":
        """Build the canonical five-tier catalog from a ``{plan: {period: price_id}}`` map."""
        tiers = []
        for rank, plan_id in enumerate(PLAN_SEQUENCE, start=1):
            configured = price_ids.get(plan_id, {})
            tiers.append(
                PlanTier(
                    id=plan_id,
                    rank=rank,
                    price_refs=MappingProxyType({period: configured.get(period.value) for period in Period}),
                    free=plan_id == FREE_PLAN_ID,
                )
            )
        return cls(tiers)

    @property
    def tiers(self) -> list[PlanTier]:
        return sorted(self._tiers.values(), key=lambda tier: tier.rank)

    def get(self, plan_id: str | None) -> PlanTier | None:
        if not plan_id:
            return None
        return self._tiers.get(plan_id)

    def rank(self, plan_id: str) -> int | None:
        tier = self.get(plan_id)
        return tier.rank if tier else None

    def classify(self, current: str | None, target: str | None) -> PlanChange:
        """
        Classify a plan change.

        Returns INVALID with reason UNKNOWN_PLAN if either id is not in the
        catalog, or SAME_PLAN if both ids are equal. Otherwise UPGRADE iff the
        target ranks higher than the current plan.
        """
        current_tier = self.get(current)
        target_tier = self.get(target)

        if current_tier is None or target_tier is None:
            return PlanChange(ChangeKind.INVALID, current or "", target or "", ChangeReason.UNKNOWN_PLAN)
        if current_tier.id == target_tier.id:
            return PlanChange(ChangeKind.INVALID, current_tier.id, target_tier.id, ChangeReason.SAME_PLAN)

        kind = ChangeKind.UPGRADE if target_tier.rank > current_tier.rank else ChangeKind.DOWNGRADE
        return PlanChange(kind, current_tier.id, target_tier.id)

    def price_ref(self, plan_id: str, period: Period | str) -> str:
        """
        Resolve the Stripe price id for a plan and billing period.

        Raises:
            InputValidationError: Unknown period value
            ConfigurationError: Plan unknown or no price configured for the pair
        """
        period = parse_period(period)
        tier = self.get(plan_id)
        price_ref = tier.price_refs.get(period) if tier else None

        if not price_ref:
            env_name = f"STRIPE_PRICE_ID_{str(plan_id).upper()}_{period.value.upper()}"
            logger.error(f"No Stripe price configured for plan={plan_id} period={period.value} ({env_name})")
            raise ConfigurationError(
                "Billing is not configured for this plan",
                details=f"{env_name} is not set",
            )
        return price_ref

    def plan_for_price(self, price_ref: str | None) -> PlanTier | None:
        """Reverse lookup: which tier does a Stripe price id belong to."""
        match = self._by_price.get(price_ref) if price_ref else None
        return match[0] if match else None

    def period_for_price(self, price_ref: str | None) -> Period | None:
        match = self._by_price.get(price_ref) if price_ref else None
        return match[1] if match else None


_catalog: PlanCatalog | None = None


def get_plan_catalog() -> PlanCatalog:
    """Get the process-wide catalog built from Config.STRIPE_PRICE_IDS."""
    global _catalog
    if _catalog is None:
        _catalog = PlanCatalog.from_price_ids(Config.STRIPE_PRICE_IDS)
        missing = Config.missing_price_ids()
        if missing:
            logger.warning(f"Plan catalog loaded with unconfigured prices: {', '.join(missing)}")
        else:
            logger.info("Plan catalog loaded")
    return _catalog
