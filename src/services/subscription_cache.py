#!/usr/bin/env python3
"""
Subscription Cache
Read-through cache in front of the billing provider's subscription fetch.

Entries are keyed by Stripe customer id and always replaced whole. Two
freshness strategies exist:
- DAILY: valid until the next wall-clock reset hour (06:00 by default, in
  SUBSCRIPTION_CACHE_TIMEZONE). It is not a rolling duration.
- SHORT: rolling window (10 minutes by default) for subscriptions whose payment
  state can change quickly.

An expired entry is deleted on read and reported as a miss; stale data is
never returned. The plan change engine invalidates a customer's entry after
every mutation it makes.
"""

import json
import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

import redis

from src.config.config import Config
from src.config.redis_config import get_redis_client, is_redis_available
from src.services.billing_provider import Subscription

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Statuses whose payment state can change between daily syncs
SENSITIVE_STATUSES = frozenset({"past_due", "unpaid", "incomplete", "trialing"})


class CacheStrategy(str, Enum):  # noqa: UP042
    DAILY = "daily"
    SHORT = "short"


def utc_now() -> datetime:
    return datetime.now(UTC)


def strategy_for(subscription: Subscription | None) -> CacheStrategy:
    """Pick SHORT for states sensitive to payment changes, DAILY otherwise."""
    if subscription is None:
        return CacheStrategy.SHORT
    if subscription.status in SENSITIVE_STATUSES or subscription.cancel_at_period_end:
        return CacheStrategy.SHORT
    return CacheStrategy.DAILY


def compute_expiry(
    strategy: CacheStrategy,
    fetched_at: datetime,
    reset_hour: int | None = None,
    timezone: str | None = None,
    short_ttl_minutes: int | None = None,
) -> datetime:
    """
    Compute when an entry fetched at ``fetched_at`` stops being valid.

    DAILY entries expire at the first reset hour strictly after the fetch time:
    fetched 05:59 expires 06:00 the same day, fetched 06:00 expires 06:00 the
    next day.
    """
    if strategy is CacheStrategy.SHORT:
        minutes = short_ttl_minutes if short_ttl_minutes is not None else Config.SUBSCRIPTION_CACHE_SHORT_TTL_MINUTES
        return fetched_at + timedelta(minutes=minutes)

    hour = reset_hour if reset_hour is not None else Config.SUBSCRIPTION_CACHE_RESET_HOUR
    tz = ZoneInfo(timezone or Config.SUBSCRIPTION_CACHE_TIMEZONE)

    local = fetched_at.astimezone(tz)
    reset = local.replace(hour=hour, minute=0, second=0, microsecond=0)
    if reset <= local:
        reset = (reset + timedelta(days=1)).replace(hour=hour)
    return reset.astimezone(UTC)


@dataclass
class CacheEntry:
    data: Subscription
    fetched_at: datetime
    strategy: CacheStrategy
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SubscriptionCache:
    """Base class: TTL bookkeeping and read-through on top of a storage backend."""

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or utc_now
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "expirations": 0,
            "invalidations": 0,
            "errors": 0,
        }

    # Storage hooks implemented by subclasses
    def _load(self, customer_ref: str) -> CacheEntry | None:
        raise NotImplementedError

    def _store(self, customer_ref: str, entry: CacheEntry, now: datetime) -> None:
        raise NotImplementedError

    def _delete(self, customer_ref: str) -> None:
        raise NotImplementedError

    def get(self, customer_ref: str) -> Subscription | None:
        """Return the cached subscription, or None on a miss or an expired entry."""
        entry = self._load(customer_ref)
        if entry is None:
            self._stats["misses"] += 1
            return None

        if entry.is_expired(self.clock()):
            self._stats["expirations"] += 1
            self._stats["misses"] += 1
            logger.debug(f"Subscription cache EXPIRED: {customer_ref} ({entry.strategy.value})")
            self._delete(customer_ref)
            return None

        self._stats["hits"] += 1
        return entry.data

    def set(self, customer_ref: str, data: Subscription, strategy: CacheStrategy) -> CacheEntry:
        now = self.clock()
        entry = CacheEntry(
            data=data,
            fetched_at=now,
            strategy=strategy,
            expires_at=compute_expiry(strategy, now),
        )
        self._store(customer_ref, entry, now)
        self._stats["sets"] += 1
        logger.debug(f"Subscription cache SET: {customer_ref} ({strategy.value}, expires {entry.expires_at.isoformat()})")
        return entry

    def invalidate(self, customer_ref: str) -> None:
        self._delete(customer_ref)
        self._stats["invalidations"] += 1
        logger.info(f"Subscription cache invalidated for customer {customer_ref}")

    def get_or_fetch(
        self,
        customer_ref: str,
        fetch: Callable[[], Subscription | None],
        strategy: CacheStrategy | None = None,
    ) -> Subscription | None:
        """
        Read-through lookup.

        On a miss, calls ``fetch`` and stores its result. When no strategy is
        given it is chosen from the fetched subscription's state. A None fetch
        result is returned without being cached.
        """
        cached = self.get(customer_ref)
        if cached is not None:
            return cached

        data = fetch()
        if data is not None:
            self.set(customer_ref, data, strategy or strategy_for(data))
        return data

    def get_stats(self) -> dict[str, int]:
        return dict(self._stats)


class InMemorySubscriptionCache(SubscriptionCache):
    """Process-local cache. Used by default and in tests with a fixed clock."""

    def __init__(self, clock: Clock | None = None):
        super().__init__(clock)
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def _load(self, customer_ref: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(customer_ref)

    def _store(self, customer_ref: str, entry: CacheEntry, now: datetime) -> None:
        with self._lock:
            self._entries[customer_ref] = entry

    def _delete(self, customer_ref: str) -> None:
        with self._lock:
            self._entries.pop(customer_ref, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisSubscriptionCache(SubscriptionCache):
    """Cache shared across instances. Redis expiry is set from the strategy via SETEX."""

    PREFIX = "stripe:subscription"

    def __init__(self, redis_client: redis.Redis, clock: Clock | None = None):
        super().__init__(clock)
        self.redis_client = redis_client

    def _key(self, customer_ref: str) -> str:
        return f"{self.PREFIX}:{customer_ref}"

    def _load(self, customer_ref: str) -> CacheEntry | None:
        try:
            raw = self.redis_client.get(self._key(customer_ref))
        except redis.RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Subscription cache GET error for {customer_ref}: {e}")
            return None
        if not raw:
            return None

        try:
            payload = json.loads(raw)
            return CacheEntry(
                data=Subscription.model_validate(payload["data"]),
                fetched_at=datetime.fromisoformat(payload["fetched_at"]),
                strategy=CacheStrategy(payload["strategy"]),
                expires_at=datetime.fromisoformat(payload["expires_at"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            self._stats["errors"] += 1
            logger.warning(f"Discarding unreadable subscription cache entry for {customer_ref}: {e}")
            return None

    def _store(self, customer_ref: str, entry: CacheEntry, now: datetime) -> None:
        ttl = max(1, math.ceil((entry.expires_at - now).total_seconds()))
        payload = {
            "data": entry.data.model_dump(mode="json"),
            "fetched_at": entry.fetched_at.isoformat(),
            "strategy": entry.strategy.value,
            "expires_at": entry.expires_at.isoformat(),
        }
        try:
            self.redis_client.setex(self._key(customer_ref), ttl, json.dumps(payload))
        except redis.RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Subscription cache SET error for {customer_ref}: {e}")

    def _delete(self, customer_ref: str) -> None:
        # Errors propagate: callers decide whether a failed invalidation is fatal
        self.redis_client.delete(self._key(customer_ref))


_subscription_cache: SubscriptionCache | None = None
_subscription_cache_lock = threading.Lock()


def get_subscription_cache() -> SubscriptionCache:
    """Get the process-wide subscription cache for the configured backend."""
    global _subscription_cache
    if _subscription_cache is None:
        with _subscription_cache_lock:
            if _subscription_cache is None:
                _subscription_cache = _build_cache()
    return _subscription_cache


def _build_cache() -> SubscriptionCache:
    if Config.SUBSCRIPTION_CACHE_BACKEND == "redis":
        if is_redis_available():
            logger.info("Subscription cache backend: redis")
            return RedisSubscriptionCache(get_redis_client())
        logger.warning("SUBSCRIPTION_CACHE_BACKEND=redis but Redis is unavailable; using in-memory cache")
    else:
        logger.info("Subscription cache backend: memory")
    return InMemorySubscriptionCache()
