#!/usr/bin/env python3
"""
Profiles Database Module
Billing fields of the application's user profile.

``plan`` is a denormalized copy of the subscriber's plan used for fast reads.
It is never treated as authoritative; Stripe is.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from src.config.supabase_config import execute_with_retry

logger = logging.getLogger(__name__)

TABLE = "profiles"
PROFILE_COLUMNS = "user_id, email, plan, stripe_customer_id, stripe_subscription_id"


class Profile(BaseModel):
    user_id: str
    email: str | None = None
    customer_ref: str | None = None
    active_subscription_ref: str | None = None
    cached_plan_id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Profile":
        return cls(
            user_id=str(row["user_id"]),
            email=row.get("email"),
            customer_ref=row.get("stripe_customer_id"),
            active_subscription_ref=row.get("stripe_subscription_id"),
            cached_plan_id=row.get("plan"),
        )


def get_profile(user_id: str) -> Profile | None:
    def _select(client):
        return client.table(TABLE).select(PROFILE_COLUMNS).eq("user_id", user_id).limit(1).execute()

    result = execute_with_retry(_select, operation_name="get_profile")
    if not result.data:
        return None
    return Profile.from_row(result.data[0])


def get_profile_by_customer(customer_ref: str) -> Profile | None:
    def _select(client):
        return (
            client.table(TABLE)
            .select(PROFILE_COLUMNS)
            .eq("stripe_customer_id", customer_ref)
            .limit(1)
            .execute()
        )

    result = execute_with_retry(_select, operation_name="get_profile_by_customer")
    if not result.data:
        return None
    return Profile.from_row(result.data[0])


def set_customer_ref(user_id: str, customer_ref: str) -> None:
    def _update(client):
        return (
            client.table(TABLE)
            .update({"stripe_customer_id": customer_ref, "updated_at": datetime.now(UTC).isoformat()})
            .eq("user_id", user_id)
            .execute()
        )

    execute_with_retry(_update, operation_name="set_customer_ref")
    logger.info(f"Saved Stripe customer {customer_ref} for user {user_id}")


def update_cached_plan(
    customer_ref: str,
    plan_id: str | None,
    subscription_ref: str | None = None,
) -> None:
    """
    Refresh the denormalized plan fields for the profile owning ``customer_ref``.

    Passing ``plan_id=None`` clears the plan, e.g. after the subscription ended.
    """
    values: dict[str, Any] = {
        "plan": plan_id,
        "stripe_subscription_id": subscription_ref,
        "updated_at": datetime.now(UTC).isoformat(),
    }

    def _update(client):
        return client.table(TABLE).update(values).eq("stripe_customer_id", customer_ref).execute()

    result = execute_with_retry(_update, operation_name="update_cached_plan")
    if not result.data:
        logger.warning(f"No profile found for customer {customer_ref} while updating cached plan")
        return
    logger.info(f"Cached plan for customer {customer_ref} set to {plan_id}")
