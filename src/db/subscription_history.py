#!/usr/bin/env python3
"""
Subscription History Database Module
Append-only audit trail of subscription transitions.

Rows are only ever inserted, after the billing provider has confirmed the
transition. Nothing in the service reads, updates or deletes them.
"""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.config.supabase_config import execute_with_retry
from src.utils.sentry_context import capture_database_error

logger = logging.getLogger(__name__)

TABLE = "subscription_history"


class AuditEventType(str, Enum):  # noqa: UP042
    UPGRADE_IMMEDIATE = "upgrade_immediate"
    DOWNGRADE_SCHEDULED = "downgrade_scheduled"
    CREATED = "created"
    CANCELED = "canceled"


class AuditRecord(BaseModel):
    subscription_ref: str
    customer_ref: str
    price_ref: str | None = None
    plan_id: str | None = None
    event_type: AuditEventType
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    effective_date: datetime | None = None
    user_id: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "stripe_subscription_id": self.subscription_ref,
            "stripe_customer_id": self.customer_ref,
            "stripe_price_id": self.price_ref,
            "plan_id": self.plan_id,
            "event_type": self.event_type.value,
            "occurred_at": self.occurred_at.isoformat(),
            "effective_date": self.effective_date.isoformat() if self.effective_date else None,
        }


def append_subscription_event(record: AuditRecord) -> dict[str, Any]:
    """
    Insert one audit row.

    Raises:
        Exception: Any Supabase error. Callers decide whether it is fatal.
    """

    def _insert(client):
        return client.table(TABLE).insert(record.to_row()).execute()

    try:
        result = execute_with_retry(_insert, operation_name="append_subscription_event")
        if not result.data:
            raise RuntimeError(f"Insert into {TABLE} returned no row")
    except Exception as e:
        capture_database_error(
            e,
            operation="append_subscription_event",
            table=TABLE,
            details={"subscription_ref": record.subscription_ref, "event_type": record.event_type.value},
        )
        raise

    logger.info(
        f"Recorded {record.event_type.value} for subscription {record.subscription_ref} "
        f"(plan={record.plan_id})"
    )
    return result.data[0]
