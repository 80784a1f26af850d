#!/usr/bin/env python3
"""
Payments Database Module
Payment history of subscription invoices, written from Stripe invoice webhooks.
"""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.config.supabase_config import execute_with_retry
from src.utils.sentry_context import capture_database_error

logger = logging.getLogger(__name__)

TABLE = "payments"


class PaymentStatus(str, Enum):  # noqa: UP042
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentRecord(BaseModel):
    invoice_ref: str
    customer_ref: str | None = None
    subscription_ref: str | None = None
    payment_intent_ref: str | None = None
    amount: int  # minor units
    currency: str = "usd"
    status: PaymentStatus
    billing_reason: str | None = None
    user_id: str | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "stripe_invoice_id": self.invoice_ref,
            "stripe_customer_id": self.customer_ref,
            "stripe_subscription_id": self.subscription_ref,
            # Invoices paid without a PaymentIntent (credit balance) still get a unique key
            "stripe_payment_intent_id": self.payment_intent_ref or f"invoice_{self.invoice_ref}",
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status.value,
            "billing_reason": self.billing_reason,
            "created_at": self.occurred_at.isoformat(),
        }


def record_payment(record: PaymentRecord) -> dict[str, Any]:
    """
    Insert one payment row.

    Raises:
        Exception: Any Supabase error, after it has been reported to Sentry
    """

    def _insert(client):
        return client.table(TABLE).insert(record.to_row()).execute()

    try:
        result = execute_with_retry(_insert, operation_name="record_payment")
        if not result.data:
            raise RuntimeError(f"Insert into {TABLE} returned no row")
    except Exception as e:
        capture_database_error(
            e,
            operation="record_payment",
            table=TABLE,
            details={"invoice_ref": record.invoice_ref, "status": record.status.value},
        )
        raise

    logger.info(
        f"Recorded {record.status.value} payment of {record.amount} {record.currency} "
        f"for invoice {record.invoice_ref}"
    )
    return result.data[0]
