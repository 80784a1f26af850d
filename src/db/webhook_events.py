#!/usr/bin/env python3
"""
Webhook Event Tracking Database Module
Records processed Stripe webhook events so redeliveries are handled once
"""

import logging
from datetime import UTC, datetime
from typing import Any

from src.config.supabase_config import execute_with_retry

logger = logging.getLogger(__name__)

TABLE = "stripe_webhook_events"

_missing_table_warning_logged = False


def _maybe_log_missing_table_hint(error: Exception) -> None:
    """Warn once when the stripe_webhook_events table is missing from the schema cache."""
    global _missing_table_warning_logged

    if _missing_table_warning_logged:
        return

    message = str(error)
    if TABLE in message or "PGRST205" in message:
        logger.warning(
            f"{TABLE} table is unavailable in Supabase (migrations not applied or schema cache stale). "
            "Apply the migrations, then run NOTIFY pgrst, 'reload schema'; to refresh PostgREST."
        )
        _missing_table_warning_logged = True


def is_event_processed(event_id: str) -> bool:
    """
    Check if a webhook event has already been processed

    Args:
        event_id: Stripe event ID (evt_xxx)

    Returns:
        True if event was already processed, False otherwise
    """
    try:

        def _check_event(client):
            return client.table(TABLE).select("event_id").eq("event_id", event_id).execute()

        result = execute_with_retry(_check_event, max_retries=2, operation_name="is_event_processed")

        exists = bool(result.data)
        if exists:
            logger.warning(f"Duplicate webhook event detected: {event_id}")

        return exists

    except Exception as e:
        _maybe_log_missing_table_hint(e)
        logger.error(f"Error checking if event is processed: {e}", exc_info=True)
        # Better to process twice than not at all
        return False


def record_processed_event(
    event_id: str,
    event_type: str,
    customer_ref: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    Record that a webhook event has been processed

    Args:
        event_id: Stripe event ID (evt_xxx)
        event_type: Stripe event type (e.g., customer.subscription.deleted)
        customer_ref: Stripe customer id associated with the event
        metadata: Additional event metadata for debugging

    Returns:
        True if recorded successfully, False otherwise
    """
    try:

        def _record_event(client):
            return (
                client.table(TABLE)
                .insert(
                    {
                        "event_id": event_id,
                        "event_type": event_type,
                        "customer_ref": customer_ref,
                        "metadata": metadata or {},
                        "processed_at": datetime.now(UTC).isoformat(),
                    }
                )
                .execute()
            )

        result = execute_with_retry(_record_event, max_retries=2, operation_name="record_processed_event")

        if result.data:
            logger.info(f"Recorded processed webhook event: {event_id} ({event_type})")
            return True
        logger.error(f"Failed to record webhook event: {event_id}")
        return False

    except Exception as e:
        _maybe_log_missing_table_hint(e)
        logger.error(f"Error recording processed event: {e}", exc_info=True)
        return False
