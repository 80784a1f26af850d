"""
Sentry error context utilities for error tracking and reporting.

Helpers that attach structured context to errors captured by Sentry. When
Sentry has not been initialised (no DSN) the SDK's capture calls are no-ops.
"""

import logging
from typing import Any

import sentry_sdk

logger = logging.getLogger(__name__)


def capture_error(
    exception: Exception,
    context_type: str | None = None,
    context_data: dict[str, Any] | None = None,
    tags: dict[str, str] | None = None,
    level: str = "error",
) -> str | None:
    """
    Capture an exception to Sentry with structured context.

    Args:
        exception: The exception to capture
        context_type: Type of context for the error
        context_data: Additional context information
        tags: Dictionary of tags for filtering
        level: Sentry level ('error', 'warning', 'info', etc.)

    Returns:
        Event ID if captured, None if Sentry is disabled
    """
    try:
        with sentry_sdk.new_scope() as scope:
            if context_type and context_data:
                scope.set_context(context_type, context_data)
            for key, value in (tags or {}).items():
                scope.set_tag(key, str(value))
            scope.level = level
            return sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")
        return None


def capture_payment_error(
    exception: Exception,
    operation: str,
    provider: str = "stripe",
    user_id: str | None = None,
    amount: float | None = None,
    details: dict[str, Any] | None = None,
) -> str | None:
    """
    Capture a payment-related error with standard context.

    Args:
        exception: The exception to capture
        operation: Payment operation (e.g., 'update_subscription_item', 'webhook')
        provider: Payment provider (default: 'stripe')
        user_id: User ID if applicable
        amount: Transaction amount if applicable
        details: Additional details (customer ref, subscription ref, etc.)
    """
    context_data = {
        "operation": operation,
        "provider": provider,
    }
    if user_id:
        context_data["user_id"] = user_id
    if amount:
        context_data["amount"] = amount
    if details:
        context_data.update(details)

    return capture_error(
        exception,
        context_type="payment",
        context_data=context_data,
        tags={"operation": operation, "provider": provider},
    )


def capture_database_error(
    exception: Exception,
    operation: str,
    table: str,
    details: dict[str, Any] | None = None,
) -> str | None:
    """Capture a Supabase error with the table and operation as context."""
    context_data = {"operation": operation, "table": table}
    if details:
        context_data.update(details)

    return capture_error(
        exception,
        context_type="database",
        context_data=context_data,
        tags={"table": table, "db_operation": operation},
        level="warning",
    )
