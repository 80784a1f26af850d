"""
Billing exception taxonomy.

Every error the billing service raises on purpose derives from BillingError and
carries the HTTP status it maps to. The handlers in src.utils.error_handlers
render them as ``{"error": ..., "details": ...}``.

Usage:
    from src.utils.exceptions import InvalidPlanChange

    raise InvalidPlanChange("Already on this plan", reason=ChangeReason.SAME_PLAN)
"""

from typing import Any


class BillingError(Exception):
    """Base class for errors with a user-facing message and an HTTP status."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, details: str | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InputValidationError(BillingError):
    """Malformed request or unknown plan/period value. Raised before any I/O."""

    status_code = 400
    default_message = "Invalid request"


class InvalidPlanChange(BillingError):
    """Same-plan or unranked transition. Raised before any provider call."""

    status_code = 400
    default_message = "Invalid plan change"

    def __init__(self, message: str | None = None, reason: str | None = None, details: str | None = None):
        super().__init__(message, details)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.reason:
            body["reason"] = self.reason
        return body


class Unauthenticated(BillingError):
    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(BillingError):
    """No profile, no customer or no active subscription."""

    status_code = 404
    default_message = "Not found"


class SubscriptionConflict(BillingError):
    """The subscription changed underneath the request, or already exists."""

    status_code = 409
    default_message = "Subscription state changed, please refresh and try again"


class ConfigurationError(BillingError):
    """Deployment defect, e.g. a plan/period pair without a provider price."""

    status_code = 500
    default_message = "Billing is not configured correctly"


class ProviderError(BillingError):
    """The billing provider rejected or failed the call.

    ``message`` is the redacted text shown to callers; the provider's own
    error is kept on ``original`` for server-side logging only.
    """

    status_code = 500
    default_message = "Billing provider request failed"

    def __init__(self, message: str | None = None, details: str | None = None, original: Exception | None = None):
        super().__init__(message, details)
        self.original = original


class PreviewUnavailable(BillingError):
    """
    Proration preview could not be computed.

    The preview route turns it into ``available: false``. Anywhere else it is a 422.
    """

    status_code = 422
    default_message = "Preview unavailable"

    def __init__(self, reason: str | None = None):
        super().__init__(reason or self.default_message)
        self.reason = self.message


class AmbiguousOutcome(BillingError):
    """The provider call timed out; the change may or may not have been applied."""

    status_code = 504
    default_message = "The billing provider did not respond in time"

    def __init__(self, message: str | None = None, details: str | None = None):
        super().__init__(
            message,
            details or "Refresh your subscription to confirm whether the change was applied",
        )
