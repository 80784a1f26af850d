"""
Billing provider adapter.

Stripe is the system of record for subscriptions. The rest of the service only
talks to it through the BillingProvider protocol below, which returns the
normalized models defined here instead of raw Stripe objects, so tests can
swap in a fake provider.

Error mapping (StripeBillingProvider):
- Connection failures and timeouts on a mutation raise AmbiguousOutcome. The
  change may have been applied, so it is never retried automatically.
- Connection failures on a read raise ProviderError.
- ``resource_missing`` raises NotFoundError.
- Every other Stripe error raises ProviderError with a redacted message. The
  original error is logged and sent to Sentry.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Protocol

import stripe
from pydantic import BaseModel, Field

from src.config.config import Config
from src.utils.exceptions import (
    AmbiguousOutcome,
    ConfigurationError,
    InputValidationError,
    NotFoundError,
    ProviderError,
)
from src.utils.sentry_context import capture_payment_error

logger = logging.getLogger(__name__)

# Statuses Stripe still bills for
LIVE_STATUSES = frozenset({"active", "trialing", "past_due", "unpaid", "incomplete"})


class SubscriptionItem(BaseModel):
    id: str
    price_ref: str | None = None
    quantity: int = 1


class Subscription(BaseModel):
    """Normalized copy of a Stripe subscription. Never authoritative."""

    id: str
    customer_ref: str
    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    items: list[SubscriptionItem] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def sole_item(self) -> SubscriptionItem | None:
        """The subscription's only item, or None when it has zero or several."""
        return self.items[0] if len(self.items) == 1 else None

    @property
    def price_ref(self) -> str | None:
        item = self.sole_item
        return item.price_ref if item else None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


class InvoiceLine(BaseModel):
    amount: int
    proration: bool = False
    description: str | None = None


class InvoicePreview(BaseModel):
    currency: str = "usd"
    lines: list[InvoiceLine] = Field(default_factory=list)
    next_payment_attempt: datetime | None = None
    period_end: datetime | None = None


class CheckoutSession(BaseModel):
    id: str
    url: str | None = None


class PortalSession(BaseModel):
    url: str


class CheckoutCompletion(BaseModel):
    """The checkout.session object of a checkout.session.completed event."""

    id: str
    customer_ref: str | None = None
    subscription_ref: str | None = None
    mode: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class InvoiceEvent(BaseModel):
    """The invoice object of an invoice.* event. Amounts in minor units."""

    id: str
    customer_ref: str | None = None
    subscription_ref: str | None = None
    payment_intent_ref: str | None = None
    amount_paid: int = 0
    amount_due: int = 0
    currency: str = "usd"
    billing_reason: str | None = None


class ProviderEvent(BaseModel):
    """A verified webhook event. At most one of the payload objects is set."""

    id: str
    type: str
    subscription: Subscription | None = None
    checkout_session: CheckoutCompletion | None = None
    invoice: InvoiceEvent | None = None
    previous_attributes: dict[str, Any] = Field(default_factory=dict)

    @property
    def data_object(self) -> Subscription | CheckoutCompletion | InvoiceEvent | None:
        return self.subscription or self.checkout_session or self.invoice

    @property
    def customer_ref(self) -> str | None:
        obj = self.data_object
        return obj.customer_ref if obj else None


class BillingProvider(Protocol):
    def retrieve_subscription(self, subscription_ref: str) -> Subscription: ...

    def update_subscription_item(
        self,
        subscription_ref: str,
        item_id: str,
        price_ref: str,
        proration_behavior: str,
        metadata: dict[str, str] | None = None,
    ) -> Subscription: ...

    def update_subscription_metadata(self, subscription_ref: str, metadata: dict[str, str]) -> Subscription: ...

    def list_active_subscriptions(self, customer_ref: str) -> list[Subscription]: ...

    def preview_invoice(
        self, customer_ref: str, subscription_ref: str, item_id: str, price_ref: str
    ) -> InvoicePreview: ...

    def create_customer(self, email: str | None, metadata: dict[str, str]) -> str: ...

    def create_checkout_session(
        self,
        customer_ref: str,
        price_ref: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSession: ...

    def create_portal_session(self, customer_ref: str, return_url: str) -> PortalSession: ...

    def set_cancel_at_period_end(self, subscription_ref: str, cancel: bool) -> Subscription: ...

    def construct_webhook_event(self, payload: bytes, signature: str) -> ProviderEvent: ...


def _value(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or plain dict.

    Item access comes first because attribute access on StripeObject can
    resolve to dict methods (``items``, ``values``).
    """
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    try:
        return obj[key]
    except (KeyError, TypeError, AttributeError):
        return getattr(obj, key, default)


def _timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def _metadata_to_dict(metadata: Any) -> dict[str, str]:
    if not metadata:
        return {}
    if hasattr(metadata, "to_dict"):
        metadata = metadata.to_dict()
    try:
        return {str(k): str(v) for k, v in dict(metadata).items() if v not in (None, "")}
    except (TypeError, ValueError):
        return {}


def to_subscription(obj: Any) -> Subscription:
    """Normalize a Stripe subscription object (or its dict form)."""
    raw_items = _value(_value(obj, "items"), "data", []) or []
    items = []
    item_period_start = None
    item_period_end = None
    for raw_item in raw_items:
        price = _value(raw_item, "price")
        price_ref = price if isinstance(price, str) else _value(price, "id")
        items.append(
            SubscriptionItem(
                id=_value(raw_item, "id"),
                price_ref=price_ref,
                quantity=_value(raw_item, "quantity", 1) or 1,
            )
        )
        # Newer API versions only report the billing period on items
        item_period_start = item_period_start or _value(raw_item, "current_period_start")
        item_period_end = item_period_end or _value(raw_item, "current_period_end")

    customer = _value(obj, "customer")
    customer_ref = customer if isinstance(customer, str) else _value(customer, "id", "")

    return Subscription(
        id=_value(obj, "id"),
        customer_ref=customer_ref or "",
        status=_value(obj, "status", "incomplete"),
        current_period_start=_timestamp(_value(obj, "current_period_start") or item_period_start),
        current_period_end=_timestamp(_value(obj, "current_period_end") or item_period_end),
        cancel_at_period_end=bool(_value(obj, "cancel_at_period_end", False)),
        items=items,
        metadata=_metadata_to_dict(_value(obj, "metadata")),
    )


def _ref(value: Any) -> str | None:
    """Id of an expandable field, which Stripe sends as either an id or an object."""
    if value is None or isinstance(value, str):
        return value or None
    return _value(value, "id")


def to_checkout_completion(obj: Any) -> CheckoutCompletion:
    return CheckoutCompletion(
        id=_value(obj, "id"),
        customer_ref=_ref(_value(obj, "customer")),
        subscription_ref=_ref(_value(obj, "subscription")),
        mode=_value(obj, "mode"),
        metadata=_metadata_to_dict(_value(obj, "metadata")),
    )


def to_invoice_event(obj: Any) -> InvoiceEvent:
    # Newer API versions moved the subscription under parent.subscription_details
    subscription = _value(obj, "subscription") or _value(
        _value(_value(obj, "parent"), "subscription_details"), "subscription"
    )
    return InvoiceEvent(
        id=_value(obj, "id"),
        customer_ref=_ref(_value(obj, "customer")),
        subscription_ref=_ref(subscription),
        payment_intent_ref=_ref(_value(obj, "payment_intent")),
        amount_paid=int(_value(obj, "amount_paid", 0) or 0),
        amount_due=int(_value(obj, "amount_due", 0) or 0),
        currency=_value(obj, "currency", "usd") or "usd",
        billing_reason=_value(obj, "billing_reason"),
    )


def _is_proration_line(line: Any) -> bool:
    if _value(line, "proration"):
        return True
    details = _value(_value(line, "parent"), "subscription_item_details")
    return bool(_value(details, "proration"))


def to_invoice_preview(invoice: Any) -> InvoicePreview:
    lines = [
        InvoiceLine(
            amount=int(_value(line, "amount", 0) or 0),
            proration=_is_proration_line(line),
            description=_value(line, "description"),
        )
        for line in (_value(_value(invoice, "lines"), "data", []) or [])
    ]
    return InvoicePreview(
        currency=_value(invoice, "currency", "usd") or "usd",
        lines=lines,
        next_payment_attempt=_timestamp(_value(invoice, "next_payment_attempt")),
        period_end=_timestamp(_value(invoice, "period_end")),
    )


class StripeBillingProvider:
    """BillingProvider implemented on the stripe SDK."""

    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None, timeout: float | None = None):
        self.api_key = api_key or Config.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or Config.STRIPE_WEBHOOK_SECRET

        if not self.api_key:
            logger.error("STRIPE_SECRET_KEY is not configured")
        stripe.api_key = self.api_key
        # Mutations are not blindly retried; a timed-out update has an unknown outcome
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(
            timeout=timeout or Config.STRIPE_TIMEOUT_SECONDS
        )

    def _handle_stripe_error(
        self,
        error: stripe.StripeError,
        operation: str,
        mutation: bool,
        details: dict[str, Any] | None = None,
    ) -> Exception:
        """Translate a Stripe error into the billing taxonomy (returned, not raised)."""
        if isinstance(error, stripe.APIConnectionError):
            if mutation:
                logger.error(f"Stripe {operation} outcome unknown (connection failure): {error}")
                capture_payment_error(error, operation=operation, details={**(details or {}), "ambiguous": True})
                return AmbiguousOutcome()
            logger.warning(f"Stripe {operation} failed to connect: {error}")
            return ProviderError("Billing provider is unreachable", original=error)

        if isinstance(error, stripe.InvalidRequestError) and getattr(error, "code", None) == "resource_missing":
            logger.info(f"Stripe {operation}: resource missing ({error.user_message or error})")
            return NotFoundError("Subscription not found")

        logger.error(f"Stripe error during {operation}: {type(error).__name__}: {error}")
        capture_payment_error(error, operation=operation, details=details)
        return ProviderError(original=error)

    def retrieve_subscription(self, subscription_ref: str) -> Subscription:
        try:
            return to_subscription(stripe.Subscription.retrieve(subscription_ref))
        except stripe.StripeError as e:
            raise self._handle_stripe_error(
                e, "retrieve_subscription", mutation=False, details={"subscription_ref": subscription_ref}
            ) from e

    def update_subscription_item(
        self,
        subscription_ref: str,
        item_id: str,
        price_ref: str,
        proration_behavior: str,
        metadata: dict[str, str] | None = None,
    ) -> Subscription:
        """Swap the price of one item. The billing cycle anchor is never reset."""
        params: dict[str, Any] = {
            "items": [{"id": item_id, "price": price_ref}],
            "proration_behavior": proration_behavior,
            "billing_cycle_anchor": "unchanged",
        }
        if metadata is not None:
            params["metadata"] = metadata

        try:
            updated = stripe.Subscription.modify(subscription_ref, **params)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(
                e,
                "update_subscription_item",
                mutation=True,
                details={"subscription_ref": subscription_ref, "price_ref": price_ref},
            ) from e

        logger.info(
            f"Updated subscription {subscription_ref} item {item_id} to {price_ref} "
            f"(proration_behavior={proration_behavior})"
        )
        return to_subscription(updated)

    def update_subscription_metadata(self, subscription_ref: str, metadata: dict[str, str]) -> Subscription:
        """Set metadata keys. Empty string values delete the key on Stripe's side."""
        try:
            updated = stripe.Subscription.modify(subscription_ref, metadata=metadata)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(
                e, "update_subscription_metadata", mutation=True, details={"subscription_ref": subscription_ref}
            ) from e
        return to_subscription(updated)

    def list_active_subscriptions(self, customer_ref: str) -> list[Subscription]:
        """Subscriptions Stripe still bills for (active, trialing, past_due, ...), newest first."""
        try:
            # Without a status filter Stripe returns every non-canceled subscription
            result = stripe.Subscription.list(customer=customer_ref, limit=10)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(
                e, "list_active_subscriptions", mutation=False, details={"customer_ref": customer_ref}
            ) from e
        subscriptions = [to_subscription(sub) for sub in (_value(result, "data", []) or [])]
        return [sub for sub in subscriptions if sub.is_live]

    def preview_invoice(
        self, customer_ref: str, subscription_ref: str, item_id: str, price_ref: str
    ) -> InvoicePreview:
        """Preview the next invoice with the item swap applied. Never mutates."""
        try:
            invoice = stripe.Invoice.create_preview(
                customer=customer_ref,
                subscription=subscription_ref,
                subscription_details={
                    "items": [{"id": item_id, "price": price_ref}],
                    "proration_behavior": "create_prorations",
                },
            )
        except stripe.StripeError as e:
            raise self._handle_stripe_error(
                e,
                "preview_invoice",
                mutation=False,
                details={"subscription_ref": subscription_ref, "price_ref": price_ref},
            ) from e
        return to_invoice_preview(invoice)

    def create_customer(self, email: str | None, metadata: dict[str, str]) -> str:
        try:
            customer = stripe.Customer.create(email=email, metadata=metadata)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(e, "create_customer", mutation=True, details=metadata) from e
        logger.info(f"Stripe customer created: {customer.id}")
        return customer.id

    def create_checkout_session(
        self,
        customer_ref: str,
        price_ref: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                customer=customer_ref,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price_ref, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            raise self._handle_stripe_error(
                e, "create_checkout_session", mutation=True, details={"customer_ref": customer_ref}
            ) from e
        logger.info(f"Subscription checkout session created: {session.id} for customer {customer_ref}")
        return CheckoutSession(id=session.id, url=session.url)

    def create_portal_session(self, customer_ref: str, return_url: str) -> PortalSession:
        try:
            session = stripe.billing_portal.Session.create(customer=customer_ref, return_url=return_url)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(
                e, "create_portal_session", mutation=False, details={"customer_ref": customer_ref}
            ) from e
        return PortalSession(url=session.url)

    def set_cancel_at_period_end(self, subscription_ref: str, cancel: bool) -> Subscription:
        try:
            updated = stripe.Subscription.modify(subscription_ref, cancel_at_period_end=cancel)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(
                e, "set_cancel_at_period_end", mutation=True, details={"subscription_ref": subscription_ref}
            ) from e
        logger.info(f"Subscription {subscription_ref} cancel_at_period_end={cancel}")
        return to_subscription(updated)

    def construct_webhook_event(self, payload: bytes, signature: str) -> ProviderEvent:
        if not self.webhook_secret:
            raise ConfigurationError("Webhook secret is not configured", details="STRIPE_WEBHOOK_SECRET is not set")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise InputValidationError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Invalid webhook signature: {e}")
            raise InputValidationError("Invalid signature") from e

        data = _value(event, "data")
        obj = _value(data, "object")
        object_type = _value(obj, "object")
        previous = _value(data, "previous_attributes") or {}
        if hasattr(previous, "to_dict"):
            previous = previous.to_dict()

        return ProviderEvent(
            id=_value(event, "id"),
            type=_value(event, "type"),
            subscription=to_subscription(obj) if object_type == "subscription" else None,
            checkout_session=to_checkout_completion(obj) if object_type == "checkout.session" else None,
            invoice=to_invoice_event(obj) if object_type == "invoice" else None,
            previous_attributes=dict(previous),
        )
