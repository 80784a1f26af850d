"""
Stripe webhook handling for subscription lifecycle and payment events.

Handled events:
- checkout.session.completed: link the Stripe customer to the user's profile
- customer.subscription.created: cache the new plan on the profile, audit ``created``
- customer.subscription.updated: refresh the cached plan. Once the renewal a
  scheduled downgrade waited for has passed, its pending hints are folded into
  ``plan_id`` / ``billing_period`` on the subscription.
- customer.subscription.deleted: drop the customer to the free plan, audit ``canceled``
- invoice.payment_succeeded / invoice.payment_failed: record payment history

Every handled event invalidates the customer's subscription cache entry, which
is what makes a failed renewal visible before the SHORT cache entry expires.
Events are recorded as processed before dispatch so Stripe redeliveries are
skipped.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel

from src.db import payments, profiles, webhook_events
from src.db.payments import PaymentRecord, PaymentStatus
from src.db.subscription_history import AuditEventType, AuditRecord, append_subscription_event
from src.services.billing_provider import BillingProvider, ProviderEvent, Subscription
from src.services.plan_catalog import FREE_PLAN_ID, PlanCatalog, get_plan_catalog
from src.services.plan_change import applied_change_metadata, resolve_effective_plan
from src.services.subscription_cache import Clock, SubscriptionCache, utc_now
from src.utils.exceptions import InputValidationError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class WebhookProcessingResult(BaseModel):
    success: bool
    event_type: str
    event_id: str
    message: str
    processed_at: datetime


class WebhookService:
    def __init__(
        self,
        provider: BillingProvider,
        cache: SubscriptionCache,
        catalog: PlanCatalog | None = None,
        record_event: Callable[[AuditRecord], object] | None = None,
        update_cached_plan: Callable[[str, str | None, str | None], object] | None = None,
        is_event_processed: Callable[[str], bool] | None = None,
        record_processed_event: Callable[..., bool] | None = None,
        find_profile: Callable[[str], profiles.Profile | None] | None = None,
        record_payment: Callable[[PaymentRecord], object] | None = None,
        set_customer_ref: Callable[[str, str], object] | None = None,
        clock: Clock | None = None,
    ):
        self.provider = provider
        self.cache = cache
        self.catalog = catalog or get_plan_catalog()
        self.record_event = record_event or append_subscription_event
        self.update_cached_plan = update_cached_plan or profiles.update_cached_plan
        self.is_event_processed = is_event_processed or webhook_events.is_event_processed
        self.record_processed_event = record_processed_event or webhook_events.record_processed_event
        self.find_profile = find_profile or profiles.get_profile_by_customer
        self.record_payment = record_payment or payments.record_payment
        self.set_customer_ref = set_customer_ref or profiles.set_customer_ref
        self.clock = clock or utc_now

        self._handlers = {
            CHECKOUT_COMPLETED: self._handle_checkout_completed,
            SUBSCRIPTION_CREATED: self._handle_subscription_created,
            SUBSCRIPTION_UPDATED: self._handle_subscription_updated,
            SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
            INVOICE_PAYMENT_SUCCEEDED: self._handle_invoice_payment_succeeded,
            INVOICE_PAYMENT_FAILED: self._handle_invoice_payment_failed,
        }

    def handle_webhook(self, payload: bytes, signature: str | None) -> WebhookProcessingResult:
        """Verify, deduplicate and dispatch a Stripe webhook"""
        if not signature:
            logger.error("Missing webhook signature")
            raise InputValidationError("Missing webhook signature")

        event = self.provider.construct_webhook_event(payload, signature)
        logger.info(f"Processing webhook: {event.type} (ID: {event.id})")

        if self.is_event_processed(event.id):
            return self._result(event, f"Event {event.id} already processed (duplicate)")

        obj = event.data_object
        self.record_processed_event(
            event_id=event.id,
            event_type=event.type,
            customer_ref=event.customer_ref,
            metadata={"object_ref": obj.id} if obj else None,
        )

        handler = self._handlers.get(event.type)
        if handler is None or obj is None:
            logger.info(f"Ignoring webhook event type {event.type}")
            return self._result(event, f"Event {event.type} ignored")

        handler(event)
        return self._result(event, f"Event {event.type} processed successfully")

    def _result(self, event: ProviderEvent, message: str) -> WebhookProcessingResult:
        return WebhookProcessingResult(
            success=True,
            event_type=event.type,
            event_id=event.id,
            message=message,
            processed_at=self.clock(),
        )

    # ==================== Checkout Webhook Handlers ====================

    def _handle_checkout_completed(self, event: ProviderEvent) -> None:
        session = event.checkout_session
        if session is None:
            return
        user_id = session.metadata.get("user_id")
        if session.mode != "subscription" or not user_id or not session.customer_ref:
            logger.warning(
                f"Checkout session {session.id} completed without subscription metadata "
                f"(mode={session.mode}, user_id={user_id})"
            )
            return

        logger.info(f"Checkout completed for user {user_id}, plan {session.metadata.get('plan_id')}")
        try:
            self.set_customer_ref(user_id, session.customer_ref)
        except Exception as e:
            logger.error(f"Failed to link customer {session.customer_ref} to user {user_id}: {e}", exc_info=True)
        # The plan itself arrives with customer.subscription.created
        self._invalidate(session.customer_ref)

    # ==================== Subscription Webhook Handlers ====================

    def _handle_subscription_created(self, event: ProviderEvent) -> None:
        subscription = event.subscription
        plan_id = resolve_effective_plan(subscription, self.catalog, self.clock())

        self._invalidate(subscription.customer_ref)
        self._set_cached_plan(subscription.customer_ref, plan_id, subscription.id)
        self._append(subscription, AuditEventType.CREATED, plan_id, effective_date=subscription.current_period_start)

    def _handle_subscription_updated(self, event: ProviderEvent) -> None:
        subscription = event.subscription
        self._invalidate(subscription.customer_ref)

        if not subscription.is_live:
            logger.info(f"Subscription {subscription.id} updated to status {subscription.status}")
            return

        now = self.clock()
        plan_id = resolve_effective_plan(subscription, self.catalog, now)
        if plan_id is None:
            logger.warning(f"Could not determine plan for updated subscription {subscription.id}")
            return
        self._fold_applied_change(subscription, now)
        self._set_cached_plan(subscription.customer_ref, plan_id, subscription.id)

    def _handle_subscription_deleted(self, event: ProviderEvent) -> None:
        subscription = event.subscription
        previous_plan = resolve_effective_plan(subscription, self.catalog, self.clock())

        self._invalidate(subscription.customer_ref)
        self._set_cached_plan(subscription.customer_ref, FREE_PLAN_ID, None)
        self._append(subscription, AuditEventType.CANCELED, previous_plan, effective_date=self.clock())

    # ==================== Invoice Webhook Handlers ====================

    def _handle_invoice_payment_succeeded(self, event: ProviderEvent) -> None:
        self._handle_invoice(event, PaymentStatus.SUCCEEDED)

    def _handle_invoice_payment_failed(self, event: ProviderEvent) -> None:
        invoice = event.invoice
        if invoice is not None:
            logger.warning(
                f"Invoice payment failed: {invoice.id} (subscription={invoice.subscription_ref}, "
                f"amount_due={invoice.amount_due} {invoice.currency})"
            )
        self._handle_invoice(event, PaymentStatus.FAILED)

    def _handle_invoice(self, event: ProviderEvent, status: PaymentStatus) -> None:
        invoice = event.invoice
        if invoice is None or not invoice.subscription_ref:
            logger.info(f"Invoice {invoice.id if invoice else '?'} is not for a subscription, skipping")
            return

        if invoice.customer_ref:
            self._invalidate(invoice.customer_ref)

        record = PaymentRecord(
            invoice_ref=invoice.id,
            customer_ref=invoice.customer_ref,
            subscription_ref=invoice.subscription_ref,
            payment_intent_ref=invoice.payment_intent_ref,
            amount=invoice.amount_paid if status is PaymentStatus.SUCCEEDED else invoice.amount_due,
            currency=invoice.currency,
            status=status,
            billing_reason=invoice.billing_reason,
            user_id=self._user_id_for_customer(invoice.customer_ref) if invoice.customer_ref else None,
            occurred_at=self.clock(),
        )
        try:
            self.record_payment(record)
        except Exception as e:
            logger.warning(f"Failed to record {status.value} payment for invoice {invoice.id}: {e}")

    # ==================== Side effects ====================

    def _fold_applied_change(self, subscription: Subscription, now: datetime) -> None:
        metadata = applied_change_metadata(subscription, self.catalog, now)
        if metadata is None:
            return
        try:
            self.provider.update_subscription_metadata(subscription.id, metadata)
        except Exception as e:
            # The hints still resolve to the right plan; the next update retries the fold
            logger.warning(f"Failed to fold applied plan change into subscription {subscription.id}: {e}")
            return
        logger.info(
            f"Scheduled change applied on subscription {subscription.id}: now "
            f"{metadata['plan_id']} {metadata['billing_period']}"
        )

    def _invalidate(self, customer_ref: str) -> None:
        try:
            self.cache.invalidate(customer_ref)
        except Exception as e:
            logger.warning(f"Failed to invalidate subscription cache for customer {customer_ref}: {e}")

    def _set_cached_plan(self, customer_ref: str, plan_id: str | None, subscription_ref: str | None) -> None:
        try:
            self.update_cached_plan(customer_ref, plan_id, subscription_ref)
        except Exception as e:
            logger.error(f"Failed to update cached plan for customer {customer_ref}: {e}", exc_info=True)

    def _append(
        self,
        subscription: Subscription,
        event_type: AuditEventType,
        plan_id: str | None,
        effective_date: datetime | None = None,
    ) -> None:
        record = AuditRecord(
            subscription_ref=subscription.id,
            customer_ref=subscription.customer_ref,
            price_ref=subscription.price_ref,
            plan_id=plan_id,
            event_type=event_type,
            occurred_at=self.clock(),
            effective_date=effective_date,
            user_id=subscription.metadata.get("user_id") or self._user_id_for_customer(subscription.customer_ref),
        )
        try:
            self.record_event(record)
        except Exception as e:
            logger.warning(f"Failed to record {event_type.value} for subscription {subscription.id}: {e}")

    def _user_id_for_customer(self, customer_ref: str) -> str | None:
        try:
            profile = self.find_profile(customer_ref)
        except Exception as e:
            logger.warning(f"Failed to look up profile for customer {customer_ref}: {e}")
            return None
        return profile.user_id if profile else None
