"""
Proration preview for plan upgrades.

Asks the billing provider what the next invoice would look like with the
subscription item swapped to a new price, without committing the change.
Amounts stay in minor currency units (cents) until the HTTP response.
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

from src.services.billing_provider import BillingProvider, InvoicePreview
from src.utils.exceptions import NotFoundError, PreviewUnavailable, ProviderError

logger = logging.getLogger(__name__)

# Currencies Stripe bills without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}
)


class ProrationPreview(BaseModel):
    immediate_charge: int
    proration_credit: int
    new_plan_charge: int
    currency: str = "usd"
    next_invoice_date: datetime | None = None

    def to_major_units(self) -> dict:
        return {
            "immediate_charge": to_major_units(self.immediate_charge, self.currency),
            "proration_credit": to_major_units(self.proration_credit, self.currency),
            "new_plan_charge": to_major_units(self.new_plan_charge, self.currency),
            "currency": self.currency,
            "next_invoice_date": self.next_invoice_date,
        }


def to_major_units(amount: int, currency: str = "usd") -> Decimal:
    """Convert an integer minor-unit amount to a two-place Decimal."""
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def summarize_prorations(invoice: InvoicePreview) -> tuple[int, int]:
    """Return (new_plan_charge, proration_credit) from an invoice's proration lines."""
    new_plan_charge = 0
    proration_credit = 0
    for line in invoice.lines:
        if not line.proration:
            continue
        if line.amount < 0:
            proration_credit += -line.amount
        else:
            new_plan_charge += line.amount
    return new_plan_charge, proration_credit


def build_preview(new_plan_charge: int, proration_credit: int, **kwargs) -> ProrationPreview:
    return ProrationPreview(
        immediate_charge=max(0, new_plan_charge - proration_credit),
        proration_credit=proration_credit,
        new_plan_charge=new_plan_charge,
        **kwargs,
    )


class ProrationPreviewService:
    def __init__(self, provider: BillingProvider):
        self.provider = provider

    def preview_upgrade(self, subscription_ref: str, new_price_ref: str) -> ProrationPreview:
        """
        Preview the charges of switching a subscription to a new price now.

        Args:
            subscription_ref: Stripe subscription id
            new_price_ref: Stripe price id of the target plan and period

        Returns:
            ProrationPreview in minor units

        Raises:
            PreviewUnavailable: Subscription missing, without a single active
                item, or the provider refused the preview
        """
        try:
            subscription = self.provider.retrieve_subscription(subscription_ref)
        except (NotFoundError, ProviderError) as e:
            logger.warning(f"Proration preview unavailable for {subscription_ref}: {e}")
            raise PreviewUnavailable("Subscription could not be loaded") from e

        item = subscription.sole_item
        if not subscription.is_live or item is None:
            logger.info(
                f"Proration preview unavailable for {subscription_ref}: "
                f"status={subscription.status}, items={len(subscription.items)}"
            )
            raise PreviewUnavailable("Subscription has no active item")

        try:
            invoice = self.provider.preview_invoice(
                subscription.customer_ref, subscription.id, item.id, new_price_ref
            )
        except (NotFoundError, ProviderError) as e:
            logger.warning(f"Provider rejected proration preview for {subscription_ref}: {e}")
            raise PreviewUnavailable("Billing provider could not compute a preview") from e

        new_plan_charge, proration_credit = summarize_prorations(invoice)
        preview = build_preview(
            new_plan_charge,
            proration_credit,
            currency=invoice.currency,
            next_invoice_date=subscription.current_period_end or invoice.next_payment_attempt or invoice.period_end,
        )
        logger.info(
            f"Proration preview for {subscription_ref} -> {new_price_ref}: "
            f"charge={preview.immediate_charge} credit={preview.proration_credit} {preview.currency}"
        )
        return preview
