"""GST-aware invoice totals.

Australian GST is a flat 10%. Line item prices are either GST-exclusive (the
default) or GST-inclusive; inclusive prices are back-calculated with ``/ 1.1``
so the grand total never changes when the flag is switched on. Every place
that shows money (API, PDF, email, persisted row) goes through
``compute_totals`` so the figures always agree.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal

from tradie_invoices.invoicing.models import InvoiceDraft, LineItem

GST_RATE = Decimal("0.10")
GST_DIVISOR = Decimal("1") + GST_RATE
CENTS = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class InvoiceTotals:
    """Derived money figures for a set of line items.

    ``subtotal`` is the sum of priced line totals as entered. For inclusive
    pricing it already contains GST, and ``exclusive_subtotal`` is the
    back-calculated ex-GST amount; otherwise the two are equal.
    """

    subtotal: Decimal
    exclusive_subtotal: Decimal
    gst_amount: Decimal
    total: Decimal
    has_missing_prices: bool
    prices_include_gst: bool = False

    def rounded(self, quantize: Decimal = CENTS) -> InvoiceTotals:
        """Return a copy rounded to cents for display."""
        return replace(
            self,
            subtotal=self.subtotal.quantize(quantize, rounding=ROUND_HALF_UP),
            exclusive_subtotal=self.exclusive_subtotal.quantize(quantize, rounding=ROUND_HALF_UP),
            gst_amount=self.gst_amount.quantize(quantize, rounding=ROUND_HALF_UP),
            total=self.total.quantize(quantize, rounding=ROUND_HALF_UP),
        )


def line_total(item: LineItem) -> Decimal | None:
    """Return quantity x unit price, or None when the price is unknown."""
    if item.unit_price is None:
        return None
    return item.quantity * item.unit_price


def compute_totals(
    line_items: Sequence[LineItem],
    gst_enabled: bool,
    prices_include_gst: bool | None = None,
) -> InvoiceTotals:
    """Compute subtotal, GST and total for a list of line items."""
    subtotal = ZERO
    has_missing_prices = False
    for item in line_items:
        amount = line_total(item)
        if amount is None:
            has_missing_prices = True
            continue
        subtotal += amount

    inclusive = bool(prices_include_gst)

    if not gst_enabled:
        return InvoiceTotals(
            subtotal=subtotal,
            exclusive_subtotal=subtotal,
            gst_amount=ZERO,
            total=subtotal,
            has_missing_prices=has_missing_prices,
            prices_include_gst=inclusive,
        )

    if inclusive:
        exclusive = subtotal / GST_DIVISOR
        return InvoiceTotals(
            subtotal=subtotal,
            exclusive_subtotal=exclusive,
            gst_amount=subtotal - exclusive,
            total=subtotal,
            has_missing_prices=has_missing_prices,
            prices_include_gst=True,
        )

    gst_amount = subtotal * GST_RATE
    return InvoiceTotals(
        subtotal=subtotal,
        exclusive_subtotal=subtotal,
        gst_amount=gst_amount,
        total=subtotal + gst_amount,
        has_missing_prices=has_missing_prices,
        prices_include_gst=False,
    )


def totals_for(draft: InvoiceDraft) -> InvoiceTotals:
    return compute_totals(
        draft.line_items,
        draft.invoice.gst_enabled,
        draft.invoice.prices_include_gst,
    )


def has_recipient(draft: InvoiceDraft) -> bool:
    return any(email.strip() for email in draft.customer.emails)


def is_sendable(draft: InvoiceDraft) -> bool:
    """A draft can be emailed once every item is priced and it has a recipient."""
    return not totals_for(draft).has_missing_prices and has_recipient(draft)


def format_currency(amount: Decimal | None) -> str:
    """Format an amount as AUD, or a dash when unknown."""
    if amount is None:
        return "-"
    return f"${amount.quantize(CENTS, rounding=ROUND_HALF_UP):,.2f}"
