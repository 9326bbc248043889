"""
Totals Aggregator - fold computed lines and a discount into invoice totals.

Pure and idempotent: the same lines, discount and VAT flag always
produce an equal ``InvoiceTotals``, which lets the session skip redundant
state updates.

Subtotal is the tax-exclusive base of every line, whatever that line's
own inclusion flag:

    tax      = sum(line.tax_amount)              if VAT enabled, else 0
    subtotal = sum(line.total - line.tax_amount) if VAT enabled,
               sum(line.total)                   otherwise
    net      = subtotal + tax - discount
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from pos_engines.tracer import traced_engine
from pos_kernel.domain.invoice import InvoiceTotals, LineItem
from pos_kernel.domain.values import ZERO, to_decimal


@traced_engine("totals", "1.0", fingerprint_fields=("lines", "discount", "vat_enabled"))
def aggregate(
    lines: Iterable[LineItem],
    discount: Decimal,
    vat_enabled: bool,
) -> InvoiceTotals:
    """
    Aggregate invoice lines.

    Args:
        lines: Lines as derived by the tax engine (unrounded).
        discount: Invoice-level discount amount.
        vat_enabled: The invoice's VAT flag (frozen flag for stored invoices).

    Returns:
        InvoiceTotals with ``net == subtotal + tax - discount``.
    """
    discount = to_decimal(discount, "discount")
    tax = ZERO
    subtotal = ZERO
    for line in lines:
        line_tax = line.tax_amount if vat_enabled else ZERO
        tax += line_tax
        subtotal += line.line_total - line_tax

    return InvoiceTotals(
        subtotal=subtotal,
        tax=tax,
        discount=discount,
        net=subtotal + tax - discount,
    )


def infer_vat_enabled(stored_tax: Decimal, lines: Iterable[LineItem]) -> bool:
    """
    VAT flag of a stored invoice.

    An invoice reopened for editing keeps the VAT treatment it was saved
    with: it counts as VAT-enabled if it carried any tax at invoice or line
    level, regardless of the company's current setting.
    """
    if stored_tax > ZERO:
        return True
    return any(line.tax_amount > ZERO for line in lines)


def max_discount_for(totals: InvoiceTotals, max_percentage: Decimal) -> Decimal:
    """Largest discount allowed by a percentage cap on subtotal + tax."""
    return (totals.subtotal + totals.tax) * max_percentage / Decimal("100")
