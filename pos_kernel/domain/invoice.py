"""
Invoice domain types (``pos_kernel.domain.invoice``).

Responsibility
--------------
Immutable value objects for invoice lines, invoice totals, the draft
handed to storage, the stored invoice read back for editing, and the
finalized receipt summary.

Invariants enforced
-------------------
* ``LineItem.line_total`` and ``LineItem.tax_amount`` are derived by the
  tax engine (``pos_engines.tax``); nothing sets them independently of
  quantity, unit price and the frozen ``tax_inclusive`` flag.
* ``InvoiceTotals.net == subtotal + tax - discount``; ``subtotal``
  excludes tax even for tax-inclusive lines.
* ``InvoiceSummary`` is built once after commit and never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from pos_kernel.domain.payment import ValidatedPlan
from pos_kernel.domain.values import ZERO


class TaxPolicy(str, Enum):
    """Whether a displayed unit price already contains VAT."""

    EXCLUSIVE = "EXCLUSIVE"
    INCLUSIVE = "INCLUSIVE"


class InvoiceKind(str, Enum):
    """Receipt title, decided by the invoice's VAT flag and the customer."""

    SALES_INVOICE = "SALES_INVOICE"
    TAX_INVOICE = "TAX_INVOICE"
    SIMPLIFIED_TAX_INVOICE = "SIMPLIFIED_TAX_INVOICE"


@dataclass(frozen=True)
class LineItem:
    """
    One invoice row.

    Negative ``quantity`` denotes a returned quantity; the tax engine
    handles it with the same formulas.
    """

    item_ref: str
    item_name: str
    unit_label: str
    quantity: Decimal
    unit_price: Decimal
    tax_inclusive: bool
    tax_amount: Decimal
    line_total: Decimal

    @property
    def net_amount(self) -> Decimal:
        """Tax-exclusive part of the line total."""
        return self.line_total - self.tax_amount

    @property
    def is_resolved(self) -> bool:
        return bool(self.item_ref)


@dataclass(frozen=True)
class InvoiceTotals:
    """Invoice-level totals. Only ``net`` may be negative."""

    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    net: Decimal

    @classmethod
    def empty(cls) -> InvoiceTotals:
        return cls(subtotal=ZERO, tax=ZERO, discount=ZERO, net=ZERO)


@dataclass(frozen=True)
class InvoiceDraft:
    """What the session hands to the invoice store on commit."""

    invoice_date: datetime
    lines: tuple[LineItem, ...]
    totals: InvoiceTotals
    payment: ValidatedPlan
    vat_enabled: bool
    customer_ref: str | None = None
    invoice_id: str | None = None


@dataclass(frozen=True)
class SavedInvoice:
    """Invoice as acknowledged by (or loaded from) the invoice store."""

    invoice_id: str
    invoice_date: datetime
    lines: tuple[LineItem, ...]
    totals: InvoiceTotals
    customer_ref: str | None = None
    payment: ValidatedPlan | None = None


@dataclass(frozen=True)
class InvoiceSummary:
    """Finalized invoice, ready for receipt and QR rendering."""

    invoice_id: str
    invoice_kind: InvoiceKind
    invoice_date: datetime
    totals: InvoiceTotals
    lines: tuple[LineItem, ...]
    payment: ValidatedPlan
    zatca_base64: str
