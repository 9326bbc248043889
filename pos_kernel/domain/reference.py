"""
Read-only reference data consumed by the invoice core.

These are the shapes returned by the item catalogue and customer
directory collaborators. The core never mutates them; each lookup
produces a fresh snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from pos_kernel.domain.values import ZERO


@dataclass(frozen=True)
class PurchasePrice:
    """Unit price paid on one purchase invoice."""

    on_date: date
    unit_price: Decimal


@dataclass(frozen=True)
class ItemRecord:
    """
    Catalogue snapshot of a sellable item.

    ``tax_inclusive_default`` of None means the company's default tax
    policy applies. ``is_stocked`` is False for services, which skip the
    stock check.
    """

    item_ref: str
    name: str
    unit_label: str
    unit_price: Decimal
    stock: Decimal = ZERO
    is_stocked: bool = True
    purchase_price: Decimal = ZERO
    cost_history: tuple[PurchasePrice, ...] = field(default=())
    tax_inclusive_default: bool | None = None
    barcode: str | None = None


@dataclass(frozen=True)
class CustomerRecord:
    """Customer balance facts. A credit_limit of zero means unlimited."""

    customer_ref: str
    name: str
    current_balance: Decimal = ZERO
    credit_limit: Decimal = ZERO
    tax_number: str | None = None
