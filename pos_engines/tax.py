"""
Tax Engine - line totals and VAT under inclusive/exclusive pricing.

Pure functions with no I/O - the VAT flag and rate are parameters.

Usage:
    from decimal import Decimal
    from pos_engines.tax import compute_line

    amounts = compute_line(
        quantity=Decimal("3"),
        unit_price=Decimal("10"),
        tax_inclusive=False,
        vat_enabled=True,
        vat_rate_percent=Decimal("15"),
    )
    print(amounts.total)       # 34.50
    print(amounts.tax_amount)  # 4.50

Numeric semantics:
    Nothing is rounded here. Line values keep full Decimal precision so
    invoice totals are summed from unrounded lines; 2-decimal rounding is
    a presentation concern (``pos_kernel.domain.values.format_amount``).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from pos_engines.tracer import traced_engine
from pos_kernel.domain.invoice import LineItem, TaxPolicy
from pos_kernel.domain.reference import ItemRecord
from pos_kernel.domain.values import HUNDRED, ZERO, to_decimal
from pos_kernel.logging_config import get_logger

logger = get_logger("engines.tax")


@dataclass(frozen=True)
class LineAmounts:
    """Derived amounts for one line."""

    total: Decimal
    tax_amount: Decimal

    @property
    def net(self) -> Decimal:
        """Tax-exclusive part of ``total``."""
        return self.total - self.tax_amount


@traced_engine(
    "tax",
    "1.0",
    fingerprint_fields=(
        "quantity",
        "unit_price",
        "tax_inclusive",
        "vat_enabled",
        "vat_rate_percent",
    ),
)
def compute_line(
    quantity: Decimal,
    unit_price: Decimal,
    tax_inclusive: bool,
    vat_enabled: bool,
    vat_rate_percent: Decimal,
) -> LineAmounts:
    """
    Compute a line's total and tax amount.

    Args:
        quantity: Line quantity; negative for returned quantities.
        unit_price: Price per unit as displayed to the cashier.
        tax_inclusive: True if ``unit_price`` already contains VAT.
        vat_enabled: Company (or frozen invoice) VAT switch.
        vat_rate_percent: VAT rate as a percentage (15 for 15%).

    Returns:
        LineAmounts. For inclusive pricing ``total`` is the plain
        ``quantity * unit_price`` and only the tax/net split changes.
    """
    quantity = to_decimal(quantity, "quantity")
    unit_price = to_decimal(unit_price, "unit_price")
    rate = to_decimal(vat_rate_percent, "vat_rate_percent")
    base = quantity * unit_price

    if base == ZERO:
        return LineAmounts(total=ZERO, tax_amount=ZERO)

    if not vat_enabled or rate <= ZERO:
        return LineAmounts(total=base, tax_amount=ZERO)

    if tax_inclusive:
        net = base / (1 + rate / HUNDRED)
        tax_amount = base - net
        return LineAmounts(total=base, tax_amount=tax_amount)

    tax_amount = base * (rate / HUNDRED)
    return LineAmounts(total=base + tax_amount, tax_amount=tax_amount)


def resolve_tax_inclusive(record: ItemRecord, default_policy: TaxPolicy) -> bool:
    """Item-level override first, company default otherwise."""
    if record.tax_inclusive_default is not None:
        return record.tax_inclusive_default
    return default_policy == TaxPolicy.INCLUSIVE


def build_line(
    record: ItemRecord,
    quantity: Decimal,
    *,
    tax_inclusive: bool,
    vat_enabled: bool,
    vat_rate_percent: Decimal,
    unit_price: Decimal | None = None,
) -> LineItem:
    """
    Create a line from a catalogue snapshot.

    The ``tax_inclusive`` flag passed here is frozen on the line for the
    rest of its life.
    """
    price = record.unit_price if unit_price is None else to_decimal(unit_price, "unit_price")
    qty = to_decimal(quantity, "quantity")
    amounts = compute_line(
        quantity=qty,
        unit_price=price,
        tax_inclusive=tax_inclusive,
        vat_enabled=vat_enabled,
        vat_rate_percent=vat_rate_percent,
    )
    logger.debug("line_built", extra={
        "item_ref": record.item_ref,
        "quantity": str(qty),
        "unit_price": str(price),
        "tax_inclusive": tax_inclusive,
        "line_total": str(amounts.total),
        "tax_amount": str(amounts.tax_amount),
    })
    return LineItem(
        item_ref=record.item_ref,
        item_name=record.name,
        unit_label=record.unit_label,
        quantity=qty,
        unit_price=price,
        tax_inclusive=tax_inclusive,
        tax_amount=amounts.tax_amount,
        line_total=amounts.total,
    )


def reprice_line(
    line: LineItem,
    *,
    vat_enabled: bool,
    vat_rate_percent: Decimal,
    quantity: Decimal | None = None,
    unit_price: Decimal | None = None,
) -> LineItem:
    """
    Recompute a line after a quantity or price edit.

    The line's frozen ``tax_inclusive`` flag is reused as-is; it is never
    re-derived from current settings.
    """
    qty = line.quantity if quantity is None else to_decimal(quantity, "quantity")
    price = line.unit_price if unit_price is None else to_decimal(unit_price, "unit_price")
    amounts = compute_line(
        quantity=qty,
        unit_price=price,
        tax_inclusive=line.tax_inclusive,
        vat_enabled=vat_enabled,
        vat_rate_percent=vat_rate_percent,
    )
    return replace(
        line,
        quantity=qty,
        unit_price=price,
        tax_amount=amounts.tax_amount,
        line_total=amounts.total,
    )
