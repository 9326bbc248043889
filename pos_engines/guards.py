"""
pos_engines.guards -- Pre-commit invariant checks.

Responsibility:
    Decide whether an invoice may be committed, given freshly read stock
    levels, purchase-price history and customer balance.

Architecture position:
    Engines -- pure calculation layer, zero I/O. The invoice session
    performs the reads immediately before calling ``run_guards``.

Invariants enforced:
    - Deterministic precedence: stock, then below-cost, then credit
      limit. The first failure short-circuits; messages are mutually
      exclusive, never cumulative.
    - A line violating both stock and below-cost reports stock.
    - Credit-limit overrun is a hard rejection under BLOCK, an
      APPROVAL_REQUIRED outcome under REQUIRE_APPROVAL, and an allowed
      outcome carrying a warning under WARNING.

Failure modes:
    - Returns GuardOutcome values; raises only ValueError for malformed
      numeric input.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal

from pos_engines.tracer import traced_engine
from pos_kernel.domain.guard import (
    CreditContext,
    CreditPolicy,
    GuardCode,
    GuardFailure,
    GuardOutcome,
    GuardPolicy,
)
from pos_kernel.domain.invoice import LineItem
from pos_kernel.domain.payment import PaymentMode
from pos_kernel.domain.reference import ItemRecord
from pos_kernel.domain.values import CURRENCY_EPSILON, ZERO
from pos_kernel.logging_config import get_logger

logger = get_logger("engines.guards")


def resolve_cost(item: ItemRecord, invoice_date: date | datetime) -> Decimal:
    """
    Cost used by the below-cost check.

    The most recent purchase price at or before ``invoice_date``; the
    item's stored purchase price when there is no earlier purchase.
    Purchases on the same date keep their catalogue order, last one wins.
    """
    on_date = invoice_date.date() if isinstance(invoice_date, datetime) else invoice_date
    latest: tuple[date, Decimal] | None = None
    for entry in item.cost_history:
        if entry.on_date > on_date:
            continue
        if latest is None or entry.on_date >= latest[0]:
            latest = (entry.on_date, entry.unit_price)
    if latest is None:
        return item.purchase_price
    return latest[1]


def quantities_by_item(lines: Iterable[LineItem]) -> dict[str, Decimal]:
    """Total quantity per item_ref; return lines count negative."""
    totals: dict[str, Decimal] = {}
    for line in lines:
        if not line.item_ref:
            continue
        totals[line.item_ref] = totals.get(line.item_ref, ZERO) + line.quantity
    return totals


def check_stock(
    lines: Sequence[LineItem],
    items: Mapping[str, ItemRecord],
    existing_quantities: Mapping[str, Decimal] | None = None,
) -> GuardFailure | None:
    """
    First stocked line whose quantity exceeds available stock.

    ``existing_quantities`` are the stored quantities of the invoice being
    edited. Fresh stock already excludes them, so they are added back.
    """
    existing = existing_quantities or {}
    for line in lines:
        item = items.get(line.item_ref)
        if item is None or not item.is_stocked:
            continue
        available = item.stock + existing.get(line.item_ref, ZERO)
        if available < line.quantity:
            return GuardFailure(
                code=GuardCode.INSUFFICIENT_STOCK,
                item_ref=line.item_ref,
                stock=available,
                quantity=line.quantity,
            )
    return None


def check_below_cost(
    lines: Sequence[LineItem],
    items: Mapping[str, ItemRecord],
    invoice_date: date | datetime,
) -> GuardFailure | None:
    """First line priced below its resolved cost."""
    for line in lines:
        item = items.get(line.item_ref)
        if item is None:
            continue
        cost = resolve_cost(item, invoice_date)
        if line.unit_price < cost:
            return GuardFailure(
                code=GuardCode.BELOW_COST,
                item_ref=line.item_ref,
                cost=cost,
                unit_price=line.unit_price,
            )
    return None


def projected_balance(credit: CreditContext, net: Decimal) -> Decimal:
    """Customer balance after this invoice; edits only add the increase."""
    return credit.current_balance + max(ZERO, net - credit.existing_net)


def check_credit_limit(
    net: Decimal,
    credit: CreditContext | None,
) -> GuardFailure | None:
    """Overrun of the customer's limit by more than CURRENCY_EPSILON."""
    if credit is None or credit.credit_limit <= ZERO:
        return None
    projected = projected_balance(credit, net)
    if projected - credit.credit_limit > CURRENCY_EPSILON:
        return GuardFailure(
            code=GuardCode.CREDIT_LIMIT_EXCEEDED,
            projected_balance=projected,
            credit_limit=credit.credit_limit,
        )
    return None


@traced_engine("guards", "1.0", fingerprint_fields=("net", "payment_mode", "approval_granted"))
def run_guards(
    *,
    lines: Sequence[LineItem],
    items: Mapping[str, ItemRecord],
    net: Decimal,
    payment_mode: PaymentMode,
    policy: GuardPolicy,
    invoice_date: date | datetime,
    credit: CreditContext | None = None,
    approval_granted: bool = False,
    existing_quantities: Mapping[str, Decimal] | None = None,
) -> GuardOutcome:
    """
    Run the pre-commit checks in order.

    Args:
        lines: Invoice lines to commit.
        items: Fresh catalogue snapshots keyed by item_ref.
        net: Invoice net.
        payment_mode: The credit check only applies to CREDIT.
        policy: Guard switches from financial settings.
        invoice_date: Date used to pick the applicable purchase price.
        credit: Customer figures; None when no customer is set.
        approval_granted: The user already confirmed a credit overrun
            under REQUIRE_APPROVAL.
        existing_quantities: Stored per-item quantities of the invoice
            being edited; None for a new invoice.

    Returns:
        GuardOutcome (ALLOW, REJECT or APPROVAL_REQUIRED).
    """
    if not policy.allow_negative_stock:
        failure = check_stock(lines, items, existing_quantities)
        if failure is not None:
            logger.info("guard_rejected", extra={
                "guard": failure.code.value,
                "item_ref": failure.item_ref,
                "stock": str(failure.stock),
                "quantity": str(failure.quantity),
            })
            return GuardOutcome.reject(failure)

    if not policy.allow_selling_below_cost:
        failure = check_below_cost(lines, items, invoice_date)
        if failure is not None:
            logger.info("guard_rejected", extra={
                "guard": failure.code.value,
                "item_ref": failure.item_ref,
                "cost": str(failure.cost),
                "unit_price": str(failure.unit_price),
            })
            return GuardOutcome.reject(failure)

    if payment_mode == PaymentMode.CREDIT:
        failure = check_credit_limit(net, credit)
        if failure is not None:
            log_extra = {
                "guard": failure.code.value,
                "credit_policy": policy.credit_policy.value,
                "projected_balance": str(failure.projected_balance),
                "credit_limit": str(failure.credit_limit),
            }
            if policy.credit_policy == CreditPolicy.BLOCK:
                logger.info("guard_rejected", extra=log_extra)
                return GuardOutcome.reject(failure)
            if policy.credit_policy == CreditPolicy.REQUIRE_APPROVAL and not approval_granted:
                logger.info("guard_approval_required", extra=log_extra)
                return GuardOutcome.approval_required(failure)
            logger.warning("guard_credit_limit_overridden", extra={
                **log_extra,
                "approval_granted": approval_granted,
            })
            if policy.credit_policy == CreditPolicy.WARNING:
                return GuardOutcome.allow(warnings=(failure,))

    return GuardOutcome.allow()
