"""
Payment Reconciler - validate a payment plan against an invoice net.

Pure functions. Failures are returned as ``PaymentRejection`` values, not
raised, so the session can show a localized message and keep the draft
open.

Rules:
    CREDIT        no safe or bank may be set.
    CASH / CARD   exactly one instrument (safe for CASH, bank for CARD),
                  and it must be one of the branch's selectable targets.
    split         both a safe and a bank; cash + card must equal net
                  within CURRENCY_EPSILON.

While the cashier edits one split amount, ``edit_split`` recomputes the
other as ``max(0, net - edited)``. The user may still override the
recomputed side; only commit-time ``reconcile`` enforces the balance.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from pos_engines.tracer import traced_engine
from pos_kernel.domain.payment import (
    InstrumentKind,
    PaymentCharge,
    PaymentMode,
    PaymentPlan,
    PaymentRejection,
    PaymentRejectionReason,
    PaymentTargets,
    ValidatedPlan,
)
from pos_kernel.domain.values import CURRENCY_EPSILON, ZERO, to_decimal, within_epsilon
from pos_kernel.logging_config import get_logger

logger = get_logger("engines.payment")


def split_complement(net: Decimal, edited_amount: Decimal) -> Decimal:
    """The other half of a split payment, clamped at zero."""
    return max(ZERO, to_decimal(net, "net") - to_decimal(edited_amount, "edited_amount"))


def edit_split(
    plan: PaymentPlan,
    net: Decimal,
    *,
    cash_amount: Decimal | None = None,
    card_amount: Decimal | None = None,
) -> PaymentPlan:
    """
    Apply a live edit to one side of a split plan.

    Exactly one of ``cash_amount`` / ``card_amount`` is the edited value;
    the other side is recomputed from ``net``.
    """
    if (cash_amount is None) == (card_amount is None):
        raise ValueError("Edit exactly one of cash_amount or card_amount")
    if cash_amount is not None:
        cash = to_decimal(cash_amount, "cash_amount")
        return replace(plan, split=True, cash_amount=cash, card_amount=split_complement(net, cash))
    card = to_decimal(card_amount, "card_amount")
    return replace(plan, split=True, card_amount=card, cash_amount=split_complement(net, card))


def _reject(
    reason: PaymentRejectionReason, message: str, **details: object
) -> PaymentRejection:
    logger.info("payment_plan_rejected", extra={
        "reason": reason.value,
        **{k: str(v) for k, v in details.items()},
    })
    return PaymentRejection(reason=reason, message=message, details=dict(details))


def _check_target(
    kind: InstrumentKind, ref: str, targets: PaymentTargets
) -> PaymentRejection | None:
    if kind == InstrumentKind.SAFE:
        known, is_known = targets.safe_refs, targets.has_safe
    else:
        known, is_known = targets.bank_refs, targets.has_bank
    if not known:
        return _reject(
            PaymentRejectionReason.NO_TARGET_CONFIGURED,
            f"No {kind.value.lower()} configured for this branch",
            kind=kind.value,
        )
    if not is_known(ref):
        return _reject(
            PaymentRejectionReason.UNKNOWN_INSTRUMENT,
            f"Unknown {kind.value.lower()} {ref}",
            kind=kind.value,
            instrument_ref=ref,
        )
    return None


def _reconcile_split(
    net: Decimal, plan: PaymentPlan, targets: PaymentTargets
) -> ValidatedPlan | PaymentRejection:
    safe_ref = plan.cash_instrument_ref
    bank_ref = plan.card_instrument_ref
    if safe_ref is None or bank_ref is None:
        return _reject(
            PaymentRejectionReason.SPLIT_TARGETS_REQUIRED,
            "Split payment needs both a safe and a bank",
        )
    for kind, ref in ((InstrumentKind.SAFE, safe_ref), (InstrumentKind.BANK, bank_ref)):
        problem = _check_target(kind, ref, targets)
        if problem is not None:
            return problem

    cash = plan.cash_amount
    card = plan.card_amount
    if cash is None and card is not None:
        cash = split_complement(net, card)
    elif card is None and cash is not None:
        card = split_complement(net, cash)
    cash = to_decimal(cash, "cash_amount")
    card = to_decimal(card, "card_amount")

    if cash < ZERO or card < ZERO:
        return _reject(
            PaymentRejectionReason.NEGATIVE_AMOUNT,
            "Split amounts cannot be negative",
            cash_amount=cash,
            card_amount=card,
        )

    paid = cash + card
    if not within_epsilon(paid, net, CURRENCY_EPSILON):
        return _reject(
            PaymentRejectionReason.SPLIT_UNBALANCED,
            f"Cash {cash} + bank {card} does not equal net {net}",
            paid=paid,
            net=net,
            difference=paid - net,
        )

    return ValidatedPlan(
        mode=plan.mode,
        split=True,
        net=net,
        charges=(
            PaymentCharge(kind=InstrumentKind.SAFE, instrument_ref=safe_ref, amount=cash),
            PaymentCharge(kind=InstrumentKind.BANK, instrument_ref=bank_ref, amount=card),
        ),
    )


def _reconcile_single(
    net: Decimal, plan: PaymentPlan, targets: PaymentTargets
) -> ValidatedPlan | PaymentRejection:
    if plan.mode == PaymentMode.CASH:
        kind, ref, other = InstrumentKind.SAFE, plan.cash_instrument_ref, plan.card_instrument_ref
    else:
        kind, ref, other = InstrumentKind.BANK, plan.card_instrument_ref, plan.cash_instrument_ref

    if other is not None:
        return _reject(
            PaymentRejectionReason.AMBIGUOUS_INSTRUMENT,
            f"{plan.mode.value} payment takes exactly one instrument",
        )
    if ref is None:
        if not (targets.safe_refs if kind == InstrumentKind.SAFE else targets.bank_refs):
            return _reject(
                PaymentRejectionReason.NO_TARGET_CONFIGURED,
                f"No {kind.value.lower()} configured for this branch",
                kind=kind.value,
            )
        return _reject(
            PaymentRejectionReason.MISSING_INSTRUMENT,
            f"{plan.mode.value} payment needs a {kind.value.lower()}",
        )
    problem = _check_target(kind, ref, targets)
    if problem is not None:
        return problem

    change_due = ZERO
    if plan.mode == PaymentMode.CASH and plan.tendered is not None and net > ZERO:
        tendered = to_decimal(plan.tendered, "tendered")
        if tendered < net - CURRENCY_EPSILON:
            return _reject(
                PaymentRejectionReason.INSUFFICIENT_TENDER,
                f"Tendered {tendered} is less than net {net}",
                tendered=tendered,
                net=net,
            )
        change_due = max(ZERO, tendered - net)

    return ValidatedPlan(
        mode=plan.mode,
        split=False,
        net=net,
        charges=(PaymentCharge(kind=kind, instrument_ref=ref, amount=net),),
        change_due=change_due,
    )


@traced_engine("payment", "1.0", fingerprint_fields=("net", "plan"))
def reconcile(
    net: Decimal,
    plan: PaymentPlan,
    targets: PaymentTargets,
) -> ValidatedPlan | PaymentRejection:
    """
    Validate ``plan`` for an invoice of ``net``.

    Args:
        net: Invoice net from the totals aggregator. Never modified.
        plan: Cashier's payment choices.
        targets: Safes and banks selectable for the branch.

    Returns:
        ValidatedPlan with the instruments to charge and confirmed
        amounts, or PaymentRejection describing the first problem found.
    """
    net = to_decimal(net, "net")

    if plan.mode == PaymentMode.CREDIT:
        if plan.has_instrument or plan.split:
            return _reject(
                PaymentRejectionReason.CREDIT_WITH_INSTRUMENT,
                "Credit invoices take no safe or bank",
            )
        result: ValidatedPlan | PaymentRejection = ValidatedPlan(
            mode=PaymentMode.CREDIT, split=False, net=net
        )
    elif plan.split:
        result = _reconcile_split(net, plan, targets)
    else:
        result = _reconcile_single(net, plan, targets)

    if isinstance(result, ValidatedPlan):
        logger.info("payment_plan_validated", extra={
            "mode": result.mode.value,
            "split": result.split,
            "net": str(net),
            "charge_count": len(result.charges),
            "change_due": str(result.change_due),
        })
    return result
