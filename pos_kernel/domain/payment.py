"""
Payment domain types (``pos_kernel.domain.payment``).

Responsibility
--------------
Value objects for the checkout step: the plan the cashier builds in the
payment dialog, the branch's selectable targets, and the reconciler's
two possible results (a validated plan or a rejection).

Invariants enforced
-------------------
* A plan never carries ``net``; the reconciler receives it separately and
  a ``ValidatedPlan`` echoes it unchanged.
* Split plans balance to ``net`` within ``CURRENCY_EPSILON``.
* Rejections are values. Nothing in this module raises for a bad plan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from pos_kernel.domain.values import ZERO


class PaymentMode(str, Enum):
    """How the invoice is settled."""

    CASH = "CASH"  # Paid into a safe
    CARD = "CARD"  # Paid into a bank account (POS terminal or transfer)
    CREDIT = "CREDIT"  # Charged to the customer's account


class InstrumentKind(str, Enum):
    SAFE = "SAFE"
    BANK = "BANK"


@dataclass(frozen=True)
class PaymentPlan:
    """
    Payment choices captured in the checkout dialog.

    Exists only during CHECKOUT and is discarded after commit.
    ``tendered`` is the cash handed over by the customer in non-split CASH
    mode; None means exact payment.
    """

    mode: PaymentMode
    split: bool = False
    cash_instrument_ref: str | None = None
    card_instrument_ref: str | None = None
    cash_amount: Decimal | None = None
    card_amount: Decimal | None = None
    tendered: Decimal | None = None

    @classmethod
    def cash(cls, safe_ref: str | None, tendered: Decimal | None = None) -> PaymentPlan:
        return cls(mode=PaymentMode.CASH, cash_instrument_ref=safe_ref, tendered=tendered)

    @classmethod
    def card(cls, bank_ref: str | None) -> PaymentPlan:
        return cls(mode=PaymentMode.CARD, card_instrument_ref=bank_ref)

    @classmethod
    def credit(cls) -> PaymentPlan:
        return cls(mode=PaymentMode.CREDIT)

    @classmethod
    def split_between(
        cls,
        safe_ref: str | None,
        bank_ref: str | None,
        cash_amount: Decimal | None = None,
        card_amount: Decimal | None = None,
    ) -> PaymentPlan:
        return cls(
            mode=PaymentMode.CASH,
            split=True,
            cash_instrument_ref=safe_ref,
            card_instrument_ref=bank_ref,
            cash_amount=cash_amount,
            card_amount=card_amount,
        )

    @property
    def has_instrument(self) -> bool:
        return self.cash_instrument_ref is not None or self.card_instrument_ref is not None


@dataclass(frozen=True)
class PaymentTargets:
    """Safes and banks selectable for the cashier's branch."""

    safe_refs: tuple[str, ...] = ()
    bank_refs: tuple[str, ...] = ()

    def has_safe(self, ref: str) -> bool:
        return ref in self.safe_refs

    def has_bank(self, ref: str) -> bool:
        return ref in self.bank_refs


@dataclass(frozen=True)
class PaymentCharge:
    """One instrument to charge and the confirmed amount."""

    kind: InstrumentKind
    instrument_ref: str
    amount: Decimal


@dataclass(frozen=True)
class ValidatedPlan:
    """Accepted payment plan. ``net`` is the reconciled amount, unchanged."""

    mode: PaymentMode
    split: bool
    net: Decimal
    charges: tuple[PaymentCharge, ...] = ()
    change_due: Decimal = ZERO

    @property
    def cash_amount(self) -> Decimal:
        return sum(
            (c.amount for c in self.charges if c.kind == InstrumentKind.SAFE), ZERO
        )

    @property
    def card_amount(self) -> Decimal:
        return sum(
            (c.amount for c in self.charges if c.kind == InstrumentKind.BANK), ZERO
        )

    @property
    def is_credit(self) -> bool:
        return self.mode == PaymentMode.CREDIT


class PaymentRejectionReason(str, Enum):
    """Why a payment plan was refused."""

    CREDIT_WITH_INSTRUMENT = "CREDIT_WITH_INSTRUMENT"
    MISSING_INSTRUMENT = "MISSING_INSTRUMENT"
    AMBIGUOUS_INSTRUMENT = "AMBIGUOUS_INSTRUMENT"
    NO_TARGET_CONFIGURED = "NO_TARGET_CONFIGURED"
    UNKNOWN_INSTRUMENT = "UNKNOWN_INSTRUMENT"
    SPLIT_TARGETS_REQUIRED = "SPLIT_TARGETS_REQUIRED"
    NEGATIVE_AMOUNT = "NEGATIVE_AMOUNT"
    SPLIT_UNBALANCED = "SPLIT_UNBALANCED"
    INSUFFICIENT_TENDER = "INSUFFICIENT_TENDER"


@dataclass(frozen=True)
class PaymentRejection:
    """Reconciler failure, returned to the session for display."""

    reason: PaymentRejectionReason
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> str:
        return self.reason.value
