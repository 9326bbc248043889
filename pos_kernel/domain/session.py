"""
Invoice session state machine (``pos_kernel.domain.session``).

Responsibility
--------------
Defines the session states as a tagged union -- one frozen dataclass per
state, each carrying only the data that is meaningful in that state --
plus the transition table and the checkout outcome type.

Invariants enforced
-------------------
* ``SESSION_TRANSITIONS`` lists the only valid state changes. DELETED is
  terminal.
* CHECKOUT always remembers its originating editing state so cancel,
  rejection and persistence failure return there with the draft intact.
* ``commit_in_flight`` lives on the CHECKOUT state only; no other state
  can represent an in-flight commit.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Union

from pos_kernel.domain.guard import GuardOutcome
from pos_kernel.domain.invoice import InvoiceSummary
from pos_kernel.domain.payment import PaymentPlan, PaymentRejection, ValidatedPlan
from pos_kernel.domain.values import ZERO


class SessionState(str, Enum):
    EDITING_NEW = "EDITING_NEW"
    EDITING_EXISTING = "EDITING_EXISTING"
    CHECKOUT = "CHECKOUT"
    SAVED_READONLY = "SAVED_READONLY"
    DELETED = "DELETED"


SESSION_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.EDITING_NEW: frozenset({SessionState.CHECKOUT}),
    SessionState.EDITING_EXISTING: frozenset({SessionState.CHECKOUT}),
    SessionState.CHECKOUT: frozenset({
        SessionState.EDITING_NEW,
        SessionState.EDITING_EXISTING,
        SessionState.SAVED_READONLY,
    }),
    SessionState.SAVED_READONLY: frozenset({
        SessionState.EDITING_EXISTING,
        SessionState.DELETED,
    }),
    SessionState.DELETED: frozenset(),
}


def is_valid_transition(from_state: SessionState, to_state: SessionState) -> bool:
    return to_state in SESSION_TRANSITIONS[from_state]


@dataclass(frozen=True)
class EditingNew:
    """Blank or in-progress invoice that has never been stored."""

    kind = SessionState.EDITING_NEW


@dataclass(frozen=True)
class EditingExisting:
    """
    Stored invoice reopened for editing.

    ``vat_enabled`` is the flag frozen from the stored invoice,
    ``existing_net`` its stored net (used by the credit-limit check) and
    ``existing_quantities`` its stored quantity per item (used by the stock
    check).
    """

    invoice_id: str
    vat_enabled: bool
    existing_net: Decimal = ZERO
    existing_quantities: Mapping[str, Decimal] = field(default_factory=dict)

    kind = SessionState.EDITING_EXISTING


EditingState = Union[EditingNew, EditingExisting]


@dataclass(frozen=True)
class Checkout:
    """Payment dialog open. Returns to ``origin`` unless the commit succeeds."""

    origin: EditingState
    plan: PaymentPlan | None = None
    commit_in_flight: bool = False
    pending_approval: GuardOutcome | None = None

    kind = SessionState.CHECKOUT


@dataclass(frozen=True)
class SavedReadonly:
    """Committed invoice; fields are disabled."""

    invoice_id: str
    vat_enabled: bool
    summary: InvoiceSummary | None = None

    kind = SessionState.SAVED_READONLY


@dataclass(frozen=True)
class Deleted:
    invoice_id: str

    kind = SessionState.DELETED


SessionStateData = Union[EditingNew, EditingExisting, Checkout, SavedReadonly, Deleted]


class CheckoutStatus(str, Enum):
    COMMITTED = "COMMITTED"
    REJECTED = "REJECTED"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    IGNORED = "IGNORED"  # A commit was already in flight


@dataclass(frozen=True)
class CheckoutOutcome:
    """
    Result of ``InvoiceSession.commit``.

    Exactly one of ``payment_rejection`` / ``guard`` / ``error_code``
    explains a non-committed status; ``message`` is localized.
    """

    status: CheckoutStatus
    summary: InvoiceSummary | None = None
    payment: ValidatedPlan | None = None
    payment_rejection: PaymentRejection | None = None
    guard: GuardOutcome | None = None
    error_code: str | None = None
    message: str = ""

    @property
    def committed(self) -> bool:
        return self.status == CheckoutStatus.COMMITTED
