"""
Guard domain types (``pos_kernel.domain.guard``).

Responsibility
--------------
Policy struct, inputs and outcomes for the pre-commit invariant checks
(stock, sell-below-cost, credit limit).

Invariants enforced
-------------------
* ``GuardPolicy`` is passed explicitly at call time; guards never read
  ambient settings.
* A ``GuardOutcome`` is exactly one of ALLOW, REJECT (with a failure) or
  APPROVAL_REQUIRED (with the failure figures that need confirming).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from pos_kernel.domain.values import ZERO
from pos_kernel.exceptions import (
    BelowCostError,
    CreditLimitExceededError,
    GuardRejectionError,
    InsufficientStockError,
)


class CreditPolicy(str, Enum):
    """What happens when a credit invoice pushes a customer over the limit."""

    BLOCK = "BLOCK"
    REQUIRE_APPROVAL = "REQUIRE_APPROVAL"
    WARNING = "WARNING"  # Allowed, with a warning on the outcome


@dataclass(frozen=True)
class GuardPolicy:
    """Guard switches taken from the company's financial settings."""

    allow_negative_stock: bool = False
    allow_selling_below_cost: bool = False
    credit_policy: CreditPolicy = CreditPolicy.BLOCK


class GuardStatus(str, Enum):
    ALLOW = "ALLOW"
    REJECT = "REJECT"
    APPROVAL_REQUIRED = "APPROVAL_REQUIRED"


class GuardCode(str, Enum):
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    BELOW_COST = "BELOW_COST"
    CREDIT_LIMIT_EXCEEDED = "CREDIT_LIMIT_EXCEEDED"


@dataclass(frozen=True)
class GuardFailure:
    """
    Figures describing one failed check.

    Only the fields relevant to ``code`` are populated.
    """

    code: GuardCode
    item_ref: str | None = None
    stock: Decimal | None = None
    quantity: Decimal | None = None
    cost: Decimal | None = None
    unit_price: Decimal | None = None
    projected_balance: Decimal | None = None
    credit_limit: Decimal | None = None

    @property
    def excess(self) -> Decimal | None:
        """Amount over the credit limit."""
        if self.projected_balance is None or self.credit_limit is None:
            return None
        return self.projected_balance - self.credit_limit

    def message_fields(self) -> dict[str, object]:
        fields = {
            "item_ref": self.item_ref,
            "stock": self.stock,
            "quantity": self.quantity,
            "cost": self.cost,
            "unit_price": self.unit_price,
            "projected_balance": self.projected_balance,
            "credit_limit": self.credit_limit,
            "excess": self.excess,
        }
        return {k: v for k, v in fields.items() if v is not None}

    def to_exception(self) -> GuardRejectionError:
        """Raisable form, for callers that propagate rather than display."""
        if self.code == GuardCode.INSUFFICIENT_STOCK:
            return InsufficientStockError(
                self.item_ref or "", self.stock or ZERO, self.quantity or ZERO
            )
        if self.code == GuardCode.BELOW_COST:
            return BelowCostError(
                self.item_ref or "", self.cost or ZERO, self.unit_price or ZERO
            )
        return CreditLimitExceededError(
            self.projected_balance or ZERO, self.credit_limit or ZERO
        )


@dataclass(frozen=True)
class GuardOutcome:
    """Result of ``run_guards``."""

    status: GuardStatus
    failure: GuardFailure | None = None
    warnings: tuple[GuardFailure, ...] = ()

    @classmethod
    def allow(cls, warnings: tuple[GuardFailure, ...] = ()) -> GuardOutcome:
        return cls(status=GuardStatus.ALLOW, warnings=warnings)

    @classmethod
    def reject(cls, failure: GuardFailure) -> GuardOutcome:
        return cls(status=GuardStatus.REJECT, failure=failure)

    @classmethod
    def approval_required(cls, failure: GuardFailure) -> GuardOutcome:
        return cls(status=GuardStatus.APPROVAL_REQUIRED, failure=failure)

    @property
    def allowed(self) -> bool:
        return self.status == GuardStatus.ALLOW

    @property
    def needs_approval(self) -> bool:
        return self.status == GuardStatus.APPROVAL_REQUIRED


@dataclass(frozen=True)
class CreditContext:
    """
    Customer figures for the credit-limit check.

    ``existing_net`` is the stored net of the invoice being edited (zero
    for a new invoice), so re-saving an unchanged credit invoice does not
    count its amount twice.
    """

    customer_ref: str
    current_balance: Decimal
    credit_limit: Decimal
    existing_net: Decimal = ZERO
