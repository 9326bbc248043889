"""
Pure domain layer.

Immutable value objects for invoices, payments, guards and the session
state machine, with NO dependencies on:
- Storage
- Time (except through Clock)
- I/O
"""

from pos_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from pos_kernel.domain.guard import (
    CreditContext,
    CreditPolicy,
    GuardCode,
    GuardFailure,
    GuardOutcome,
    GuardPolicy,
    GuardStatus,
)
from pos_kernel.domain.invoice import (
    InvoiceDraft,
    InvoiceKind,
    InvoiceSummary,
    InvoiceTotals,
    LineItem,
    SavedInvoice,
    TaxPolicy,
)
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
from pos_kernel.domain.reference import CustomerRecord, ItemRecord, PurchasePrice
from pos_kernel.domain.values import (
    CURRENCY_EPSILON,
    ZERO,
    RoundingMethod,
    format_amount,
    round_for_display,
    to_decimal,
)

__all__ = [
    "CURRENCY_EPSILON",
    "Clock",
    "CreditContext",
    "CreditPolicy",
    "CustomerRecord",
    "DeterministicClock",
    "GuardCode",
    "GuardFailure",
    "GuardOutcome",
    "GuardPolicy",
    "GuardStatus",
    "InstrumentKind",
    "InvoiceDraft",
    "InvoiceKind",
    "InvoiceSummary",
    "InvoiceTotals",
    "ItemRecord",
    "LineItem",
    "PaymentCharge",
    "PaymentMode",
    "PaymentPlan",
    "PaymentRejection",
    "PaymentRejectionReason",
    "PaymentTargets",
    "PurchasePrice",
    "RoundingMethod",
    "SavedInvoice",
    "SystemClock",
    "TaxPolicy",
    "ValidatedPlan",
    "ZERO",
    "format_amount",
    "round_for_display",
    "to_decimal",
]
