"""
Module: pos_engines
Responsibility:
    Package entrypoint re-exporting the pure invoice engines. This is the
    import surface for the session layer and for receipt rendering.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import pos_kernel. MUST NOT import pos_services or pos_config.

Invariants enforced:
    - Purity: engines never read the clock; dates are parameters.
    - Decimal-only arithmetic, no intermediate rounding.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from pos_engines import compute_line, aggregate, reconcile, run_guards
    from pos_engines import encode_zatca_qr
"""

from pos_engines.guards import (
    check_below_cost,
    check_credit_limit,
    check_stock,
    projected_balance,
    quantities_by_item,
    resolve_cost,
    run_guards,
)
from pos_engines.payment import edit_split, reconcile, split_complement
from pos_engines.tax import (
    LineAmounts,
    build_line,
    compute_line,
    reprice_line,
    resolve_tax_inclusive,
)
from pos_engines.totals import aggregate, infer_vat_enabled, max_discount_for
from pos_engines.zatca import (
    TlvField,
    ZatcaPayload,
    build_zatca_payload,
    classify_invoice,
    decode_tlv,
    encode_tlv,
    encode_zatca_qr,
)

__all__ = [
    "LineAmounts",
    "TlvField",
    "ZatcaPayload",
    "aggregate",
    "build_line",
    "build_zatca_payload",
    "check_below_cost",
    "check_credit_limit",
    "check_stock",
    "classify_invoice",
    "compute_line",
    "decode_tlv",
    "edit_split",
    "encode_tlv",
    "encode_zatca_qr",
    "infer_vat_enabled",
    "max_discount_for",
    "projected_balance",
    "quantities_by_item",
    "reconcile",
    "reprice_line",
    "resolve_cost",
    "resolve_tax_inclusive",
    "run_guards",
    "split_complement",
]
