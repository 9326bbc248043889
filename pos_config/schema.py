"""
Financial settings schema.

YAML settings files are parsed into these frozen dataclasses by the
loader. They replace the ambient, browser-stored flags of the sales
screens with one explicit struct handed to the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from pos_kernel.domain.guard import CreditPolicy
from pos_kernel.domain.invoice import TaxPolicy
from pos_kernel.domain.values import ZERO, RoundingMethod


@dataclass(frozen=True)
class SellerProfile:
    """Seller identity printed on receipts and encoded in the QR code."""

    name: str
    vat_number: str

    def __post_init__(self) -> None:
        # Each value becomes one ZATCA TLV field with a single length byte
        for field_name in ("name", "vat_number"):
            if len(getattr(self, field_name).encode("utf-8")) > 255:
                raise ValueError(f"seller {field_name} exceeds 255 UTF-8 bytes")


@dataclass(frozen=True)
class FinancialSettings:
    """Company-level pricing, tax and sales-control settings."""

    vat_enabled: bool
    vat_rate_percent: Decimal
    default_tax_policy: TaxPolicy = TaxPolicy.EXCLUSIVE
    credit_policy: CreditPolicy = CreditPolicy.BLOCK
    allow_negative_stock: bool = False
    allow_selling_below_cost: bool = False
    max_discount_percentage: Decimal = ZERO  # 0 = no cap
    rounding_method: RoundingMethod = RoundingMethod.NONE

    def __post_init__(self) -> None:
        if self.vat_rate_percent < ZERO:
            raise ValueError("vat_rate_percent cannot be negative")
        if not ZERO <= self.max_discount_percentage <= Decimal("100"):
            raise ValueError("max_discount_percentage must be between 0 and 100")


@dataclass(frozen=True)
class PosSettings:
    """Root of a settings file."""

    seller: SellerProfile
    financial: FinancialSettings
    checksum: str = ""
