"""
Values -- Decimal helpers for invoice arithmetic.

Responsibility:
    Normalizes user-entered numbers to ``Decimal`` and owns the two places
    where rounding is allowed: 2-decimal presentation (``format_amount``)
    and the configured cash rounding for display (``round_for_display``).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Amounts are Decimal, never float. Floats are converted via ``str``
      so that 0.1 stays 0.1.
    - Engines never quantize; accumulation runs on unrounded values.
    - ``CURRENCY_EPSILON`` (0.01) is the single balancing tolerance used by
      split payments and the credit-limit check.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")
CURRENCY_EPSILON = Decimal("0.01")

_TWO_PLACES = Decimal("0.01")


class RoundingMethod(str, Enum):
    """Cash rounding applied to displayed payable amounts."""

    NONE = "NONE"
    NEAREST_0_05 = "NEAREST_0_05"
    NEAREST_1_00 = "NEAREST_1_00"


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """
    Convert user input to Decimal.

    ``None`` and empty strings become zero, matching how a blank numeric
    field behaves on the invoice form.

    Raises:
        ValueError: if the value is not numeric or not finite.
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f"{field_name} must be numeric, got bool")
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"{field_name} is not a number: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"{field_name} must be finite, got {value!r}")
    return result


def within_epsilon(a: Decimal, b: Decimal, epsilon: Decimal = CURRENCY_EPSILON) -> bool:
    """True if |a - b| <= epsilon."""
    return abs(a - b) <= epsilon


def quantize_amount(amount: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up. Presentation only."""
    return amount.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal) -> str:
    """Render an amount with exactly 2 decimals (``"115.00"``)."""
    rounded = quantize_amount(amount)
    if rounded == ZERO:
        # Avoid "-0.00" for tiny negative residues
        rounded = abs(rounded)
    return f"{rounded:.2f}"


def round_for_display(amount: Decimal, method: RoundingMethod) -> Decimal:
    """
    Apply the company's cash rounding to a payable amount.

    NEAREST_0_05 rounds to the nearest 5 halalas, NEAREST_1_00 to the
    nearest whole unit. NONE keeps 2-decimal rounding.
    """
    if method == RoundingMethod.NEAREST_0_05:
        twentieths = (amount * 20).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return quantize_amount(twentieths / 20)
    if method == RoundingMethod.NEAREST_1_00:
        return quantize_amount(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return quantize_amount(amount)
