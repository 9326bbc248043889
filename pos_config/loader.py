"""
Settings Loader (``pos_config.loader``).

Responsibility
--------------
Loads a YAML settings file and parses it into the typed
``pos_config.schema`` dataclasses. Callers go through
``pos_config.get_active_settings()``.

Invariants enforced
-------------------
* Required keys raise ``KeyError``; malformed values raise ``ValueError``.
  No silent defaults for the seller identity or the VAT rate.
* Every parsed object is a frozen dataclass.
* ``compute_checksum`` is a deterministic SHA-256 of the parsed mapping.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from pos_config.schema import FinancialSettings, PosSettings, SellerProfile
from pos_kernel.domain.guard import CreditPolicy
from pos_kernel.domain.invoice import TaxPolicy
from pos_kernel.domain.values import RoundingMethod, to_decimal


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"{field_name} must be true or false, got {value!r}")


def parse_decimal(value: Any, field_name: str) -> Decimal:
    return to_decimal(value, field_name)


def parse_seller(data: dict[str, Any]) -> SellerProfile:
    return SellerProfile(
        name=str(data["name"]),
        vat_number=str(data["vat_number"]),
    )


def parse_financial(data: dict[str, Any]) -> FinancialSettings:
    """
    Parse the ``financial`` section.

    ``vat_enabled`` and ``vat_rate_percent`` are required; every other key
    falls back to the schema default.
    """
    return FinancialSettings(
        vat_enabled=parse_bool(data["vat_enabled"], "vat_enabled"),
        vat_rate_percent=parse_decimal(data["vat_rate_percent"], "vat_rate_percent"),
        default_tax_policy=TaxPolicy(data.get("default_tax_policy", TaxPolicy.EXCLUSIVE.value)),
        credit_policy=CreditPolicy(data.get("credit_policy", CreditPolicy.BLOCK.value)),
        allow_negative_stock=parse_bool(
            data.get("allow_negative_stock", False), "allow_negative_stock"
        ),
        allow_selling_below_cost=parse_bool(
            data.get("allow_selling_below_cost", False), "allow_selling_below_cost"
        ),
        max_discount_percentage=parse_decimal(
            data.get("max_discount_percentage", 0), "max_discount_percentage"
        ),
        rounding_method=RoundingMethod(data.get("rounding_method", RoundingMethod.NONE.value)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_settings(data: dict[str, Any]) -> PosSettings:
    return PosSettings(
        seller=parse_seller(data["seller"]),
        financial=parse_financial(data["financial"]),
        checksum=compute_checksum(data),
    )


def load_settings(path: Path) -> PosSettings:
    return parse_settings(load_yaml_file(path))
