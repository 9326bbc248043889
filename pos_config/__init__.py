"""
pos_config -- single public entrypoint for point-of-sale settings.

Responsibility:
    ``get_active_settings()`` is the only way to obtain settings at
    runtime. It returns a validated, frozen ``PosSettings``.

Architecture position:
    Configuration layer. Sits above ``pos_kernel``; the kernel and the
    engines never import from here. ``bridges`` translates settings into
    kernel-level structs such as ``GuardPolicy``.

Failure modes:
    - ``FileNotFoundError`` -- settings file missing.
    - ``KeyError`` / ``ValueError`` -- required key missing or invalid.

Audit relevance:
    Every successful load emits a ``POS_CONFIG_TRACE`` log record with the
    file path and checksum, tying each session to the settings version
    that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pos_config.bridges import guard_policy_from
from pos_config.loader import load_settings
from pos_config.schema import FinancialSettings, PosSettings, SellerProfile

_logger = logging.getLogger("pos_kernel.config")

_DEFAULT_SETTINGS_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_settings(path: Path | None = None) -> PosSettings:
    """Load and validate the settings file (default: ``sets/default.yaml``)."""
    settings_path = path or _DEFAULT_SETTINGS_FILE
    settings = load_settings(settings_path)
    _logger.info("POS_CONFIG_TRACE", extra={
        "trace_type": "POS_CONFIG_TRACE",
        "path": str(settings_path),
        "checksum": settings.checksum,
        "vat_enabled": settings.financial.vat_enabled,
        "vat_rate_percent": str(settings.financial.vat_rate_percent),
        "credit_policy": settings.financial.credit_policy.value,
    })
    return settings


__all__ = [
    "FinancialSettings",
    "PosSettings",
    "SellerProfile",
    "get_active_settings",
    "guard_policy_from",
]
