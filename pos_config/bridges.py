"""
Bridges from settings to kernel inputs.

The guard engine takes a ``GuardPolicy`` struct rather than the settings
object, so the engines layer never depends on ``pos_config``.
"""

from __future__ import annotations

from pos_config.schema import FinancialSettings
from pos_kernel.domain.guard import GuardPolicy


def guard_policy_from(settings: FinancialSettings) -> GuardPolicy:
    return GuardPolicy(
        allow_negative_stock=settings.allow_negative_stock,
        allow_selling_below_cost=settings.allow_selling_below_cost,
        credit_policy=settings.credit_policy,
    )
