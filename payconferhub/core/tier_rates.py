"""
Tier commission rates.

Pure functions: the same plan always yields the same target, nothing is
logged or mutated here.
"""
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping

from payconferhub.core.models import PlanTier, SalePlan

TIER_RATES: Mapping[PlanTier, Decimal] = MappingProxyType(
    {
        PlanTier.BRONZE: Decimal("0.05"),
        PlanTier.PRATA: Decimal("0.10"),
        PlanTier.OURO: Decimal("0.15"),
        PlanTier.OTHER: Decimal("0"),
    }
)

DEFAULT_GOAL_THRESHOLD = Decimal("10000")


def rate_for(tier: PlanTier | str) -> Decimal:
    """Return the commission rate of a tier, zero for unknown tiers."""
    return TIER_RATES.get(PlanTier(tier), Decimal("0"))


def apply_target(plan: SalePlan) -> SalePlan:
    """
    Build the target-annotated copy of a plan.

    The returned plan keeps id, tier, status and sale date; its ``value`` is
    the original value multiplied by the tier rate.
    """
    return plan.model_copy(update={"value": plan.value * rate_for(plan.tier)})


def commission_total(plans: Iterable[SalePlan]) -> Decimal:
    """Sum of tier-weighted values over the given plans."""
    return sum((plan.value * rate_for(plan.tier) for plan in plans), Decimal("0"))


def goal_reached(
    plans: Iterable[SalePlan], threshold: Decimal = DEFAULT_GOAL_THRESHOLD
) -> bool:
    """Whether the commission total strictly exceeds ``threshold``."""
    return commission_total(plans) > threshold
