"""Core payment aggregation and plan processing logic."""
from .aggregator import PaymentAggregator
from .exceptions import (
    InvalidPartner,
    PayConferError,
    PersistenceError,
    SourceStreamError,
    SourceUnavailable,
    StepTimeout,
)
from .ledger import LedgerEntry, LedgerWriter
from .models import Payment, PlanStatus, PlanTier, SalePlan
from .plan_store import InMemoryPlanStore, PlanStore
from .tier_rates import TIER_RATES, apply_target, commission_total, goal_reached, rate_for
from .transformer import PlanTargetTransformer, Throttle

__all__ = [
    "InMemoryPlanStore",
    "InvalidPartner",
    "LedgerEntry",
    "LedgerWriter",
    "PayConferError",
    "Payment",
    "PaymentAggregator",
    "PersistenceError",
    "PlanStatus",
    "PlanStore",
    "PlanTargetTransformer",
    "PlanTier",
    "SalePlan",
    "SourceStreamError",
    "SourceUnavailable",
    "StepTimeout",
    "TIER_RATES",
    "Throttle",
    "apply_target",
    "commission_total",
    "goal_reached",
    "rate_for",
]
