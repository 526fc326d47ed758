"""
Domain models - immutable sale plans and payments.

Both are frozen pydantic models: a pipeline run never mutates a record it
has read, it builds a new one (``model_copy``) instead.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlanTier(str, Enum):
    """Commission category of a sale plan."""

    BRONZE = "Bronze"
    PRATA = "Prata"
    OURO = "Ouro"
    OTHER = "Other"

    @classmethod
    def _missing_(cls, value: object) -> PlanTier:
        return cls.OTHER


class PlanStatus(str, Enum):
    """Lifecycle status of a sale plan. Only ``ativo`` plans are processed."""

    ATIVO = "ativo"
    INATIVO = "inativo"
    OTHER = "other"

    @classmethod
    def _missing_(cls, value: object) -> PlanStatus:
        return cls.OTHER


class SalePlan(BaseModel):
    """
    A sale plan as read from the plan store.

    After the target transform, ``value`` holds the computed target amount
    instead of the original sale value.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    tier: PlanTier
    status: PlanStatus
    value: Decimal = Field(ge=0)
    sale_date: date

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Any:
        """Route floats through ``str`` so ``0.1`` stays ``Decimal("0.1")``."""
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @property
    def is_active(self) -> bool:
        return self.status is PlanStatus.ATIVO


class Payment(BaseModel):
    """Periodic payment computed for one partner by one aggregation run."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    partner: str = Field(min_length=1)
    total_value: Decimal = Field(ge=0)
    payment_date: date
