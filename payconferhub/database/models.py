"""SQLAlchemy database models for the plan store."""
from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, Index, Integer, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from payconferhub.core.models import PlanStatus, PlanTier, SalePlan


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class SalePlanRecord(Base):
    """
    Sale plans table.

    Written by the plan intake process and by the target transform; read by
    the payment aggregation.
    """

    __tablename__ = "plano_venda"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tier: Mapped[str] = mapped_column("tipo_plano", String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    value: Mapped[Decimal] = mapped_column("valor", Numeric(18, 4), nullable=False)
    sale_date: Mapped[date] = mapped_column("data_venda", Date, nullable=False)

    __table_args__ = (
        CheckConstraint("valor >= 0", name="non_negative_value"),
        Index("idx_plano_venda_status_id", "status", "id"),
    )

    @classmethod
    def from_domain(cls, plan: SalePlan) -> "SalePlanRecord":
        return cls(
            id=plan.id,
            tier=plan.tier.value,
            status=plan.status.value,
            value=plan.value,
            sale_date=plan.sale_date,
        )

    def to_domain(self) -> SalePlan:
        return SalePlan(
            id=self.id,
            tier=PlanTier(self.tier),
            status=PlanStatus(self.status),
            value=self.value,
            sale_date=self.sale_date,
        )

    def __repr__(self) -> str:
        """String representation of SalePlanRecord."""
        return (
            f"<SalePlanRecord(id={self.id}, tier={self.tier}, "
            f"status={self.status}, value={self.value})>"
        )
