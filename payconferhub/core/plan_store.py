"""
Plan store contract and the in-memory adapter.

The store owns the ``ativo`` filter for reads: ``query_active`` yields only
active plans, and the aggregator sums whatever it yields.
"""
import asyncio
from typing import AsyncIterator, Iterable, List, Optional, Protocol, runtime_checkable

import structlog

from payconferhub.core.exceptions import PersistenceError, SourceUnavailable
from payconferhub.core.models import PlanStatus, SalePlan

logger = structlog.get_logger(__name__)


@runtime_checkable
class PlanStore(Protocol):
    """Repository contract consumed by the aggregator and the transformer."""

    def query_active(self) -> AsyncIterator[SalePlan]:
        """
        Lazily yield every plan with status ``ativo``.

        Raises:
            SourceUnavailable: If the query cannot complete
        """
        ...

    async def persist(self, plan: SalePlan) -> SalePlan:
        """
        Store a plan and return its persisted form (with an assigned id).

        Raises:
            PersistenceError: If the write fails
        """
        ...


class InMemoryPlanStore:
    """
    List-backed plan store.

    Used by tests and local runs. Plans persisted without an id receive the
    next sequential id; plans with an id replace the stored plan with that id.
    """

    def __init__(self, plans: Optional[Iterable[SalePlan]] = None):
        self._plans: List[SalePlan] = []
        self._next_id = 1
        self._lock = asyncio.Lock()
        self.available = True
        for plan in plans or ():
            self._insert(plan)

    def _insert(self, plan: SalePlan) -> SalePlan:
        if plan.id is None:
            plan = plan.model_copy(update={"id": self._next_id})
        self._next_id = max(self._next_id, plan.id + 1)
        self._plans = [p for p in self._plans if p.id != plan.id]
        self._plans.append(plan)
        return plan

    @property
    def plans(self) -> List[SalePlan]:
        """Snapshot of every stored plan, in insertion order."""
        return list(self._plans)

    async def query_active(self) -> AsyncIterator[SalePlan]:
        if not self.available:
            raise SourceUnavailable("In-memory plan store is unavailable")

        # Iterate over a copy so concurrent persists don't affect this read
        for plan in list(self._plans):
            if plan.status is PlanStatus.ATIVO:
                yield plan
            await asyncio.sleep(0)

    async def persist(self, plan: SalePlan) -> SalePlan:
        if not self.available:
            raise PersistenceError("In-memory plan store is unavailable", plan_id=plan.id)

        async with self._lock:
            stored = self._insert(plan)

        logger.debug("plan_persisted_in_memory", plan_id=stored.id, tier=stored.tier.value)
        return stored
