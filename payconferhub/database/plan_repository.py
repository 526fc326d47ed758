"""
PostgreSQL-backed plan store.

Implements the ``PlanStore`` contract over the ``plano_venda`` table. The
``ativo`` filter runs in SQL and rows are streamed from a server-side cursor.
Driver errors and connection-level ``OSError``s surface as
``SourceUnavailable`` on reads and ``PersistenceError`` on writes.
"""
from typing import Any, AsyncIterator, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payconferhub.core.exceptions import PersistenceError, SourceUnavailable
from payconferhub.core.models import PlanStatus, SalePlan
from payconferhub.database.models import SalePlanRecord


class SqlPlanStore:
    """Plan store reading and writing sale plans through SQLAlchemy."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        logger: Optional[Any] = None,
    ):
        self.session_factory = session_factory
        self._logger = logger or structlog.get_logger(__name__)

    async def query_active(self) -> AsyncIterator[SalePlan]:
        stmt = (
            select(SalePlanRecord)
            .where(SalePlanRecord.status == PlanStatus.ATIVO.value)
            .order_by(SalePlanRecord.id)
        )
        try:
            async with self.session_factory() as session:
                result = await session.stream_scalars(stmt)
                async for record in result:
                    yield record.to_domain()
        except (SQLAlchemyError, OSError) as e:
            self._logger.error("plan_query_failed", error=str(e))
            raise SourceUnavailable(f"Failed to query active plans: {e}") from e

    async def persist(self, plan: SalePlan) -> SalePlan:
        async with self.session_factory() as session:
            try:
                record = await session.merge(SalePlanRecord.from_domain(plan))
                await session.flush()
                stored = record.to_domain()
                await session.commit()
            except (SQLAlchemyError, OSError) as e:
                await session.rollback()
                self._logger.error("plan_persist_query_failed", plan_id=plan.id, error=str(e))
                raise PersistenceError(
                    f"Failed to persist plan: {e}", plan_id=plan.id
                ) from e

        return stored
