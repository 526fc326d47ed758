"""
Monthly payment aggregation for a partner.

Orchestrates the complete aggregation flow:
1. Fetch every active plan from the plan store
2. Sum their values (exact decimal arithmetic)
3. Finalize: settlement call concurrently with N background side-tasks
4. Build the payment record
5. Append it to the ledger (failures are logged, never raised)
6. Return the payment
"""
import asyncio
import time
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional

import structlog

from payconferhub.config import Settings
from payconferhub.core.exceptions import (
    InvalidPartner,
    PersistenceError,
    SourceUnavailable,
    StepTimeout,
)
from payconferhub.core.ledger import LedgerWriter
from payconferhub.core.models import Payment, SalePlan
from payconferhub.core.plan_store import PlanStore
from payconferhub.core.steps import with_timeout
from payconferhub.monitoring.metrics import MetricsCollector, metrics as default_metrics

SideTask = Callable[[int], Awaitable[Any]]
Settlement = Callable[[str, Decimal], Awaitable[Any]]


class PaymentAggregator:
    """
    Computes and records the periodic payment of a partner.

    The ``ativo`` filter is owned by the plan store query; every plan the
    store yields is summed regardless of tier.
    """

    def __init__(
        self,
        plan_store: PlanStore,
        ledger_writer: LedgerWriter,
        side_task_count: int = 3,
        side_task_delay_seconds: float = 1.0,
        settlement_delay_seconds: float = 5.0,
        step_timeout_seconds: Optional[float] = None,
        side_task: Optional[SideTask] = None,
        settlement: Optional[Settlement] = None,
        clock: Callable[[], date] = date.today,
        logger: Optional[Any] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize the aggregator.

        Args:
            plan_store: Source of active plans
            ledger_writer: Destination of payment records
            side_task_count: Number of side-tasks launched per finalization
            side_task_delay_seconds: Duration of the default side-task
            settlement_delay_seconds: Duration of the default settlement call
            step_timeout_seconds: Timeout per suspension point (None = unbounded)
            side_task: Replaces the default side-task; receives its index
            settlement: Replaces the default settlement; receives partner and total
            clock: Provides the payment date
            logger: Structured logger
            metrics: Metrics collector
        """
        if side_task_count < 0:
            raise ValueError("side_task_count must be >= 0")

        self.plan_store = plan_store
        self.ledger_writer = ledger_writer
        self.side_task_count = side_task_count
        self.side_task_delay_seconds = side_task_delay_seconds
        self.settlement_delay_seconds = settlement_delay_seconds
        self.step_timeout_seconds = step_timeout_seconds
        self.side_task = side_task or self._default_side_task
        self.settlement = settlement or self._default_settlement
        self.clock = clock
        self._logger = logger or structlog.get_logger(__name__)
        self._metrics = metrics or default_metrics

    @classmethod
    def from_settings(
        cls,
        plan_store: PlanStore,
        settings: Settings,
        ledger_writer: Optional[LedgerWriter] = None,
        **kwargs: Any,
    ) -> "PaymentAggregator":
        """Build an aggregator configured from application settings."""
        return cls(
            plan_store=plan_store,
            ledger_writer=ledger_writer or LedgerWriter(settings.ledger_path),
            side_task_count=settings.side_task_count,
            side_task_delay_seconds=settings.side_task_delay_seconds,
            settlement_delay_seconds=settings.settlement_delay_seconds,
            step_timeout_seconds=settings.step_timeout_seconds,
            **kwargs,
        )

    async def _default_side_task(self, index: int) -> None:
        """Unrelated background work overlapping the settlement call."""
        await asyncio.sleep(self.side_task_delay_seconds)

    async def _default_settlement(self, partner: str, total: Decimal) -> None:
        """Simulated external settlement call."""
        await asyncio.sleep(self.settlement_delay_seconds)

    async def _fetch_active_plans(self, log: Any) -> List[SalePlan]:
        """
        Materialize the complete active-plan set.

        Raises:
            SourceUnavailable: If the store read fails or times out
        """

        async def collect() -> List[SalePlan]:
            return [plan async for plan in self.plan_store.query_active()]

        try:
            plans = await with_timeout(collect(), "query_active", self.step_timeout_seconds)
        except SourceUnavailable:
            raise
        except (StepTimeout, OSError) as e:
            raise SourceUnavailable(f"Plan store query failed: {e}") from e

        log.info("active_plans_fetched", plan_count=len(plans))
        return plans

    async def _run_side_task(self, index: int, log: Any) -> None:
        log.debug("side_task_started", side_task=index)
        try:
            await with_timeout(self.side_task(index), "side_task", self.step_timeout_seconds)
        except Exception as e:
            # Side-task results are discarded, and so are their failures
            log.warning("side_task_failed", side_task=index, error=str(e))
            return
        log.debug("side_task_completed", side_task=index)

    async def _settle(self, partner: str, total: Decimal, log: Any) -> None:
        log.info("settlement_started", total_value=str(total))
        await with_timeout(
            self.settlement(partner, total), "settlement", self.step_timeout_seconds
        )
        log.info("settlement_completed")

    async def _finalize(self, partner: str, total: Decimal, log: Any) -> None:
        """
        Run the settlement concurrently with the side-tasks and join them all.

        Raises:
            StepTimeout: If the settlement times out (side-tasks are cancelled)
        """
        tasks = [asyncio.create_task(self._settle(partner, total, log))]
        tasks.extend(
            asyncio.create_task(self._run_side_task(index, log))
            for index in range(self.side_task_count)
        )
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _record(self, payment: Payment, log: Any) -> None:
        try:
            await with_timeout(
                self.ledger_writer.append(payment), "ledger_append", self.step_timeout_seconds
            )
        except (PersistenceError, StepTimeout, OSError) as e:
            self._metrics.record_ledger_failure()
            log.error("ledger_write_failed", error=str(e), error_type=type(e).__name__)

    async def aggregate(self, partner: str) -> Payment:
        """
        Compute, record and return the payment of ``partner``.

        Args:
            partner: Partner identifier

        Returns:
            Payment: The computed payment, even if the ledger append failed

        Raises:
            InvalidPartner: If ``partner`` is empty
            SourceUnavailable: If the active plans cannot be read
            StepTimeout: If the settlement call times out
        """
        correlation_id = uuid.uuid4()
        log = self._logger.bind(correlation_id=str(correlation_id), partner=partner)
        started = time.perf_counter()

        if not partner:
            error = InvalidPartner("Partner identifier must not be empty")
            self._metrics.record_aggregation("invalid_partner", time.perf_counter() - started)
            log.error("payment_aggregation_failed", **error.to_dict())
            raise error

        log.info("payment_aggregation_started")

        try:
            plans = await self._fetch_active_plans(log)
            total = sum((plan.value for plan in plans), Decimal("0"))
            log.info("payment_total_computed", total_value=str(total))

            await self._finalize(partner, total, log)
        except SourceUnavailable as e:
            self._metrics.record_aggregation("source_unavailable", time.perf_counter() - started)
            log.error("payment_aggregation_failed", **e.to_dict())
            raise
        except StepTimeout as e:
            self._metrics.record_aggregation("timeout", time.perf_counter() - started)
            log.error("payment_aggregation_failed", **e.to_dict())
            raise
        except asyncio.CancelledError:
            self._metrics.record_aggregation("cancelled", time.perf_counter() - started)
            log.warning("payment_aggregation_cancelled")
            raise
        except Exception as e:
            self._metrics.record_aggregation("failed", time.perf_counter() - started)
            log.error("payment_aggregation_failed", error=str(e), error_type=type(e).__name__)
            raise

        payment = Payment(partner=partner, total_value=total, payment_date=self.clock())
        await self._record(payment, log)

        duration = time.perf_counter() - started
        self._metrics.record_aggregation("succeeded", duration, payment.total_value)
        log.info(
            "payment_aggregation_completed",
            total_value=str(payment.total_value),
            payment_date=payment.payment_date.isoformat(),
            duration_seconds=round(duration, 3),
        )
        return payment
