"""
Unit tests for the payment aggregator.
"""
import asyncio
import time
from decimal import Decimal
from pathlib import Path
from typing import AsyncIterator, List
from unittest.mock import AsyncMock

import pytest
from structlog.testing import capture_logs

from payconferhub.config import Settings
from payconferhub.core.aggregator import PaymentAggregator
from payconferhub.core.exceptions import (
    InvalidPartner,
    PersistenceError,
    SourceUnavailable,
    StepTimeout,
)
from payconferhub.core.ledger import LedgerWriter
from payconferhub.core.models import SalePlan
from payconferhub.core.plan_store import InMemoryPlanStore
from payconferhub.monitoring.metrics import MetricsCollector

from .conftest import PAYMENT_DATE, make_plan


def _aggregator(store, ledger_writer, metrics, **kwargs) -> PaymentAggregator:
    options = dict(
        side_task_delay_seconds=0.01,
        settlement_delay_seconds=0.01,
        clock=lambda: PAYMENT_DATE,
        metrics=metrics,
    )
    options.update(kwargs)
    return PaymentAggregator(store, ledger_writer, **options)


class _StaticStore:
    """Store stub that yields exactly the plans it was given."""

    def __init__(self, plans: List[SalePlan]):
        self._plans = plans

    async def query_active(self) -> AsyncIterator[SalePlan]:
        for plan in self._plans:
            yield plan

    async def persist(self, plan: SalePlan) -> SalePlan:
        return plan


class _HangingStore(_StaticStore):
    async def query_active(self) -> AsyncIterator[SalePlan]:
        await asyncio.sleep(10)
        yield make_plan("Ouro", "1.00")


class TestPaymentAggregator:
    """Test suite for PaymentAggregator."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_aggregate_sums_active_plans(
        self, ledger_writer: LedgerWriter, ledger_path: Path, test_metrics: MetricsCollector
    ) -> None:
        store = InMemoryPlanStore(
            [
                make_plan("Ouro", "1000.00"),
                make_plan("Prata", "999.99", status="inativo"),
                make_plan("Bronze", "500.00"),
            ]
        )
        aggregator = _aggregator(store, ledger_writer, test_metrics)

        payment = await aggregator.aggregate("Parceiro1")

        assert payment.partner == "Parceiro1"
        assert payment.total_value == Decimal("1500.00")
        assert payment.payment_date == PAYMENT_DATE
        assert ledger_path.read_text(encoding="utf-8") == "Parceiro1,1500.00,2026-10-19\n"
        assert test_metrics.registry.get_sample_value(
            "payment_aggregations_total", {"status": "succeeded"}
        ) == 1.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_aggregate_sums_everything_the_store_yields(
        self, ledger_writer: LedgerWriter, test_metrics: MetricsCollector
    ) -> None:
        # The status filter belongs to the store query, not to the aggregator
        store = _StaticStore(
            [make_plan("Other", "0.10"), make_plan("Ouro", "0.20", status="inativo")]
        )
        aggregator = _aggregator(store, ledger_writer, test_metrics)

        payment = await aggregator.aggregate("Parceiro1")

        assert payment.total_value == Decimal("0.30")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_zero_active_plans_still_records_payment(
        self, ledger_writer: LedgerWriter, test_metrics: MetricsCollector
    ) -> None:
        store = InMemoryPlanStore([make_plan("Ouro", "1000.00", status="inativo")])
        aggregator = _aggregator(store, ledger_writer, test_metrics)

        payment = await aggregator.aggregate("Parceiro1")

        assert payment.total_value == Decimal("0")
        entries = ledger_writer.read_entries()
        assert len(entries) == 1
        assert entries[0].partner == "Parceiro1"
        assert entries[0].total_value == Decimal("0")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ledger_failure_returns_payment_and_logs(
        self, test_metrics: MetricsCollector
    ) -> None:
        failing_ledger = AsyncMock(spec=LedgerWriter)
        failing_ledger.append.side_effect = PersistenceError("disk full")
        store = InMemoryPlanStore([make_plan("Ouro", "1000.00"), make_plan("Bronze", "500.00")])
        aggregator = _aggregator(store, failing_ledger, test_metrics)

        with capture_logs() as logs:
            payment = await aggregator.aggregate("Parceiro1")

        assert payment.total_value == Decimal("1500.00")
        failures = [entry for entry in logs if entry["event"] == "ledger_write_failed"]
        assert len(failures) == 1
        assert failures[0]["log_level"] == "error"
        assert failures[0]["partner"] == "Parceiro1"
        assert "disk full" in failures[0]["error"]
        assert test_metrics.registry.get_sample_value("ledger_write_failures_total") == 1.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_unavailable_fails_without_payment(
        self, ledger_writer: LedgerWriter, ledger_path: Path, test_metrics: MetricsCollector
    ) -> None:
        store = InMemoryPlanStore([make_plan("Ouro", "1000.00")])
        store.available = False
        aggregator = _aggregator(store, ledger_writer, test_metrics)

        with pytest.raises(SourceUnavailable):
            await aggregator.aggregate("Parceiro1")

        assert not ledger_path.exists()
        assert test_metrics.registry.get_sample_value(
            "payment_aggregations_total", {"status": "source_unavailable"}
        ) == 1.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_store_query_timeout_is_source_unavailable(
        self, ledger_writer: LedgerWriter, ledger_path: Path, test_metrics: MetricsCollector
    ) -> None:
        aggregator = _aggregator(
            _HangingStore([]), ledger_writer, test_metrics, step_timeout_seconds=0.05
        )

        with pytest.raises(SourceUnavailable) as exc_info:
            await aggregator.aggregate("Parceiro1")

        assert isinstance(exc_info.value.__cause__, StepTimeout)
        assert not ledger_path.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_finalize_runs_side_tasks_concurrently_with_settlement(
        self, ledger_writer: LedgerWriter, test_metrics: MetricsCollector
    ) -> None:
        aggregator = _aggregator(
            InMemoryPlanStore(),
            ledger_writer,
            test_metrics,
            side_task_count=3,
            side_task_delay_seconds=0.3,
            settlement_delay_seconds=0.3,
        )

        started = time.perf_counter()
        await aggregator.aggregate("Parceiro1")
        elapsed = time.perf_counter() - started

        # Sequential execution would take at least 0.6s
        assert elapsed < 0.55

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_launches_exactly_n_side_tasks(
        self, ledger_writer: LedgerWriter, test_metrics: MetricsCollector
    ) -> None:
        launched: List[int] = []

        async def side_task(index: int) -> str:
            launched.append(index)
            await asyncio.sleep(0)
            return "discarded"

        aggregator = _aggregator(
            InMemoryPlanStore(), ledger_writer, test_metrics, side_task_count=4, side_task=side_task
        )

        await aggregator.aggregate("Parceiro1")

        assert sorted(launched) == [0, 1, 2, 3]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_side_tasks_finish_before_payment_is_recorded(
        self, ledger_writer: LedgerWriter, test_metrics: MetricsCollector
    ) -> None:
        finished: List[int] = []

        async def side_task(index: int) -> None:
            await asyncio.sleep(0.05)
            finished.append(index)

        class _CheckingLedger(LedgerWriter):
            async def append(self, payment):
                assert len(finished) == 3
                await super().append(payment)

        ledger = _CheckingLedger(ledger_writer.path)
        aggregator = _aggregator(
            InMemoryPlanStore(), ledger, test_metrics, side_task=side_task
        )

        await aggregator.aggregate("Parceiro1")

        assert len(ledger.read_entries()) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_side_task_failure_is_discarded(
        self, ledger_writer: LedgerWriter, test_metrics: MetricsCollector
    ) -> None:
        async def side_task(index: int) -> None:
            if index == 1:
                raise RuntimeError("background job crashed")

        store = InMemoryPlanStore([make_plan("Prata", "750.00")])
        aggregator = _aggregator(store, ledger_writer, test_metrics, side_task=side_task)

        with capture_logs() as logs:
            payment = await aggregator.aggregate("Parceiro1")

        assert payment.total_value == Decimal("750.00")
        assert any(
            entry["event"] == "side_task_failed" and entry["side_task"] == 1 for entry in logs
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_settlement_timeout_aborts_before_ledger(
        self, ledger_writer: LedgerWriter, ledger_path: Path, test_metrics: MetricsCollector
    ) -> None:
        aggregator = _aggregator(
            InMemoryPlanStore(),
            ledger_writer,
            test_metrics,
            settlement_delay_seconds=5.0,
            step_timeout_seconds=0.05,
        )

        with pytest.raises(StepTimeout) as exc_info:
            await aggregator.aggregate("Parceiro1")

        assert exc_info.value.step == "settlement"
        assert not ledger_path.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancelled_aggregation_records_nothing(
        self, ledger_writer: LedgerWriter, ledger_path: Path, test_metrics: MetricsCollector
    ) -> None:
        side_task_cancelled = asyncio.Event()

        async def side_task(index: int) -> None:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                side_task_cancelled.set()
                raise

        aggregator = _aggregator(
            InMemoryPlanStore([make_plan("Ouro", "1000.00")]),
            ledger_writer,
            test_metrics,
            settlement_delay_seconds=10,
            side_task=side_task,
        )

        task = asyncio.create_task(aggregator.aggregate("Parceiro1"))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert side_task_cancelled.is_set()
        assert not ledger_path.exists()
        assert test_metrics.registry.get_sample_value(
            "payment_aggregations_total", {"status": "cancelled"}
        ) == 1.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_partners_write_separate_records(
        self, ledger_writer: LedgerWriter, test_metrics: MetricsCollector
    ) -> None:
        store = InMemoryPlanStore([make_plan("Ouro", "100.00")])
        aggregator = _aggregator(store, ledger_writer, test_metrics)
        partners = [f"Parceiro{i}" for i in range(10)]

        await asyncio.gather(*(aggregator.aggregate(p) for p in partners))

        entries = ledger_writer.read_entries()
        assert sorted(e.partner for e in entries) == sorted(partners)
        assert all(e.total_value == Decimal("100.00") for e in entries)

    @pytest.mark.unit
    def test_from_settings(self, test_settings: Settings) -> None:
        aggregator = PaymentAggregator.from_settings(InMemoryPlanStore(), test_settings)

        assert aggregator.side_task_count == 2
        assert aggregator.side_task_delay_seconds == 0.01
        assert aggregator.settlement_delay_seconds == 0.02
        assert aggregator.step_timeout_seconds is None
        assert str(aggregator.ledger_writer.path) == test_settings.ledger_path

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_partner_rejected_before_any_work(
        self, ledger_writer: LedgerWriter, ledger_path: Path, test_metrics: MetricsCollector
    ) -> None:
        settlement = AsyncMock()
        store = _HangingStore([])
        aggregator = _aggregator(store, ledger_writer, test_metrics, settlement=settlement)

        with capture_logs() as logs:
            with pytest.raises(InvalidPartner) as exc_info:
                await asyncio.wait_for(aggregator.aggregate(""), timeout=1.0)

        assert isinstance(exc_info.value, ValueError)
        settlement.assert_not_awaited()
        assert not ledger_path.exists()
        assert test_metrics.registry.get_sample_value(
            "payment_aggregations_total", {"status": "invalid_partner"}
        ) == 1.0
        failures = [entry for entry in logs if entry["event"] == "payment_aggregation_failed"]
        assert failures[0]["error"]["code"] == "invalid_partner"

    @pytest.mark.unit
    def test_negative_side_task_count_rejected(self, ledger_writer: LedgerWriter) -> None:
        with pytest.raises(ValueError):
            PaymentAggregator(InMemoryPlanStore(), ledger_writer, side_task_count=-1)
