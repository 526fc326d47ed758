"""
Pytest configuration and fixtures.
"""
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Callable, List

import pytest
from prometheus_client import CollectorRegistry

from payconferhub.config import Settings
from payconferhub.core.ledger import LedgerWriter
from payconferhub.core.models import PlanStatus, PlanTier, SalePlan
from payconferhub.monitoring.metrics import MetricsCollector

SALE_DATE = date(2026, 10, 1)
PAYMENT_DATE = date(2026, 10, 19)


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests that need a running PostgreSQL")


def make_plan(
    tier: str,
    value: str,
    status: str = "ativo",
    plan_id: int | None = None,
) -> SalePlan:
    """Build a sale plan with a fixed sale date."""
    return SalePlan(
        id=plan_id,
        tier=PlanTier(tier),
        status=PlanStatus(status),
        value=Decimal(value),
        sale_date=SALE_DATE,
    )


async def collect(stream: AsyncIterator[Any]) -> List[Any]:
    """Drain an async iterator into a list."""
    return [item async for item in stream]


@pytest.fixture
def plan_factory() -> Callable[..., SalePlan]:
    """Factory for sale plans."""
    return make_plan


@pytest.fixture
def test_metrics() -> MetricsCollector:
    """Metrics collector bound to a private registry."""
    return MetricsCollector(CollectorRegistry())


@pytest.fixture
def ledger_path(tmp_path: Path) -> Path:
    """Ledger file location inside the test's temporary directory."""
    return tmp_path / "ledger" / "pagamentos.csv"


@pytest.fixture
def ledger_writer(ledger_path: Path) -> LedgerWriter:
    """Ledger writer over a temporary file."""
    return LedgerWriter(ledger_path)


@pytest.fixture
def test_settings(ledger_path: Path) -> Settings:
    """Create test settings."""
    return Settings(
        app_name="payconferhub-test",
        app_env="test",
        log_level="DEBUG",
        ledger_path=str(ledger_path),
        side_task_count=2,
        side_task_delay_seconds=0.01,
        settlement_delay_seconds=0.02,
        throttle_interval_seconds=0.0,
        transform_buffer_size=2,
    )
