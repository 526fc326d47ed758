"""
Prometheus metrics for payment aggregation and plan processing.

Tracks:
- Aggregation runs by outcome and their duration
- Aggregated payment totals
- Ledger write failures
- Plans transformed, and plans dropped by reason
- Plan persist latency
"""
from decimal import Decimal
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram


class MetricsCollector:
    """
    Helper class for collecting metrics.

    Each collector registers its own metric family on the given registry, so
    tests can build one per case against a fresh ``CollectorRegistry``.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.aggregations_total = Counter(
            "payment_aggregations_total",
            "Total payment aggregation runs",
            ["status"],  # succeeded, source_unavailable, timeout, cancelled
            registry=self.registry,
        )
        self.aggregation_duration_seconds = Histogram(
            "payment_aggregation_duration_seconds",
            "Payment aggregation duration in seconds",
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 7.5, 10.0, 30.0),
            registry=self.registry,
        )
        self.aggregated_total_value = Histogram(
            "payment_aggregated_total_value",
            "Aggregated payment totals",
            buckets=(0, 100, 500, 1000, 5000, 10000, 50000, 100000, 500000),
            registry=self.registry,
        )
        self.ledger_write_failures_total = Counter(
            "ledger_write_failures_total",
            "Total failed ledger appends",
            registry=self.registry,
        )
        self.plans_transformed_total = Counter(
            "plans_transformed_total",
            "Total plans transformed and persisted",
            ["tier"],
            registry=self.registry,
        )
        self.plans_dropped_total = Counter(
            "plans_dropped_total",
            "Total plans dropped by the transform pipeline",
            ["reason"],  # inactive, persist_error
            registry=self.registry,
        )
        self.plan_persist_duration_seconds = Histogram(
            "plan_persist_duration_seconds",
            "Plan persist call duration in seconds",
            buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
            registry=self.registry,
        )

    def record_aggregation(
        self, status: str, duration_seconds: float, total_value: Optional[Decimal] = None
    ) -> None:
        """Record a finished aggregation run."""
        self.aggregations_total.labels(status=status).inc()
        self.aggregation_duration_seconds.observe(duration_seconds)
        if total_value is not None:
            self.aggregated_total_value.observe(float(total_value))

    def record_ledger_failure(self) -> None:
        """Record a failed ledger append."""
        self.ledger_write_failures_total.inc()

    def record_plan_transformed(self, tier: str, duration_seconds: float) -> None:
        """Record a plan that went through the whole transform pipeline."""
        self.plans_transformed_total.labels(tier=tier).inc()
        self.plan_persist_duration_seconds.observe(duration_seconds)

    def record_plan_dropped(self, reason: str) -> None:
        """Record a plan dropped by the transform pipeline."""
        self.plans_dropped_total.labels(reason=reason).inc()


# Process-wide collector exposed on the default registry
metrics = MetricsCollector(REGISTRY)
