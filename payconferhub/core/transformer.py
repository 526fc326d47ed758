"""
Plan target transform pipeline.

Two stages connected by a bounded queue:

    source -> [feed: filter ativo, apply tier target] -> queue
           -> [driver: throttle, persist, emit]

The feeding stage is a background task; the driver loop is the async
generator returned to the caller, so elements come out in input order and
a slow consumer backs up into the queue and then into the source.

Persist failures drop the failed element and the stream continues.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Optional, Union

import structlog

from payconferhub.config import Settings
from payconferhub.core.exceptions import PersistenceError, SourceStreamError, StepTimeout
from payconferhub.core.models import SalePlan
from payconferhub.core.plan_store import PlanStore
from payconferhub.core.steps import with_timeout
from payconferhub.core.tier_rates import apply_target
from payconferhub.monitoring.metrics import MetricsCollector, metrics as default_metrics

PlanSource = Union[AsyncIterable[SalePlan], Iterable[SalePlan]]

_END = object()


@dataclass
class _StageFailure:
    error: Exception
    from_source: bool


async def _iterate(plans: PlanSource) -> AsyncIterator[SalePlan]:
    if hasattr(plans, "__aiter__"):
        async for plan in plans:
            yield plan
    else:
        for plan in plans:
            yield plan


class Throttle:
    """
    Enforces a minimum spacing between successive releases.

    Every release waits until one interval has passed since the previous
    release, or since ``start`` for the first one.
    """

    def __init__(self, interval_seconds: float):
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self.interval_seconds = interval_seconds
        self._last_release: Optional[float] = None

    def start(self) -> None:
        self._last_release = asyncio.get_running_loop().time()

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        if self._last_release is None:
            self._last_release = loop.time()

        delay = self._last_release + self.interval_seconds - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)
        self._last_release = loop.time()


class PlanTargetTransformer:
    """
    Turns a stream of sale plans into persisted, target-annotated plans.

    Inactive plans are dropped, active plans get ``value`` replaced by their
    tier target, are paced by the throttle, persisted one at a time, and the
    persisted form is emitted.
    """

    def __init__(
        self,
        plan_store: PlanStore,
        throttle_interval_seconds: float = 1.0,
        buffer_size: int = 1,
        step_timeout_seconds: Optional[float] = None,
        logger: Optional[Any] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        if buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        if throttle_interval_seconds < 0:
            raise ValueError("throttle_interval_seconds must be >= 0")

        self.plan_store = plan_store
        self.throttle_interval_seconds = throttle_interval_seconds
        self.buffer_size = buffer_size
        self.step_timeout_seconds = step_timeout_seconds
        self._logger = logger or structlog.get_logger(__name__)
        self._metrics = metrics or default_metrics

    @classmethod
    def from_settings(
        cls, plan_store: PlanStore, settings: Settings, **kwargs: Any
    ) -> "PlanTargetTransformer":
        """Build a transformer configured from application settings."""
        return cls(
            plan_store=plan_store,
            throttle_interval_seconds=settings.throttle_interval_seconds,
            buffer_size=settings.transform_buffer_size,
            step_timeout_seconds=settings.step_timeout_seconds,
            **kwargs,
        )

    def transform(self, plans: PlanSource) -> AsyncIterator[SalePlan]:
        """
        Start a transform run over ``plans``.

        Args:
            plans: Async or sync iterable of sale plans

        Returns:
            AsyncIterator[SalePlan]: Persisted target plans, in input order

        Raises:
            SourceStreamError: While iterating, if ``plans`` itself fails
        """
        return self._drive(plans)

    async def _feed(self, plans: PlanSource, queue: asyncio.Queue, log: Any) -> None:
        source = _iterate(plans)
        try:
            while True:
                try:
                    plan = await source.__anext__()
                except StopAsyncIteration:
                    break
                except Exception as e:
                    await queue.put(_StageFailure(e, from_source=True))
                    return

                if not plan.is_active:
                    self._metrics.record_plan_dropped("inactive")
                    continue

                log.info("plan_accepted", plan_id=plan.id, tier=plan.tier.value)
                target = apply_target(plan)
                log.info(
                    "plan_target_computed",
                    plan_id=target.id,
                    tier=target.tier.value,
                    target_value=str(target.value),
                )
                await queue.put(target)

            await queue.put(_END)
        except Exception as e:
            # Hand the error to the driver instead of leaving it waiting on the queue
            await queue.put(_StageFailure(e, from_source=False))
        finally:
            await source.aclose()

    async def _persist(self, plan: SalePlan, log: Any) -> Optional[SalePlan]:
        started = time.perf_counter()
        try:
            stored = await with_timeout(
                self.plan_store.persist(plan), "persist", self.step_timeout_seconds
            )
        except (PersistenceError, StepTimeout) as e:
            self._metrics.record_plan_dropped("persist_error")
            log.error(
                "plan_persist_failed",
                plan_id=plan.id,
                tier=plan.tier.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        self._metrics.record_plan_transformed(stored.tier.value, time.perf_counter() - started)
        log.info("plan_persisted", plan_id=stored.id, tier=stored.tier.value)
        return stored

    async def _drive(self, plans: PlanSource) -> AsyncIterator[SalePlan]:
        log = self._logger.bind(run_id=str(uuid.uuid4()))
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.buffer_size)
        throttle = Throttle(self.throttle_interval_seconds)

        log.info("plan_transform_started", throttle_interval=self.throttle_interval_seconds)
        throttle.start()
        feeder = asyncio.create_task(self._feed(plans, queue, log))
        emitted = 0

        try:
            while True:
                item = await queue.get()
                if item is _END:
                    break
                if isinstance(item, _StageFailure):
                    if not item.from_source:
                        raise item.error
                    log.error("plan_source_failed", error=str(item.error), emitted=emitted)
                    raise SourceStreamError(
                        f"Plan source failed: {item.error}", emitted=emitted
                    ) from item.error

                await throttle.wait()
                stored = await self._persist(item, log)
                if stored is None:
                    continue

                emitted += 1
                yield stored

            log.info("plan_transform_completed", emitted=emitted)
        finally:
            if not feeder.done():
                feeder.cancel()
            await asyncio.gather(feeder, return_exceptions=True)
