"""Timeout wrapper shared by every suspension point."""
import asyncio
from typing import Awaitable, Optional, TypeVar

from payconferhub.core.exceptions import StepTimeout

T = TypeVar("T")


async def with_timeout(
    awaitable: Awaitable[T], step: str, timeout_seconds: Optional[float]
) -> T:
    """
    Await ``awaitable``, bounded by ``timeout_seconds`` when one is set.

    Raises:
        StepTimeout: If the step does not finish in time
    """
    if timeout_seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout_seconds)
    except asyncio.TimeoutError as e:
        raise StepTimeout(step, timeout_seconds) from e
