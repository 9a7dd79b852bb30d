# -*- coding: utf-8 -*-
"""Bounded retry combinator shared by every polling call site."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def bounded_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    interval: float,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    timeout_error: Callable[[int, BaseException | None], Exception] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Call ``operation`` up to ``attempts`` times, ``interval`` seconds apart.

    Exceptions outside ``retry_on`` propagate immediately. When every attempt
    fails, ``timeout_error(attempts, last_exc)`` is raised (chained to the
    last failure), or the last failure itself when no factory is given.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    last_exc: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            last_exc = exc
            logger.debug("Attempt %d/%d failed: %s", attempt, attempts, exc)
        if attempt < attempts:
            await sleep(interval)

    if timeout_error is not None:
        raise timeout_error(attempts, last_exc) from last_exc
    assert last_exc is not None
    raise last_exc
