"""Shared concurrency primitives for per-document and per-block fan-out.

Two patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped in
   a semaphore acquire/release.  ``return_exceptions=True`` by default, so
   one failing document or block never cancels its siblings.

2. **settle_all** -- the fan-out-then-partition pattern used by the
   orchestrator and the semantic chunker: run every job, then split the
   results into successes and failures keyed by the caller's labels so
   each failure can be logged and classified individually.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Sequence
from typing import TypeVar

import structlog

from docpipe.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: Sequence[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with optional semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore bounding how many run at once.  ``None`` means
        unbounded.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        return await asyncio.gather(*coros, return_exceptions=return_exceptions)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def settle_all(
    jobs: dict[str, Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    logger: structlog.BoundLogger | None = None,
    error_event: str = "job_failed",
) -> tuple[dict[str, _T], dict[str, Exception]]:
    """Run labelled jobs to completion and partition successes from failures.

    Parameters
    ----------
    jobs:
        Mapping of label (document id, block number, ...) to awaitable.
    semaphore:
        Optional concurrency bound.
    logger:
        Logger used for one warning per failed job.
    error_event:
        Event name for the failure warnings.

    Returns
    -------
    tuple[dict[str, _T], dict[str, Exception]]
        ``(successes, failures)`` keyed by the input labels.

    Raises
    ------
    BaseException
        Non-``Exception`` failures (``CancelledError``, ``KeyboardInterrupt``)
        are re-raised rather than collected.
    """
    if logger is None:
        logger = _logger

    labels = list(jobs)
    results = await throttled_gather([jobs[label] for label in labels], semaphore=semaphore)

    successes: dict[str, _T] = {}
    failures: dict[str, Exception] = {}
    for label, result in zip(labels, results, strict=True):
        if isinstance(result, Exception):
            logger.warning(
                error_event,
                label=label,
                error_type=type(result).__name__,
                error=str(result),
            )
            failures[label] = result
        elif isinstance(result, BaseException):
            raise result
        else:
            successes[label] = result

    return successes, failures
