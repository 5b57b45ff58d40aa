"""Concurrency control primitives: throttled batches, timeouts and retries.

None of these know anything about LLMs:
  - run_throttled: run deferred tasks in sequential sub-batches of bounded size
  - with_timeout: race a call against a deadline, returning None on timeout
  - with_retry: re-invoke a timeout-guarded call while its result says "retry"

Retry backoff is bounded linear, not exponential:
  delay_ms = min_delay * min(attempts, 3) + random(0, max_jitter)
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from codebase_insights.core.metrics import LLM_BATCH_TASKS

logger = logging.getLogger(__name__)

T = TypeVar("T")

Task = Callable[[], Awaitable[T]]

# Growth of the retry delay stops after this many attempts
BACKOFF_MAX_MULTIPLIER = 3

# Calls that lost a timeout race, kept referenced until they finish
_abandoned: set[asyncio.Task] = set()


async def run_throttled(tasks: list[Task[T]], max_concurrency: int = 100) -> list[T]:
    """Run deferred tasks, at most ``max_concurrency`` at a time.

    Tasks are started in sub-batches of ``min(remaining, max_concurrency)``; each
    sub-batch runs concurrently and must fully finish before the next one starts.
    Results come back in input order. The first task error fails the whole call.
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be positive, got {max_concurrency}")

    results: list[T] = []
    total = len(tasks)
    position = 0

    while position < total:
        batch = tasks[position : position + max_concurrency]
        logger.info(
            "Processing next batch of %d tasks (already processed: %d of %d tasks)",
            len(batch),
            position,
            total,
        )
        LLM_BATCH_TASKS.inc(len(batch))
        results.extend(await asyncio.gather(*(task() for task in batch)))
        position += len(batch)

    return results


def _discard_result(task: asyncio.Task) -> None:
    """Swallow the eventual outcome of a call nobody waits for any more."""
    _abandoned.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("Abandoned call finished with error after timeout: %r", error)


async def with_timeout(fn: Task[T], timeout_ms: float, log_timeouts: bool = True) -> T | None:
    """Await ``fn()`` for at most ``timeout_ms`` milliseconds.

    Returns the call's value, re-raises its error, or returns None on timeout.
    A timed-out call is not cancelled: it keeps running in the background and
    its result is discarded. The same applies when the caller is cancelled
    while waiting.
    """
    task = asyncio.ensure_future(fn())
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    except asyncio.CancelledError:
        # Caller gave up waiting; the call itself keeps running like a timed-out one
        _abandon(task)
        raise

    if task in done:
        return task.result()

    if log_timeouts:
        logger.warning("Retryable timeout: call did not complete within %.0f ms", timeout_ms)
    _abandon(task)
    return None


def _abandon(task: asyncio.Task) -> None:
    _abandoned.add(task)
    task.add_done_callback(_discard_result)


def compute_retry_delay_ms(attempts: int, min_delay_ms: float, max_jitter_ms: float) -> float:
    """Delay before the next attempt, after ``attempts`` failed attempts."""
    return min_delay_ms * min(attempts, BACKOFF_MAX_MULTIPLIER) + random.uniform(0, max_jitter_ms)


async def with_retry(
    fn: Task[T],
    is_retryable: Callable[[T], bool],
    on_retry: Callable[[], None] | None = None,
    max_attempts: int = 3,
    min_delay_ms: float = 7000,
    max_jitter_ms: float = 3000,
    timeout_ms: float = 300_000,
) -> T | None:
    """Invoke ``fn`` until it gives a non-retryable result or attempts run out.

    A timeout (None) counts as retryable. Errors raised by ``fn`` propagate
    immediately and abort the remaining attempts. After the last attempt the
    last result is returned as-is, which may be None or still retryable.
    """
    attempts = 0
    result: T | None = None

    while attempts < max_attempts:
        result = await with_timeout(fn, timeout_ms)

        if result is not None and not is_retryable(result):
            return result

        if on_retry is not None:
            on_retry()
        attempts += 1

        if attempts < max_attempts:
            delay_ms = compute_retry_delay_ms(attempts, min_delay_ms, max_jitter_ms)
            logger.debug("Retry %d/%d in %.0f ms", attempts, max_attempts - 1, delay_ms)
            await asyncio.sleep(delay_ms / 1000)

    return result
