"""Tests for the concurrency control primitives.

Covers:
  - Throttled Batch Executor (ordering, sub-batch cap, failure propagation)
  - Timeout Guard (value, error, timeout without cancellation)
  - Retry Orchestrator (attempt counts, timeouts as retryable, backoff)
"""

from __future__ import annotations

import asyncio
import gc
from unittest.mock import MagicMock, patch

import pytest

from codebase_insights.llm import control
from codebase_insights.llm.control import (
    BACKOFF_MAX_MULTIPLIER,
    compute_retry_delay_ms,
    run_throttled,
    with_retry,
    with_timeout,
)


def _task(value, delay: float = 0.0, log: list | None = None):
    async def _run():
        if log is not None:
            log.append(("start", value))
        await asyncio.sleep(delay)
        if log is not None:
            log.append(("end", value))
        return value

    return _run


# ==========================================================================
# Test: Throttled Batch Executor
# ==========================================================================


class TestRunThrottled:
    @pytest.mark.asyncio
    async def test_results_keep_input_order(self):
        # Later tasks finish first
        tasks = [_task(i, delay=(5 - i) * 0.01) for i in range(5)]
        results = await run_throttled(tasks, max_concurrency=5)
        assert results == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_empty_list(self):
        assert await run_throttled([], max_concurrency=3) == []

    @pytest.mark.asyncio
    async def test_sub_batches_never_overlap(self):
        log: list = []
        tasks = [_task(i, delay=0.01, log=log) for i in range(7)]

        results = await run_throttled(tasks, max_concurrency=3)

        assert results == list(range(7))
        # Task 3 starts only after tasks 0-2 have all ended, task 6 after 3-5
        assert log.index(("start", 3)) > max(log.index(("end", i)) for i in range(3))
        assert log.index(("start", 6)) > max(log.index(("end", i)) for i in range(3, 6))

    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_cap(self):
        active = 0
        peak = 0

        def make():
            async def _run():
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.005)
                active -= 1
                return True

            return _run

        await run_throttled([make() for _ in range(10)], max_concurrency=4)
        assert peak == 4

    @pytest.mark.asyncio
    async def test_single_slot_runs_sequentially(self):
        log: list = []
        await run_throttled([_task(i, log=log) for i in range(3)], max_concurrency=1)
        assert log == [("start", 0), ("end", 0), ("start", 1), ("end", 1), ("start", 2), ("end", 2)]

    @pytest.mark.asyncio
    async def test_failure_fails_whole_call(self):
        async def boom():
            raise RuntimeError("task failed")

        with pytest.raises(RuntimeError, match="task failed"):
            await run_throttled([_task(1), boom, _task(3)], max_concurrency=2)

    @pytest.mark.asyncio
    async def test_failure_stops_later_batches(self):
        started: list[int] = []

        async def boom():
            raise RuntimeError("first batch failed")

        def tracked(i):
            async def _run():
                started.append(i)
                return i

            return _run

        with pytest.raises(RuntimeError):
            await run_throttled([boom, tracked(1), tracked(2)], max_concurrency=1)
        assert started == []

    @pytest.mark.asyncio
    async def test_rejects_non_positive_concurrency(self):
        with pytest.raises(ValueError):
            await run_throttled([_task(1)], max_concurrency=0)


# ==========================================================================
# Test: Timeout Guard
# ==========================================================================


class TestWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_value_in_time(self):
        assert await with_timeout(_task("done"), timeout_ms=1000) == "done"

    @pytest.mark.asyncio
    async def test_reraises_error(self):
        async def boom():
            raise ValueError("bad call")

        with pytest.raises(ValueError, match="bad call"):
            await with_timeout(boom, timeout_ms=1000)

    @pytest.mark.asyncio
    async def test_returns_none_on_timeout(self):
        assert await with_timeout(_task("late", delay=0.2), timeout_ms=10) is None

    @pytest.mark.asyncio
    async def test_timed_out_call_is_not_cancelled(self):
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            finished.set()
            return "late"

        assert await with_timeout(slow, timeout_ms=5, log_timeouts=False) is None
        await asyncio.wait_for(finished.wait(), timeout=1.0)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_abandoned_error_is_swallowed(self):
        async def slow_boom():
            await asyncio.sleep(0.02)
            raise RuntimeError("after deadline")

        assert await with_timeout(slow_boom, timeout_ms=5) is None
        # Let the background task finish; its error must not surface here
        await asyncio.sleep(0.05)

    @pytest.mark.asyncio
    async def test_cancelled_caller_leaves_call_referenced(self):
        finished = asyncio.Event()

        async def slow_boom():
            await asyncio.sleep(0.05)
            finished.set()
            raise RuntimeError("after caller left")

        loop = asyncio.get_running_loop()
        reported: list[str] = []
        loop.set_exception_handler(lambda _loop, ctx: reported.append(ctx["message"]))
        already_abandoned = set(control._abandoned)
        try:
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(with_timeout(slow_boom, timeout_ms=10_000), timeout=0.01)

            assert len(control._abandoned - already_abandoned) == 1

            await asyncio.wait_for(finished.wait(), timeout=1.0)
            await asyncio.sleep(0.01)
            gc.collect()

            assert not control._abandoned - already_abandoned
            assert "Task exception was never retrieved" not in reported
        finally:
            loop.set_exception_handler(None)


# ==========================================================================
# Test: Retry Orchestrator
# ==========================================================================


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_accepts_first_good_result(self):
        calls = 0

        async def fn():
            nonlocal calls
            calls += 1
            return "ok"

        on_retry = MagicMock()
        result = await with_retry(fn, lambda r: r == "busy", on_retry, max_attempts=3, min_delay_ms=1, max_jitter_ms=0)

        assert result == "ok"
        assert calls == 1
        on_retry.assert_not_called()

    @pytest.mark.asyncio
    async def test_retries_until_good_result(self):
        replies = iter(["busy", "busy", "ok"])

        async def fn():
            return next(replies)

        on_retry = MagicMock()
        result = await with_retry(fn, lambda r: r == "busy", on_retry, max_attempts=5, min_delay_ms=1, max_jitter_ms=0)

        assert result == "ok"
        assert on_retry.call_count == 2

    @pytest.mark.asyncio
    async def test_returns_last_retryable_result_when_exhausted(self):
        calls = 0

        async def fn():
            nonlocal calls
            calls += 1
            return "busy"

        on_retry = MagicMock()
        result = await with_retry(fn, lambda r: r == "busy", on_retry, max_attempts=3, min_delay_ms=1, max_jitter_ms=0)

        assert result == "busy"
        assert calls == 3
        assert on_retry.call_count == 3

    @pytest.mark.asyncio
    async def test_timeouts_are_retryable(self):
        on_retry = MagicMock()
        result = await with_retry(
            _task("late", delay=0.1),
            lambda r: False,
            on_retry,
            max_attempts=2,
            min_delay_ms=1,
            max_jitter_ms=0,
            timeout_ms=5,
        )

        assert result is None
        assert on_retry.call_count == 2

    @pytest.mark.asyncio
    async def test_error_aborts_remaining_attempts(self):
        calls = 0

        async def fn():
            nonlocal calls
            calls += 1
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await with_retry(fn, lambda r: True, max_attempts=3, min_delay_ms=1, max_jitter_ms=0)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_single_attempt_does_not_sleep(self):
        async def fn():
            return "busy"

        with patch("codebase_insights.llm.control.compute_retry_delay_ms") as delay:
            result = await with_retry(fn, lambda r: True, max_attempts=1)

        assert result == "busy"
        delay.assert_not_called()


class TestBackoff:
    def test_linear_growth_capped(self):
        with patch("codebase_insights.llm.control.random.uniform", return_value=0.0):
            assert compute_retry_delay_ms(1, 100, 50) == 100
            assert compute_retry_delay_ms(2, 100, 50) == 200
            assert compute_retry_delay_ms(3, 100, 50) == 300
            assert compute_retry_delay_ms(7, 100, 50) == 100 * BACKOFF_MAX_MULTIPLIER

    def test_jitter_within_bounds(self):
        for attempts in range(1, 6):
            delay = compute_retry_delay_ms(attempts, 1000, 500)
            base = 1000 * min(attempts, BACKOFF_MAX_MULTIPLIER)
            assert base <= delay <= base + 500

    def test_zero_jitter(self):
        assert compute_retry_delay_ms(2, 20, 0) == 40
