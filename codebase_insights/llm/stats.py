"""Invocation statistics — counters of LLM invocation event types.

Counters are only ever incremented. One instance belongs to one router; many
concurrent invocations share it, so every update goes through a lock. Each
event is mirrored to the process-wide Prometheus counter as well.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from codebase_insights.core.metrics import LLM_INVOCATION_EVENTS
from codebase_insights.llm.types import StatEvent

logger = logging.getLogger(__name__)


@dataclass
class StatusRow:
    """One line of the statistics table."""

    event: str
    description: str
    symbol: str
    count: int


class InvocationStatistics:
    """Accumulates success/failure/retry/step-up/crop counts.

    Usage:
        stats = InvocationStatistics()
        stats.record_retry()
        stats.snapshot()  # {"success": 0, "failure": 0, "retry": 1, ...}
    """

    def __init__(self, print_event_ticks: bool = False):
        self._counts: dict[StatEvent, int] = {event: 0 for event in StatEvent}
        self._lock = threading.Lock()
        self._print_event_ticks = print_event_ticks

    def record_success(self) -> None:
        self._record(StatEvent.SUCCESS)

    def record_failure(self) -> None:
        self._record(StatEvent.FAILURE)

    def record_retry(self) -> None:
        self._record(StatEvent.RETRY)

    def record_step_up(self) -> None:
        self._record(StatEvent.STEP_UP)

    def record_crop(self) -> None:
        self._record(StatEvent.CROP)

    def snapshot(self) -> dict[str, int]:
        """Current counts keyed by event name."""
        with self._lock:
            return {event.value: count for event, count in self._counts.items()}

    def status_table(self, include_total: bool = False) -> list[StatusRow]:
        """Counts with their descriptions and tick symbols, for reporting."""
        counts = self.snapshot()
        rows = [
            StatusRow(
                event=event.name,
                description=event.description,
                symbol=event.symbol,
                count=counts[event.value],
            )
            for event in StatEvent
        ]
        if include_total:
            total = counts[StatEvent.SUCCESS.value] + counts[StatEvent.FAILURE.value]
            rows.append(StatusRow("TOTAL", "Total successes + failures", "=", total))
        return rows

    def _record(self, event: StatEvent) -> None:
        with self._lock:
            self._counts[event] += 1
        LLM_INVOCATION_EVENTS.labels(event=event.value).inc()
        if self._print_event_ticks:
            logger.debug(event.symbol)
