"""Virtual-clock event scheduler.

Propagation latency and mining delays are events on a simulated timeline.
run() drains them in (time, insertion) order without sleeping, so timed
behaviour is deterministic and instant in tests.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(order=True)
class ScheduledEvent:
    at_ms: int
    seq: int
    label: str = field(compare=False)
    action: Callable[[], Any] = field(compare=False)


class EventScheduler:
    """Single-threaded timeline; events may schedule further events."""

    def __init__(self, start_ms: int = 0) -> None:
        self.now_ms = start_ms
        self._queue: list[ScheduledEvent] = []
        self._seq = itertools.count()
        self.fired: list[str] = []

    def schedule(self, delay_ms: int, label: str, action: Callable[[], Any]) -> ScheduledEvent:
        if delay_ms < 0:
            msg = "Delay cannot be negative"
            raise ValueError(msg)
        event = ScheduledEvent(self.now_ms + delay_ms, next(self._seq), label, action)
        heapq.heappush(self._queue, event)
        return event

    @property
    def pending(self) -> int:
        return len(self._queue)

    def run(self, until_ms: int | None = None) -> int:
        """Fire events in order. Returns how many fired."""
        count = 0
        while self._queue:
            if until_ms is not None and self._queue[0].at_ms > until_ms:
                self.now_ms = until_ms
                break
            event = heapq.heappop(self._queue)
            self.now_ms = event.at_ms
            logger.debug("t=%dms %s", event.at_ms, event.label)
            event.action()
            self.fired.append(event.label)
            count += 1
        return count
