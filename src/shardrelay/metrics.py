from __future__ import annotations

import asyncio
import threading
import time
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)

Snapshot = Dict[str, Any]
MetricsSink = Callable[[Snapshot], Union[None, Awaitable[None]]]


class EventMetrics:
    """Per-process relay counters, flushed once per minute by the worker.

    Counters are keyed by ``(name, topic)``; ``topic`` is ``None`` for
    process-wide counters such as ``dropped``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Counter = Counter()
        self._since = time.time()

    def incr(self, name: str, topic: Optional[str] = None, amount: int = 1) -> None:
        with self._lock:
            self._counts[(name, topic)] += amount

    def get(self, name: str, topic: Optional[str] = None) -> int:
        with self._lock:
            return self._counts[(name, topic)]

    @staticmethod
    def _render(counts: Counter, since: float) -> Snapshot:
        counters: Dict[str, Any] = {}
        for (name, topic), value in counts.items():
            if topic is None:
                counters[name] = value
            else:
                counters.setdefault(name, {})[topic] = value
        return {"since": since, "until": time.time(), "counters": counters}

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._render(self._counts, self._since)

    async def report(self, sink: MetricsSink | None = None) -> Snapshot:
        """Hand the interval snapshot to ``sink`` and start a new interval.

        If the sink fails the interval's counts are merged back so the next
        report still includes them.
        """
        with self._lock:
            counts, since = self._counts, self._since
            self._counts, self._since = Counter(), time.time()
        snap = self._render(counts, since)
        try:
            result = (sink or log_sink)(snap)
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            with self._lock:
                self._counts.update(counts)
                self._since = since
            raise
        return snap


def log_sink(snapshot: Snapshot) -> None:
    logger.info("relay metrics: %s", snapshot["counters"])
