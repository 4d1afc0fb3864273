from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, List, Optional, Sequence, Set

from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)

Action = Callable[[], Awaitable[None]]


class PeriodicScheduler:
    """Run maintenance actions at every wall-clock interval boundary.

    With the defaults the actions run at xx:00.250 of every minute, whatever
    the time the scheduler was started. Firings are spawned as their own tasks
    so a slow action never delays the next boundary; inside a firing the
    actions run in order and each failure is logged and skipped.

    ``clock`` and ``sleep`` are injectable so tests can drive virtual time.
    """

    def __init__(
        self,
        actions: Sequence[Action],
        interval: float = 60.0,
        skew: float = 0.25,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "periodic",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.actions: List[Action] = list(actions)
        self.interval = float(interval)
        self.skew = float(skew)
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._cancelled = False
        self.firings = 0

    def first_delay(self, now: float) -> float:
        """Seconds from ``now`` until the next boundary plus the skew buffer."""
        return self.interval - (now % self.interval) + self.skew

    def start(self) -> None:
        if self._cancelled:
            raise RuntimeError(f"scheduler {self.name} was cancelled")
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"scheduler:{self.name}")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        now = self._clock()
        target = now + self.first_delay(now)
        while True:
            await self._sleep(max(0.0, target - self._clock()))
            if self._cancelled:
                return
            self.firings += 1
            t = asyncio.create_task(self.fire(), name=f"scheduler:{self.name}:{self.firings}")
            self._inflight.add(t)
            t.add_done_callback(self._inflight.discard)

            target += self.interval
            now = self._clock()
            if target <= now:
                # we overslept (suspended host, blocked loop); skip the missed boundaries
                missed = int((now - target) // self.interval) + 1
                logger.warning("scheduler %s skipped %d firing(s)", self.name, missed)
                target += missed * self.interval

    async def fire(self) -> None:
        logger.debug("Running scheduled tasks for %s", self.name)
        for action in self.actions:
            try:
                await action()
            except Exception:
                logger.exception("scheduled action %s failed", getattr(action, "__name__", action))

    async def cancel(self) -> None:
        """Stop the timer and any running firing. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        pending = list(self._inflight)
        if self._task is not None:
            pending.append(self._task)
        for t in pending:
            t.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._task = None

    async def __aenter__(self) -> "PeriodicScheduler":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cancel()
