from __future__ import annotations

import asyncio
import time
from typing import Dict, Optional

from shardrelay.store.base import StoreConnectionLost, StoreError
from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)


class Channel:
    def __init__(self, maxsize: int = 10000):
        self.q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.maxsize = int(maxsize)
        self.dropped = 0
        self.created_at = time.time()

    @property
    def depth(self) -> int:
        return self.q.qsize()

    def push(self, item: bytes) -> None:
        # never wait on a full channel; the producer prefers dropping to stalling
        try:
            self.q.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            raise StoreError(f"channel full (maxsize={self.maxsize})")

    async def pop(self, timeout: float) -> Optional[bytes]:
        try:
            return await asyncio.wait_for(self.q.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class MemoryEventStore:
    """In-process stand-in for the redis store.

    Lists are bounded asyncio queues created on first use; keys and hashes are
    plain dicts. Used for local runs and tests, and when SHARDRELAY_STORE=memory.
    """

    def __init__(self, default_maxsize: int = 10000):
        self.channels: Dict[str, Channel] = {}
        self.values: Dict[str, str] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.default_maxsize = int(default_maxsize)
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise StoreConnectionLost("memory store is closed")

    def channel(self, key: str) -> Channel:
        ch = self.channels.get(key)
        if ch is None:
            ch = Channel(maxsize=self.default_maxsize)
            self.channels[key] = ch
        return ch

    async def push(self, key: str, data: bytes) -> None:
        self._check_open()
        self.channel(key).push(data)

    async def blocking_pop(self, key: str, timeout: float) -> Optional[bytes]:
        self._check_open()
        return await self.channel(key).pop(timeout)

    async def length(self, key: str) -> int:
        self._check_open()
        ch = self.channels.get(key)
        return ch.depth if ch is not None else 0

    async def get(self, key: str) -> Optional[str]:
        self._check_open()
        return self.values.get(key)

    async def set(self, key: str, value: str) -> None:
        self._check_open()
        self.values[key] = value

    async def hget(self, key: str, field: str) -> Optional[str]:
        self._check_open()
        return self.hashes.get(key, {}).get(field)

    async def hset(self, key: str, field: str, value: str) -> None:
        self._check_open()
        self.hashes.setdefault(key, {})[field] = value

    async def hgetall(self, key: str) -> Dict[str, str]:
        self._check_open()
        return dict(self.hashes.get(key, {}))

    async def close(self) -> None:
        self.closed = True

    def metrics(self) -> Dict[str, Dict[str, int]]:
        """Return simple per-key queue metrics."""
        out: Dict[str, Dict[str, int]] = {}
        for name, ch in self.channels.items():
            out[name] = {"queue_depth": ch.depth, "dropped": ch.dropped, "maxsize": ch.maxsize}
        return out
