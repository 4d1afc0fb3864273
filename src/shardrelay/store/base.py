from __future__ import annotations

from typing import Dict, Optional, Protocol, runtime_checkable


class StoreError(Exception):
    """Transient store failure (timeout, full queue, protocol hiccup)."""


class StoreConnectionLost(StoreError):
    """The connection to the backing store is gone; loops must not retry blindly."""


def topic_key(namespace: str, topic: str) -> str:
    """Queue key for ``topic``, e.g. ``discord:evt:command``."""
    return f"{namespace}:evt:{topic}"


@runtime_checkable
class EventStore(Protocol):
    """Durable FIFO lists plus the handful of key/hash operations the relay needs.

    Implementations must be safe to share between the classifier and every
    consumer loop of the process.
    """

    async def push(self, key: str, data: bytes) -> None: ...

    async def blocking_pop(self, key: str, timeout: float) -> Optional[bytes]: ...

    async def length(self, key: str) -> int: ...

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def hget(self, key: str, field: str) -> Optional[str]: ...

    async def hset(self, key: str, field: str, value: str) -> None: ...

    async def hgetall(self, key: str) -> Dict[str, str]: ...

    async def close(self) -> None: ...
