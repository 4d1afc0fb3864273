from .base import EventStore, StoreConnectionLost, StoreError, topic_key
from .memory import MemoryEventStore

MEMORY_NAMES = ("memory", "mem", "inprocess")
REDIS_NAMES = ("redis", "valkey")


def create_store(name: str | None = None, url: str | None = None, **kwargs) -> EventStore:
    """Build a store by name; ``url`` is used by every redis-family store and ignored otherwise."""
    n = (name or "redis").strip().lower()
    if n in MEMORY_NAMES:
        return MemoryEventStore(**kwargs)
    if n in REDIS_NAMES:
        # imported lazily so the memory store works without a redis client installed
        from .redis_store import RedisEventStore

        if url is not None:
            kwargs["url"] = url
        return RedisEventStore(**kwargs)
    raise ValueError(f"Unknown store name: {name}")


__all__ = ["EventStore", "StoreError", "StoreConnectionLost", "topic_key", "MemoryEventStore", "create_store"]
