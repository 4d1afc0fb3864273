from __future__ import annotations

from typing import Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from shardrelay.store.base import StoreConnectionLost, StoreError
from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)


class RedisEventStore:
    """Event store backed by redis lists (RPUSH / BLPOP).

    One client (and its connection pool) is shared by the classifier and every
    consumer loop; redis-py pools are safe for concurrent coroutines.
    """

    def __init__(self, url: str = "redis://127.0.0.1:6379", client: aioredis.Redis | None = None):
        self.url = url
        if client is None:
            # credentials live before the "@"
            logger.info("connecting to redis at %s...", url.rsplit("@", 1)[-1])
            client = aioredis.from_url(url, decode_responses=False)
        self._redis = client

    async def _call(self, op: str, coro):
        try:
            return await coro
        except RedisTimeoutError as exc:
            raise StoreError(f"redis {op} timed out: {exc}") from exc
        except RedisConnectionError as exc:
            raise StoreConnectionLost(f"redis connection lost during {op}: {exc}") from exc
        except RedisError as exc:
            raise StoreError(f"redis {op} failed: {exc}") from exc

    @staticmethod
    def _text(value) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    async def push(self, key: str, data: bytes) -> None:
        await self._call("rpush", self._redis.rpush(key, data))

    async def blocking_pop(self, key: str, timeout: float) -> Optional[bytes]:
        res = await self._call("blpop", self._redis.blpop([key], timeout=timeout))
        if res is None:
            return None
        # blpop answers (key, value)
        return res[1]

    async def length(self, key: str) -> int:
        return int(await self._call("llen", self._redis.llen(key)))

    async def get(self, key: str) -> Optional[str]:
        return self._text(await self._call("get", self._redis.get(key)))

    async def set(self, key: str, value: str) -> None:
        await self._call("set", self._redis.set(key, value))

    async def hget(self, key: str, field: str) -> Optional[str]:
        return self._text(await self._call("hget", self._redis.hget(key, field)))

    async def hset(self, key: str, field: str, value: str) -> None:
        await self._call("hset", self._redis.hset(key, field, value))

    async def hgetall(self, key: str) -> Dict[str, str]:
        raw = await self._call("hgetall", self._redis.hgetall(key))
        return {self._text(k): self._text(v) for k, v in (raw or {}).items()}

    async def close(self) -> None:
        await self._redis.aclose()
