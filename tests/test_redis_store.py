import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError, TimeoutError as RedisTimeoutError

from shardrelay.store import EventStore, StoreConnectionLost, StoreError
from shardrelay.store.redis_store import RedisEventStore


class FakeRedis:
    """The slice of redis.asyncio.Redis the store calls, with bytes replies."""

    def __init__(self, fail_with=None):
        self.lists = {}
        self.values = {}
        self.hashes = {}
        self.fail_with = fail_with
        self.closed = False

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def rpush(self, key, data):
        self._check()
        self.lists.setdefault(key, []).append(data)

    async def blpop(self, keys, timeout=0):
        self._check()
        for key in keys:
            if self.lists.get(key):
                return key.encode(), self.lists[key].pop(0)
        return None

    async def llen(self, key):
        self._check()
        return len(self.lists.get(key, []))

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def set(self, key, value):
        self._check()
        self.values[key] = value.encode()

    async def hget(self, key, field):
        self._check()
        return self.hashes.get(key, {}).get(field.encode())

    async def hset(self, key, field, value):
        self._check()
        self.hashes.setdefault(key, {})[field.encode()] = value.encode()

    async def hgetall(self, key):
        self._check()
        return dict(self.hashes.get(key, {}))

    async def aclose(self):
        self.closed = True


@pytest.mark.anyio
async def test_list_and_key_operations():
    client = FakeRedis()
    store = RedisEventStore(client=client)
    assert isinstance(store, EventStore)

    await store.push("discord:evt:command", b"a")
    await store.push("discord:evt:command", b"b")
    assert await store.length("discord:evt:command") == 2
    assert await store.blocking_pop("discord:evt:command", 1.0) == b"a"
    assert await store.blocking_pop("discord:evt:proxy", 1.0) is None

    await store.set("pluralkit:botstatus", "hi")
    assert await store.get("pluralkit:botstatus") == "hi"
    await store.hset("pluralkit:shardstatus", "0", "{}")
    assert await store.hget("pluralkit:shardstatus", "0") == "{}"
    assert await store.hgetall("pluralkit:shardstatus") == {"0": "{}"}

    await store.close()
    assert client.closed


@pytest.mark.anyio
@pytest.mark.parametrize(
    "exc, expected",
    [
        (RedisConnectionError("reset"), StoreConnectionLost),
        (RedisTimeoutError("slow"), StoreError),
        (ResponseError("WRONGTYPE"), StoreError),
    ],
)
async def test_redis_errors_are_translated(exc, expected):
    store = RedisEventStore(client=FakeRedis(fail_with=exc))
    with pytest.raises(expected) as excinfo:
        await store.blocking_pop("discord:evt:command", 1.0)
    if expected is StoreError:
        assert not isinstance(excinfo.value, StoreConnectionLost)
