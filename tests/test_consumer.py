import asyncio

import pytest

from shardrelay import codec
from shardrelay.classifier import Classifier
from shardrelay.consumer import GatewayEventService, TopicConsumer
from shardrelay.schemas.events import MessageReactionAddEvent
from shardrelay.store import MemoryEventStore, StoreConnectionLost, StoreError, topic_key

REACTION_KEY = topic_key("discord", "reaction")


async def wait_for(predicate, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FlakyStore(MemoryEventStore):
    """Fails the first ``failures`` pops with ``exc``, then behaves."""

    def __init__(self, exc, failures: int = 1):
        super().__init__()
        self.exc = exc
        self.failures = failures

    async def blocking_pop(self, key, timeout):
        if self.failures > 0:
            self.failures -= 1
            raise self.exc
        return await super().blocking_pop(key, timeout)


@pytest.mark.anyio
async def test_empty_poll_is_not_an_error(store):
    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01)
    assert await consumer.poll_once() is False
    assert consumer.metrics.get("received", "reaction") == 0


@pytest.mark.anyio
async def test_unknown_tag_is_dropped_without_delivery(store):
    delivered = []
    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01)
    consumer.subscribe(lambda seq, evt: delivered.append((seq, evt)))
    await store.push(REACTION_KEY, b'{"op": 0, "s": 1, "t": "MESSAGE_POLL_VOTE_ADD", "d": {}}')

    assert await consumer.poll_once() is False
    assert delivered == []
    assert consumer.metrics.get("unknown", "reaction") == 1


@pytest.mark.anyio
async def test_malformed_envelope_does_not_stop_the_loop(store, sample_events):
    delivered = []
    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01)
    consumer.subscribe(lambda seq, evt: delivered.append(seq))
    await store.push(REACTION_KEY, b"{{{")
    await store.push(REACTION_KEY, codec.encode(2, "MESSAGE_REACTION_ADD", {"user_id": "nope"}))
    await store.push(REACTION_KEY, codec.encode(3, "MESSAGE_REACTION_ADD", sample_events["MESSAGE_REACTION_ADD"]))

    task = asyncio.create_task(consumer.run())
    await wait_for(lambda: delivered == [3])
    consumer.stop()
    await asyncio.wait_for(task, timeout=1.0)
    assert consumer.metrics.get("malformed", "reaction") == 2


@pytest.mark.anyio
async def test_failing_subscriber_does_not_block_next_envelope(store, sample_events):
    seen = []

    async def broken(seq, evt):
        raise RuntimeError("subscriber bug")

    async def recorder(seq, evt):
        seen.append(seq)

    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01)
    consumer.subscribe(broken)
    consumer.subscribe(recorder)
    event = sample_events["MESSAGE_REACTION_ADD"]
    await store.push(REACTION_KEY, codec.encode(1, "MESSAGE_REACTION_ADD", event))
    await store.push(REACTION_KEY, codec.encode(2, "MESSAGE_REACTION_ADD", event))

    task = asyncio.create_task(consumer.run())
    await wait_for(lambda: seen == [1, 2])
    consumer.stop()
    await asyncio.wait_for(task, timeout=1.0)
    assert consumer.metrics.get("subscriber_errors", "reaction") == 2


@pytest.mark.anyio
async def test_transient_store_errors_are_retried(sample_events):
    store = FlakyStore(StoreError("timeout"), failures=3)
    seen = []
    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01, error_backoff=0.01)
    consumer.subscribe(lambda seq, evt: seen.append(seq))
    await store.push(REACTION_KEY, codec.encode(5, "MESSAGE_REACTION_ADD", sample_events["MESSAGE_REACTION_ADD"]))

    task = asyncio.create_task(consumer.run())
    await wait_for(lambda: seen == [5])
    consumer.stop()
    await asyncio.wait_for(task, timeout=1.0)
    assert consumer.metrics.get("loop_errors", "reaction") == 3


@pytest.mark.anyio
async def test_connection_loss_escapes_the_loop(store):
    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01)
    await store.close()
    with pytest.raises(StoreConnectionLost):
        await asyncio.wait_for(consumer.run(), timeout=1.0)


@pytest.mark.anyio
async def test_subscribe_after_start_is_rejected(store):
    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01)
    task = asyncio.create_task(consumer.run())
    await asyncio.sleep(0)
    with pytest.raises(RuntimeError):
        consumer.subscribe(lambda seq, evt: None)
    consumer.stop()
    await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.anyio
async def test_dispatch_waits_for_subscriber_before_next_pop(store, sample_events):
    release = asyncio.Event()
    started = []

    async def slow(seq, evt):
        started.append(seq)
        await release.wait()

    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01)
    consumer.subscribe(slow)
    event = sample_events["MESSAGE_REACTION_ADD"]
    for seq in (1, 2):
        await store.push(REACTION_KEY, codec.encode(seq, "MESSAGE_REACTION_ADD", event))

    task = asyncio.create_task(consumer.run())
    await wait_for(lambda: started == [1])
    await asyncio.sleep(0.05)
    # second envelope stays queued while the first is being handled
    assert started == [1]
    assert await store.length(REACTION_KEY) == 1
    release.set()
    await wait_for(lambda: started == [1, 2])
    consumer.stop()
    await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.anyio
async def test_end_to_end_reaction_delivered_exactly_once(config, store, sample_events):
    delivered = []
    service = GatewayEventService(store, config)
    service.subscribe(lambda seq, evt: delivered.append(("a", seq, evt)))
    service.subscribe(lambda seq, evt: delivered.append(("b", seq, evt)))
    service.start()

    classifier = Classifier(store, config)
    event = sample_events["MESSAGE_REACTION_ADD"]
    await classifier.classify_and_publish(7, event)

    await wait_for(lambda: len(delivered) == 2)
    await asyncio.sleep(0.1)
    await service.stop()

    assert delivered == [("a", 7, event), ("b", 7, event)]
    assert isinstance(delivered[0][2], MessageReactionAddEvent)


@pytest.mark.anyio
async def test_fifo_within_a_topic(config, store, make_message):
    seen = []
    service = GatewayEventService(store, config.model_copy(update={"topics": ["command"]}))
    service.subscribe(lambda seq, evt: seen.append(evt.content))
    classifier = Classifier(store, config)
    for i in range(5):
        await classifier.classify_and_publish(0, make_message(f"pk;cmd {i}"))
    service.start()
    await wait_for(lambda: len(seen) == 5)
    await service.stop()
    assert seen == [f"pk;cmd {i}" for i in range(5)]


@pytest.mark.anyio
async def test_service_restarts_loop_after_connection_loss(config, sample_events):
    store = FlakyStore(StoreConnectionLost("reset by peer"), failures=1)
    seen = []
    service = GatewayEventService(store, config.model_copy(update={"topics": ["reaction"]}))
    service.subscribe(lambda seq, evt: seen.append(seq))
    await store.push(REACTION_KEY, codec.encode(9, "MESSAGE_REACTION_ADD", sample_events["MESSAGE_REACTION_ADD"]))

    service.start()
    await wait_for(lambda: seen == [9])
    assert service.restarts["reaction"] == 1
    assert service.is_running("reaction")
    await service.stop()
    assert not service.is_running("reaction")

    with pytest.raises(RuntimeError):
        service.subscribe(lambda seq, evt: None)


@pytest.mark.anyio
async def test_stuck_key_backs_off_between_retries():
    # e.g. WRONGTYPE: every pop on the key fails the same way
    store = FlakyStore(StoreError("WRONGTYPE Operation against a key holding the wrong kind of value"), failures=10**6)
    consumer = TopicConsumer(store, "reaction", pop_timeout=0.01, error_backoff=0.05)

    task = asyncio.create_task(consumer.run())
    await asyncio.sleep(0.3)
    consumer.stop()
    await asyncio.wait_for(task, timeout=1.0)

    errors = consumer.metrics.get("loop_errors", "reaction")
    assert 1 <= errors <= 10
