from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from shardrelay.codec import EnvelopeDecodeError, EventRegistry, default_registry
from shardrelay.config import RelayConfig
from shardrelay.metrics import EventMetrics
from shardrelay.schemas.events import BaseEvent
from shardrelay.store.base import EventStore, StoreConnectionLost, StoreError, topic_key
from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)

Subscriber = Callable[[int, BaseEvent], Union[None, Awaitable[None]]]


class TopicConsumer:
    """Blocking-pop loop for one topic queue.

    Every iteration pops at most one envelope, decodes it and awaits all
    subscribers before popping again, so a topic never has more than one
    envelope in flight. Failures inside an iteration are logged and the envelope
    dropped; only ``StoreConnectionLost`` ends ``run()``.
    """

    def __init__(
        self,
        store: EventStore,
        topic: str,
        registry: EventRegistry | None = None,
        namespace: str = "discord",
        pop_timeout: float = 1.0,
        metrics: EventMetrics | None = None,
        subscribers: List[Subscriber] | None = None,
        error_backoff: float = 0.5,
    ):
        self.store = store
        self.topic = topic
        self.key = topic_key(namespace, topic)
        self.registry = registry or default_registry
        self.pop_timeout = float(pop_timeout)
        self.error_backoff = float(error_backoff)
        self.metrics = metrics or EventMetrics()
        self._subscribers: List[Subscriber] = subscribers if subscribers is not None else []
        self._started = False
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._started and not self._stopping

    def subscribe(self, callback: Subscriber) -> None:
        if self._started:
            raise RuntimeError(f"cannot subscribe to {self.key} after the loop started")
        self._subscribers.append(callback)

    def stop(self) -> None:
        """Ask the loop to exit after the current iteration."""
        self._stopping = True

    async def run(self) -> None:
        # a stop() issued before the task got scheduled still wins
        self._started = True
        logger.debug("Listening to %s", self.key)
        while not self._stopping:
            try:
                await self.poll_once()
            except StoreConnectionLost:
                logger.error("lost store connection while consuming %s", self.key)
                raise
            except StoreError as exc:
                # a stuck key (WRONGTYPE, unsupported timeout) fails the same way every time
                logger.error("store error while consuming %s: %s", self.key, exc)
                self.metrics.incr("loop_errors", self.topic)
                await asyncio.sleep(self.error_backoff)
            except Exception:
                logger.exception("Error in consumer loop for %s", self.key)
                self.metrics.incr("loop_errors", self.topic)
                await asyncio.sleep(self.error_backoff)
        logger.debug("Stopped listening to %s", self.key)

    async def poll_once(self) -> bool:
        """Run a single iteration; return True when an event was dispatched."""
        data = await self.store.blocking_pop(self.key, self.pop_timeout)
        if data is None:
            return False
        self.metrics.incr("received", self.topic)
        logger.debug("got event from %s: %r", self.key, data)

        try:
            sequence, event_type, event = self.registry.decode(data)
        except EnvelopeDecodeError as exc:
            logger.error("dropping malformed envelope on %s: %s", self.key, exc)
            self.metrics.incr("malformed", self.topic)
            return False
        if event is None:
            # unknown tag, already logged by the registry
            self.metrics.incr("unknown", self.topic)
            return False

        await self.dispatch(sequence, event)
        return True

    async def dispatch(self, sequence: int, event: BaseEvent) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(sequence, event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # at-most-once: the envelope is not requeued
                logger.exception("subscriber %r failed on %s (seq %s)", callback, event.event_type, sequence)
                self.metrics.incr("subscriber_errors", self.topic)
        self.metrics.incr("dispatched", self.topic)


class GatewayEventService:
    """Runs one supervised ``TopicConsumer`` per configured topic.

    All loops share one subscriber list; register subscribers before
    ``start()``. If a loop dies with ``StoreConnectionLost`` it is restarted
    after ``config.reconnect_delay`` seconds.
    """

    def __init__(
        self,
        store: EventStore,
        config: RelayConfig,
        registry: EventRegistry | None = None,
        metrics: EventMetrics | None = None,
    ):
        self.store = store
        self.config = config
        self.registry = registry or default_registry
        self.metrics = metrics or EventMetrics()
        self._subscribers: List[Subscriber] = []
        self.consumers: Dict[str, TopicConsumer] = {
            topic: TopicConsumer(
                store,
                topic,
                registry=self.registry,
                namespace=config.namespace,
                pop_timeout=config.pop_timeout,
                metrics=self.metrics,
                subscribers=self._subscribers,
                error_backoff=config.error_backoff,
            )
            for topic in config.topics
        }
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stopping = False
        self.restarts: Dict[str, int] = {topic: 0 for topic in config.topics}

    def subscribe(self, callback: Subscriber) -> None:
        if self._tasks or self._stopping:
            raise RuntimeError("subscribers must be registered before the service starts")
        self._subscribers.append(callback)

    def start(self) -> None:
        if self._tasks or self._stopping:
            return
        for topic, consumer in self.consumers.items():
            logger.debug("starting consumer for %s", consumer.key)
            self._tasks[topic] = asyncio.create_task(self._supervise(consumer), name=f"consumer:{topic}")

    async def _supervise(self, consumer: TopicConsumer) -> None:
        while not self._stopping:
            try:
                await consumer.run()
                return
            except StoreConnectionLost:
                self.restarts[consumer.topic] += 1
                logger.warning(
                    "consumer for %s lost its store connection, restarting in %.1fs",
                    consumer.key,
                    self.config.reconnect_delay,
                )
                await asyncio.sleep(self.config.reconnect_delay)

    async def stop(self) -> None:
        """Stop every loop and wait for the tasks to finish."""
        self._stopping = True
        for consumer in self.consumers.values():
            consumer.stop()
        tasks = list(self._tasks.values())
        self._tasks.clear()
        if not tasks:
            return
        # loops notice stop() once their current pop returns
        _, pending = await asyncio.wait(tasks, timeout=self.config.pop_timeout + 1.0)
        for t in pending:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def status(self) -> Dict[str, Dict[str, Any]]:
        out: Dict[str, Dict[str, Any]] = {}
        for topic, consumer in self.consumers.items():
            task = self._tasks.get(topic)
            out[topic] = {
                "key": consumer.key,
                "running": task is not None and not task.done(),
                "restarts": self.restarts.get(topic, 0),
            }
        return out

    def is_running(self, topic: str) -> bool:
        task: Optional[asyncio.Task] = self._tasks.get(topic)
        return task is not None and not task.done()
