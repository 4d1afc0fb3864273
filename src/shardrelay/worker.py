from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Optional

from shardrelay.classifier import Classifier
from shardrelay.config import RelayConfig
from shardrelay.metrics import EventMetrics, MetricsSink
from shardrelay.presence import SHUTDOWN_STATUS, Cluster, Presence, bot_status, broadcast
from shardrelay.scheduler import PeriodicScheduler
from shardrelay.schemas.events import BaseEvent
from shardrelay.shard_state import ShardStateTracker
from shardrelay.store.base import EventStore
from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)


class GatewayWorker:
    """Producer side of the relay.

    The gateway cluster calls ``on_event`` for every dispatch it receives; the
    worker records shard lifecycle events, then classifies the event and pushes
    it to its topic queue. Once a minute it refreshes the shard presences from
    the status key and flushes metrics.

    Usage:
        worker = GatewayWorker(cluster, store, config)
        await worker.init()
        ...
        await worker.shutdown()
    """

    def __init__(
        self,
        cluster: Cluster,
        store: EventStore,
        config: RelayConfig,
        metrics: EventMetrics | None = None,
        metrics_sink: MetricsSink | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cluster = cluster
        self.store = store
        self.config = config
        self.metrics = metrics or EventMetrics()
        self.metrics_sink = metrics_sink
        self.classifier = Classifier(store, config, self.metrics)
        self.shard_state = ShardStateTracker(store, key=config.shard_status_key, clock=clock)
        self.custom_status: Optional[str] = None
        self.scheduler = PeriodicScheduler(
            [self.update_status, self.report_metrics],
            interval=config.heartbeat_interval,
            skew=config.heartbeat_skew,
            clock=clock,
            sleep=sleep,
            name="gateway-worker",
        )
        self._shut_down = False

    @property
    def status_line(self) -> str:
        return bot_status(self.config.prefixes, self.custom_status)

    @property
    def presence(self) -> Presence:
        """Presence new shards should identify with."""
        return Presence.playing(self.status_line)

    async def init(self) -> None:
        self.cluster.presence = self.presence
        self.scheduler.start()
        logger.info(
            "gateway worker started: namespace=%s ignore_events=%s", self.config.namespace, self.config.ignore_events
        )

    async def on_event(self, shard_id: int, event: BaseEvent) -> None:
        # lifecycle bookkeeping first; neither step raises into the shard
        await self.shard_state.handle_event(shard_id, event)
        await self.classifier.classify_and_publish(shard_id, event)

    async def on_shard_closed(self, shard_id: int) -> None:
        await self.shard_state.shard_closed(shard_id)

    async def update_status(self) -> None:
        """Pick up a new custom status from the store and push it to every shard."""
        new_status = await self.store.get(self.config.status_key)
        if new_status == self.custom_status:
            return
        self.custom_status = new_status
        presence = self.presence
        # shards that (re)connect later identify with the new status too
        self.cluster.presence = presence
        logger.info("Pushing new bot status message to shards: %s", self.status_line)
        await broadcast(self.cluster.shards, presence)

    async def report_metrics(self) -> None:
        await self.metrics.report(self.metrics_sink)
        logger.debug("Submitted metrics to backend")

    async def shutdown(self) -> None:
        """Stop the timer, then tell users we're restarting. Runs once."""
        if self._shut_down:
            return
        self._shut_down = True
        await self.scheduler.cancel()
        # we don't close the gateway sessions here, the idle presence lingers
        # until the next process identifies and sets the real status
        failures = await broadcast(self.cluster.shards, Presence.playing(SHUTDOWN_STATUS, going_away=True))
        if failures:
            logger.warning("shutdown status not delivered to %d shard(s)", len(failures))

    async def __aenter__(self) -> "GatewayWorker":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
