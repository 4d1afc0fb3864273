from __future__ import annotations

import time
from typing import Callable, Dict

from pydantic import BaseModel, ValidationError

from shardrelay.schemas.events import BaseEvent, HeartbeatAckEvent, ReadyEvent, ResumedEvent
from shardrelay.store.base import EventStore
from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)


class ShardState(BaseModel):
    shard_id: int
    up: bool = False
    disconnection_count: int = 0
    latency: int = 0
    last_heartbeat: int = 0
    last_connection: int = 0


class ShardStateTracker:
    """Keeps one JSON record per shard in a store hash.

    Other processes (status pages, the ops app) read the hash; the event path
    only ever writes it, and a store failure here is logged, not raised.
    """

    def __init__(self, store: EventStore, key: str = "pluralkit:shardstatus", clock: Callable[[], float] = time.time):
        self.store = store
        self.key = key
        self._clock = clock

    async def get(self, shard_id: int) -> ShardState:
        raw = await self.store.hget(self.key, str(shard_id))
        if raw is None:
            return ShardState(shard_id=shard_id)
        try:
            return ShardState.model_validate_json(raw)
        except ValidationError:
            logger.warning("discarding undecodable state for shard %s", shard_id)
            return ShardState(shard_id=shard_id)

    async def save(self, state: ShardState) -> None:
        await self.store.hset(self.key, str(state.shard_id), state.model_dump_json())

    async def get_all(self) -> Dict[int, ShardState]:
        out: Dict[int, ShardState] = {}
        for field, raw in (await self.store.hgetall(self.key)).items():
            try:
                state = ShardState.model_validate_json(raw)
            except ValidationError:
                logger.warning("discarding undecodable state for shard %s", field)
                continue
            out[state.shard_id] = state
        return out

    async def handle_event(self, shard_id: int, event: BaseEvent) -> None:
        try:
            if isinstance(event, (ReadyEvent, ResumedEvent)):
                await self.ready_or_resumed(shard_id)
            elif isinstance(event, HeartbeatAckEvent):
                await self.heartbeated(shard_id, event.latency_ms)
        except Exception:
            logger.error("failed to update state for shard %s", shard_id, exc_info=True)

    async def ready_or_resumed(self, shard_id: int) -> None:
        logger.info("shard %s ready", shard_id)
        state = await self.get(shard_id)
        state.up = True
        state.last_connection = int(self._clock())
        await self.save(state)

    async def shard_closed(self, shard_id: int) -> None:
        logger.info("shard %s closed", shard_id)
        try:
            state = await self.get(shard_id)
            state.up = False
            state.disconnection_count += 1
            await self.save(state)
        except Exception:
            logger.error("failed to record close of shard %s", shard_id, exc_info=True)

    async def heartbeated(self, shard_id: int, latency_ms: int = 0) -> None:
        state = await self.get(shard_id)
        state.up = True
        state.last_heartbeat = int(self._clock())
        state.latency = int(latency_ms)
        await self.save(state)
