from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from shardrelay.config import RelayConfig, load_config
from shardrelay.consumer import GatewayEventService
from shardrelay.schemas.events import BaseEvent
from shardrelay.shard_state import ShardStateTracker
from shardrelay.store import EventStore, StoreError, create_store
from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)


class StatusUpdate(BaseModel):
    # None clears the custom status
    status: Optional[str] = Field(None, max_length=128)


def build_store(cfg: RelayConfig) -> EventStore:
    return create_store(cfg.store, url=cfg.redis_url)


async def log_event(sequence: int, event: BaseEvent) -> None:
    logger.info("event %s from shard %s", event.event_type, sequence)


def create_app(config: RelayConfig | None = None, store: EventStore | None = None, subscribers=None) -> FastAPI:
    """Build the ops app; the consumer service runs for the app's lifetime.

    ``subscribers`` defaults to a single subscriber that logs each event.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or load_config()
        st = store or build_store(cfg)
        service = GatewayEventService(st, cfg)
        for callback in subscribers if subscribers is not None else [log_event]:
            service.subscribe(callback)
        app.state.config = cfg
        app.state.store = st
        app.state.service = service
        app.state.shard_state = ShardStateTracker(st, key=cfg.shard_status_key)
        service.start()
        logger.info("consuming topics %s from namespace %s", cfg.topics, cfg.namespace)
        try:
            yield
        finally:
            await service.stop()
            await st.close()

    app = FastAPI(title="shardrelay", version="0.1.0", lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/admin/topics")
    async def admin_topics(request: Request):
        service: GatewayEventService = request.app.state.service
        status = service.status()
        counters = service.metrics.snapshot()["counters"]
        try:
            for topic, info in status.items():
                info["queue_length"] = await service.store.length(info["key"])
                info["counters"] = {name: values.get(topic, 0) for name, values in counters.items() if isinstance(values, dict)}
        except StoreError as exc:
            raise HTTPException(status_code=503, detail=f"store unavailable: {exc}")
        return {"topics": status}

    @app.get("/admin/shards")
    async def admin_shards(request: Request):
        tracker: ShardStateTracker = request.app.state.shard_state
        try:
            states = await tracker.get_all()
        except StoreError as exc:
            raise HTTPException(status_code=503, detail=f"store unavailable: {exc}")
        return {"shards": [states[i].model_dump() for i in sorted(states)]}

    @app.get("/admin/status")
    async def admin_get_status(request: Request):
        cfg: RelayConfig = request.app.state.config
        try:
            value = await request.app.state.store.get(cfg.status_key)
        except StoreError as exc:
            raise HTTPException(status_code=503, detail=f"store unavailable: {exc}")
        return {"status": value or None}

    @app.put("/admin/status")
    async def admin_set_status(body: StatusUpdate, request: Request):
        # gateway workers pick the new value up on their next minute tick
        cfg: RelayConfig = request.app.state.config
        try:
            await request.app.state.store.set(cfg.status_key, body.status or "")
        except StoreError as exc:
            raise HTTPException(status_code=503, detail=f"store unavailable: {exc}")
        return {"status": body.status or None}

    return app


app = create_app()


if __name__ == "__main__":
    _cfg = load_config()
    uvicorn.run("shardrelay.main:app", host=_cfg.http_host, port=_cfg.http_port)
