from __future__ import annotations

import asyncio
from typing import Dict, List, Literal, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)

SHUTDOWN_STATUS = "Restarting... (please wait)"


class Activity(BaseModel):
    name: str
    # 0 = "Playing", the only kind bots may set
    kind: int = Field(0, alias="type")

    model_config = {"populate_by_name": True}


class Presence(BaseModel):
    status: Literal["online", "idle", "dnd", "invisible"] = "online"
    activities: List[Activity] = Field(default_factory=list)
    afk: bool = False
    since: Optional[int] = None

    @classmethod
    def playing(cls, name: str, going_away: bool = False) -> "Presence":
        return cls(status="idle" if going_away else "online", activities=[Activity(name=name)])


class Shard(Protocol):
    shard_id: int

    async def update_status(self, presence: Presence) -> None: ...


class Cluster(Protocol):
    """The gateway connection pool owning the shards (external).

    ``presence`` is what shards send when they identify or resume.
    """

    shards: Mapping[int, Shard]
    presence: Presence


def bot_status(prefixes: Sequence[str], custom: Optional[str] = None) -> str:
    """Status line shown on every shard, e.g. ``pk;help | custom text``."""
    status = f"{prefixes[0]}help"
    if custom:
        status += f" | {custom}"
    return status


async def broadcast(shards: Mapping[int, Shard], presence: Presence) -> Dict[int, BaseException]:
    """Push ``presence`` to every shard concurrently.

    Returns the failures keyed by shard id; a failing shard never stops the
    others from being updated.
    """
    ids = list(shards)
    results = await asyncio.gather(*(shards[i].update_status(presence) for i in ids), return_exceptions=True)
    failures: Dict[int, BaseException] = {}
    for shard_id, res in zip(ids, results):
        if isinstance(res, BaseException):
            if isinstance(res, asyncio.CancelledError):
                raise res
            logger.error("error updating presence on shard %s: %r", shard_id, res)
            failures[shard_id] = res
    return failures
