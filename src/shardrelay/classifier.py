from __future__ import annotations

import re
from typing import Optional

from shardrelay import codec
from shardrelay.config import RelayConfig
from shardrelay.metrics import EventMetrics
from shardrelay.schemas.events import (
    BaseEvent,
    InteractionCreateEvent,
    MessageCreateEvent,
    MessageReactionAddEvent,
    MessageUpdateEvent,
)
from shardrelay.store.base import EventStore, topic_key
from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)

LOG_CLEANUP = "log_cleanup"
COMMAND = "command"
PROXY = "proxy"
REACTION = "reaction"
INTERACTION = "interaction"

_MENTION_PREFIX = re.compile(r"^<@!?(\d+)>")


def mention_prefix_id(content: str) -> Optional[int]:
    """Return the user id mentioned at the very start of ``content``, if any."""
    m = _MENTION_PREFIX.match(content or "")
    return int(m.group(1)) if m else None


class Classifier:
    """Decide which topic a gateway event belongs to and push it there.

    ``classify`` is pure; ``classify_and_publish`` is the callback run on the
    shard event path and never raises, dropping the event instead.
    """

    def __init__(self, store: EventStore, config: RelayConfig, metrics: EventMetrics | None = None):
        self.store = store
        self.config = config
        self.metrics = metrics or EventMetrics()

    def has_command_prefix(self, content: str) -> bool:
        lowered = (content or "").casefold()
        for prefix in self.config.prefixes:
            if lowered.startswith(prefix.casefold()):
                return True
        mentioned = mention_prefix_id(content)
        if mentioned is not None:
            return self.config.client_id is not None and mentioned == self.config.client_id
        return False

    def classify(self, event: BaseEvent) -> Optional[str]:
        if isinstance(event, MessageCreateEvent):
            if event.author.bot:
                return LOG_CLEANUP
            if self.has_command_prefix(event.content):
                return COMMAND
            if event.guild_id is not None:
                return PROXY
            return None
        if isinstance(event, MessageUpdateEvent):
            return PROXY if event.guild_id is not None else None
        # delete events are not consumed by any worker yet
        if isinstance(event, MessageReactionAddEvent):
            return REACTION
        if isinstance(event, InteractionCreateEvent):
            return INTERACTION
        return None

    async def classify_and_publish(self, shard_index: int, event: BaseEvent) -> None:
        # read per call so the switch can be flipped without a restart
        if self.config.ignore_events:
            self.metrics.incr("ignored")
            return

        try:
            topic = self.classify(event)
        except Exception:
            logger.exception("failed to classify %s from shard %s", type(event).__name__, shard_index)
            self.metrics.incr("publish_errors")
            return
        if topic is None:
            self.metrics.incr("dropped")
            return

        await self.publish(shard_index, event, topic)

    async def publish(self, shard_index: int, event: BaseEvent, topic: str) -> bool:
        event_type = event.event_type
        key = topic_key(self.config.namespace, topic)
        logger.debug("Dispatching %s (%s) from shard %s to %s", type(event).__name__, event_type, shard_index, key)
        try:
            data = codec.encode(shard_index, event_type, event)
            await self.store.push(key, data)
        except Exception:
            logger.error("failed to publish %s to %s", event_type, key, exc_info=True)
            self.metrics.incr("publish_errors", topic)
            return False
        self.metrics.incr("published", topic)
        return True
