import os
from typing import Any, Callable, Dict

import pytest

# tests/conftest.py

# keep test runs from writing log files and drowning output in debug records
os.environ.setdefault("SHARDRELAY_LOG_DIR", "")
os.environ.setdefault("SHARDRELAY_LOG_LEVEL", "WARNING")

from shardrelay.config import RelayConfig
from shardrelay.schemas.events import (
    InteractionCreateEvent,
    MessageCreateEvent,
    MessageReactionAddEvent,
    MessageUpdateEvent,
)
from shardrelay.store import MemoryEventStore

OWN_ID = 42


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def config() -> RelayConfig:
    """Relay config with the memory store and a short pop timeout."""
    return RelayConfig(
        store="memory",
        client_id=OWN_ID,
        prefixes=["pk;", "pk!"],
        pop_timeout=0.05,
        reconnect_delay=0.0,
        error_backoff=0.01,
    )


@pytest.fixture
def store() -> MemoryEventStore:
    return MemoryEventStore()


@pytest.fixture
def make_message() -> Callable[..., MessageCreateEvent]:
    """
    Return a helper building MESSAGE_CREATE events.
    Usage: msg = make_message("pk;help", guild_id=1, bot=False)
    """
    def _make(content: str = "hello", guild_id: int | None = 100, bot: bool = False, author_id: int = 7) -> MessageCreateEvent:
        return MessageCreateEvent(
            id=1000,
            channel_id=200,
            guild_id=guild_id,
            author={"id": author_id, "username": "someone", "bot": bot},
            content=content,
        )
    return _make


@pytest.fixture
def sample_events() -> Dict[str, Any]:
    """One populated event per topic-bound type tag."""
    return {
        "MESSAGE_UPDATE": MessageUpdateEvent(id=1, channel_id=2, guild_id=3, content="edited"),
        "MESSAGE_REACTION_ADD": MessageReactionAddEvent(
            user_id=5, channel_id=2, message_id=1, guild_id=3, emoji={"name": "❌"}
        ),
        "INTERACTION_CREATE": InteractionCreateEvent(
            id=9, application_id=OWN_ID, type=3, token="tok", guild_id=3, data={"custom_id": "btn"}
        ),
    }
