from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional

import dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)

DEFAULT_PREFIXES = ["pk;", "pk!"]
ALL_TOPICS = ["log_cleanup", "command", "proxy", "reaction", "interaction"]

_TRUTHY = ("1", "true", "yes", "on")


class RelayConfig(BaseModel):
    """Runtime settings shared by the gateway worker and the consumer service."""

    store: str = "redis"
    redis_url: str = "redis://127.0.0.1:6379"
    namespace: str = "discord"
    # own account id; mention prefixes only count when they mention this id
    client_id: Optional[int] = None
    prefixes: List[str] = Field(default_factory=lambda: list(DEFAULT_PREFIXES))
    topics: List[str] = Field(default_factory=lambda: list(ALL_TOPICS))
    # incident kill switch: drop every event before it reaches the store
    ignore_events: bool = False
    pop_timeout: float = Field(1.0, gt=0)
    reconnect_delay: float = Field(5.0, ge=0)
    # pause after a failed loop iteration that was not a connection loss
    error_backoff: float = Field(0.5, ge=0)
    status_key: str = "pluralkit:botstatus"
    shard_status_key: str = "pluralkit:shardstatus"
    heartbeat_interval: float = Field(60.0, gt=0)
    heartbeat_skew: float = Field(0.25, ge=0)
    http_host: str = "127.0.0.1"
    http_port: int = 8000

    @field_validator("prefixes")
    def _prefixes_not_empty(cls, v: List[str]):
        v = [p for p in v if p]
        if not v:
            raise ValueError("at least one command prefix is required")
        return v

    @field_validator("topics")
    def _known_topics(cls, v: List[str]):
        unknown = [t for t in v if t not in ALL_TOPICS]
        if unknown:
            raise ValueError(f"unknown topics: {unknown}")
        return v


def _split_list(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _read_config_file(path: Path) -> dict:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.debug("config file not found: %s", path)
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("ignoring unreadable config file %s: %s", path, exc)
        return {}


def _env_overrides() -> dict:
    out: dict = {}
    simple = {
        "store": "SHARDRELAY_STORE",
        "redis_url": "SHARDRELAY_REDIS_URL",
        "namespace": "SHARDRELAY_NAMESPACE",
        "status_key": "SHARDRELAY_STATUS_KEY",
        "shard_status_key": "SHARDRELAY_SHARD_STATUS_KEY",
        "http_host": "SHARDRELAY_HTTP_HOST",
    }
    for field_name, env_name in simple.items():
        v = os.getenv(env_name)
        if v is not None and v.strip():
            out[field_name] = v.strip()

    numeric = {
        "client_id": "SHARDRELAY_CLIENT_ID",
        "pop_timeout": "SHARDRELAY_POP_TIMEOUT",
        "reconnect_delay": "SHARDRELAY_RECONNECT_DELAY",
        "error_backoff": "SHARDRELAY_ERROR_BACKOFF",
        "heartbeat_interval": "SHARDRELAY_HEARTBEAT_INTERVAL",
        "heartbeat_skew": "SHARDRELAY_HEARTBEAT_SKEW",
        "http_port": "SHARDRELAY_HTTP_PORT",
    }
    for field_name, env_name in numeric.items():
        v = os.getenv(env_name)
        if v is not None and v.strip():
            # pydantic does the int/float coercion and range checks
            out[field_name] = v.strip()

    for field_name, env_name in (("prefixes", "SHARDRELAY_PREFIXES"), ("topics", "SHARDRELAY_TOPICS")):
        v = os.getenv(env_name)
        if v is not None and v.strip():
            out[field_name] = _split_list(v)

    if os.getenv("IGNORE_EVENTS") is not None:
        out["ignore_events"] = os.getenv("IGNORE_EVENTS", "").strip().lower() in _TRUTHY
    return out


def load_config(path: str | None = None, env_file: str | None = ".env") -> RelayConfig:
    """Build the config from defaults < JSON file < environment.

    The file path comes from ``path`` or SHARDRELAY_CONFIG_PATH; a missing file
    is not an error. Variables from ``env_file`` are loaded first without
    overriding the real environment.
    """
    if env_file:
        dotenv.load_dotenv(env_file, override=False)

    raw_path = path or os.getenv("SHARDRELAY_CONFIG_PATH")
    data: dict = _read_config_file(Path(raw_path)) if raw_path else {}
    data.update(_env_overrides())
    try:
        return RelayConfig.model_validate(data)
    except ValidationError:
        logger.error("invalid relay configuration (keys: %s)", sorted(data))
        raise
