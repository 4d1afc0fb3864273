from __future__ import annotations

import json
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from shardrelay.schemas.envelope import GatewayPacket
from shardrelay.schemas.events import EVENT_MODELS, BaseEvent
from shardrelay.utils.logger_util import get_logger

logger = get_logger(__name__)


class EnvelopeDecodeError(Exception):
    """Raised when an envelope or a recognized payload has the wrong shape."""

    def __init__(self, message: str, event_type: Optional[str] = None):
        super().__init__(message)
        self.event_type = event_type


def encode(sequence: int, event_type: str, event: Any) -> bytes:
    """Serialize ``event`` into a gateway packet tagged ``event_type``."""
    if isinstance(event, BaseModel):
        payload = event.model_dump(mode="json", by_alias=True)
    else:
        payload = event
    packet = GatewayPacket(op=0, s=int(sequence), t=event_type, d=payload)
    return json.dumps(packet.model_dump(mode="json", by_alias=True), separators=(",", ":")).encode("utf-8")


def decode(data: bytes | str) -> Tuple[int, str, Any]:
    """Split raw queue bytes into ``(sequence, event_type, raw_payload)``."""
    try:
        raw = json.loads(data)
    except (TypeError, ValueError, UnicodeDecodeError) as exc:
        raise EnvelopeDecodeError(f"envelope is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise EnvelopeDecodeError(f"envelope must be a JSON object, got {type(raw).__name__}")
    try:
        packet = GatewayPacket.model_validate(raw)
    except ValidationError as exc:
        raise EnvelopeDecodeError(f"malformed envelope: {exc}") from exc
    return packet.sequence, packet.event_type, packet.payload


class EventRegistry:
    """Immutable type tag -> event model table.

    Unknown tags resolve to ``None`` rather than raising: the gateway grows new
    dispatch types faster than workers are redeployed.
    """

    def __init__(self, models: Mapping[str, Type[BaseEvent]] | None = None):
        self._models: Mapping[str, Type[BaseEvent]] = MappingProxyType(dict(models if models is not None else EVENT_MODELS))

    def __contains__(self, event_type: str) -> bool:
        return event_type in self._models

    def __len__(self) -> int:
        return len(self._models)

    @property
    def event_types(self) -> Tuple[str, ...]:
        return tuple(self._models)

    def resolve(self, event_type: str, payload: Any) -> Optional[BaseEvent]:
        model = self._models.get(event_type)
        if model is None:
            logger.debug("Received unknown event type %s", event_type)
            return None
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise EnvelopeDecodeError(
                f"error deserializing event {event_type} to {model.__name__}: {exc}",
                event_type=event_type,
            ) from exc

    def decode(self, data: bytes | str) -> Tuple[int, str, Optional[BaseEvent]]:
        """decode() + resolve() in one step."""
        sequence, event_type, payload = decode(data)
        return sequence, event_type, self.resolve(event_type, payload)


default_registry = EventRegistry()
