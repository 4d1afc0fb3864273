from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


DISPATCH_OPCODE = 0


class GatewayPacket(BaseModel):
    """Wire envelope pushed through the topic queues.

    Mirrors the gateway dispatch packet so workers can read it with the same
    tooling they use on raw gateway traffic:

        {"op": 0, "s": <shard index>, "t": "MESSAGE_CREATE", "d": {...}}

    ``s`` is provenance metadata only; consumers must not treat it as a
    contiguous or global sequence.
    """

    model_config = ConfigDict(populate_by_name=True)

    opcode: int = Field(DISPATCH_OPCODE, alias="op")
    sequence: int = Field(..., alias="s")
    event_type: str = Field(..., alias="t", min_length=1)
    payload: Any = Field(None, alias="d")
