from __future__ import annotations

import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class LastEvent(BaseModel):
    type: str
    path: str
    timestamp: int

    model_config = ConfigDict(extra="ignore")


class StatusResponse(BaseModel):
    connections: int
    watching: bool
    lastEvent: Optional[LastEvent] = None
    uptime: int

    model_config = ConfigDict(extra="ignore")


class _IPCBase(BaseModel):
    id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    # Clients may send numeric ids.
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class ConnectMessage(_IPCBase):
    type: Literal["connect"] = "connect"


class DisconnectMessage(_IPCBase):
    type: Literal["disconnect"] = "disconnect"


class StatusMessage(_IPCBase):
    type: Literal["status"] = "status"


class StatusResponseMessage(_IPCBase):
    type: Literal["status_response"] = "status_response"


class ShutdownMessage(_IPCBase):
    type: Literal["shutdown"] = "shutdown"


IPCMessage = Annotated[
    Union[ConnectMessage, DisconnectMessage, StatusMessage, StatusResponseMessage, ShutdownMessage],
    Field(discriminator="type"),
]

_IPC_ADAPTER: TypeAdapter[Any] = TypeAdapter(IPCMessage)


def parse_ipc_line(line: str | bytes) -> Any:
    """Decode one framed line into a message model.

    Raises pydantic.ValidationError on invalid JSON, non-object payloads,
    unknown `type` values, or schema mismatches.
    """
    return _IPC_ADAPTER.validate_json(line)


def encode_ipc_message(msg: _IPCBase) -> bytes:
    """Frame a message as one UTF-8 JSON line; unset top-level fields are omitted."""
    doc = {k: v for k, v in msg.model_dump(mode="json").items() if v is not None}
    return (json.dumps(doc, ensure_ascii=False) + "\n").encode("utf-8")
