from __future__ import annotations

from .event import WatcherEvent, WatcherEventType
from .ipc import (
    ConnectMessage,
    DisconnectMessage,
    IPCMessage,
    LastEvent,
    ShutdownMessage,
    StatusMessage,
    StatusResponse,
    StatusResponseMessage,
    encode_ipc_message,
    parse_ipc_line,
)

__all__ = [
    "ConnectMessage",
    "DisconnectMessage",
    "IPCMessage",
    "LastEvent",
    "ShutdownMessage",
    "StatusMessage",
    "StatusResponse",
    "StatusResponseMessage",
    "WatcherEvent",
    "WatcherEventType",
    "encode_ipc_message",
    "parse_ipc_line",
]
