"""Real-time server push: connections, events, heartbeats."""

from .attendance import AttendanceBroadcaster, attendance_payload
from .broadcaster import EventBroadcaster, make_event
from .connection_store import (
    ConnectionRecord,
    IConnectionStore,
    MemoryConnectionStore,
    RedisConnectionStore,
)
from .notifications import NotificationRouter
from .reconnect import ReconnectPolicy
from .registry import ConnectionRegistry, new_connection_id
from .service import IRealtimeService, RealtimeService
from .stream import event_stream, format_event

__all__ = [
    "AttendanceBroadcaster",
    "attendance_payload",
    "EventBroadcaster",
    "make_event",
    "ConnectionRecord",
    "IConnectionStore",
    "MemoryConnectionStore",
    "RedisConnectionStore",
    "NotificationRouter",
    "ReconnectPolicy",
    "ConnectionRegistry",
    "new_connection_id",
    "IRealtimeService",
    "RealtimeService",
    "event_stream",
    "format_event",
]
