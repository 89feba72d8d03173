"""EventBroadcaster: push typed events to users and classes."""

import time
from datetime import datetime, timezone

from ..logging_config import get_logger
from ..models import Connection, EventType, RealtimeEvent
from .registry import ConnectionRegistry

logger = get_logger(__name__)


def make_event(event_type: EventType, data: dict, event_id: str | None = None) -> RealtimeEvent:
    event_type = EventType(event_type)
    return RealtimeEvent(
        type=event_type,
        data=data,
        timestamp=datetime.now(timezone.utc),
        id=event_id or f"{event_type.value}_{int(time.time() * 1000)}",
    )


class EventBroadcaster:
    """Fans events out to every matching open connection.

    Closed connections are skipped; the return value is the number of
    streams the event was queued on.
    """

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry

    def _push_all(self, connections: list[Connection], event: RealtimeEvent) -> int:
        return sum(1 for connection in connections if connection.push(event))

    async def send_to_user(self, user_id: str, event: RealtimeEvent) -> int:
        connections = self._registry.for_user(user_id)
        if not connections:
            logger.debug("No active connections for user %s", user_id)
            return 0
        return self._push_all(connections, event)

    async def broadcast_to_class(self, class_id: str, event: RealtimeEvent) -> int:
        connections = self._registry.for_class(class_id)
        if not connections:
            logger.debug("No active connections for class %s", class_id)
            return 0
        sent = self._push_all(connections, event)
        logger.info(
            "Broadcast %s to %d connections in class %s", event.type.value, sent, class_id
        )
        return sent

    async def send_to_all(self, event: RealtimeEvent) -> int:
        return self._push_all(self._registry.all(), event)
