"""Server-sent event framing and the per-connection stream generator."""

import json
from typing import AsyncGenerator

from ..config import SSE_CLIENT_RETRY_MS
from ..logging_config import get_logger
from ..models import Connection, RealtimeEvent
from .registry import ConnectionRegistry

logger = get_logger(__name__)


def format_event(event: RealtimeEvent) -> dict:
    """Frame fields for sse-starlette: id, event, data (JSON), retry."""
    timestamp_ms = int(event.timestamp.timestamp() * 1000)
    return {
        "id": event.id or f"{event.type.value}_{timestamp_ms}",
        "event": event.type.value,
        "data": json.dumps(event.data, default=str),
        "retry": SSE_CLIENT_RETRY_MS,
    }


async def event_stream(
    registry: ConnectionRegistry, connection: Connection
) -> AsyncGenerator[dict, None]:
    """Yield queued events until the connection is closed.

    Each event handed to the transport counts as a heartbeat. The connection
    is always unregistered on exit, including client disconnects.
    """
    try:
        while True:
            event = await connection.queue.get()
            if event is None:
                break
            yield format_event(event)
            await registry.heartbeat(connection.id)
    finally:
        logger.info("Stream ended for connection %s", connection.id)
        await registry.close(connection.id)
