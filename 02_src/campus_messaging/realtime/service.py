"""RealtimeService: connection lifecycle plus heartbeat and cleanup loops."""

import asyncio
from datetime import datetime, timezone
from typing import Protocol

from ..config import CLEANUP_INTERVAL, HEARTBEAT_INTERVAL, STALE_CONNECTION_TIMEOUT
from ..logging_config import get_logger
from ..models import Connection, EventType
from .broadcaster import EventBroadcaster, make_event
from .registry import ConnectionRegistry

logger = get_logger(__name__)


class IRealtimeService(Protocol):
    """Server-push connection lifecycle."""

    async def connect(self, user_id: str, class_id: str | None = None) -> Connection:
        """Register a stream and queue the initial ping."""
        ...

    async def send_heartbeat(self) -> int:
        """Ping every open connection."""
        ...

    async def cleanup_stale_connections(self, now: datetime | None = None) -> int:
        """Close connections that missed their heartbeat window."""
        ...


class RealtimeService:
    """Owns the periodic heartbeat and stale-connection sweep."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: EventBroadcaster,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        cleanup_interval: float = CLEANUP_INTERVAL,
        stale_timeout: float = STALE_CONNECTION_TIMEOUT,
    ):
        self._registry = registry
        self._broadcaster = broadcaster
        self._heartbeat_interval = heartbeat_interval
        self._cleanup_interval = cleanup_interval
        self._stale_timeout = stale_timeout
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def broadcaster(self) -> EventBroadcaster:
        return self._broadcaster

    async def start(self) -> None:
        logger.info("Starting RealtimeService")
        self._running = True
        self._tasks = [
            asyncio.create_task(self._heartbeat_loop()),
            asyncio.create_task(self._cleanup_loop()),
        ]

    async def stop(self) -> None:
        """Cancel the loops and close every open stream."""
        logger.info("Stopping RealtimeService")
        self._running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        closed = await self._registry.close_all()
        if closed:
            logger.info("Closed %d connections on shutdown", closed)

    async def connect(self, user_id: str, class_id: str | None = None) -> Connection:
        """Register a stream and queue the initial ping."""
        connection = await self._registry.register(user_id, class_id)
        connection.push(
            make_event(
                EventType.PING,
                {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "connectionId": connection.id,
                },
            )
        )
        return connection

    async def send_heartbeat(self) -> int:
        """Ping every open connection."""
        event = make_event(
            EventType.PING, {"timestamp": datetime.now(timezone.utc).isoformat()}
        )
        return await self._broadcaster.send_to_all(event)

    async def cleanup_stale_connections(self, now: datetime | None = None) -> int:
        return await self._registry.cleanup_stale(now=now, timeout=self._stale_timeout)

    async def _heartbeat_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._heartbeat_interval)
                sent = await self.send_heartbeat()
                logger.debug("Heartbeat sent to %d connections", sent)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Heartbeat error: {e}", exc_info=True)

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._cleanup_interval)
                await self.cleanup_stale_connections()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Connection cleanup error: {e}", exc_info=True)
