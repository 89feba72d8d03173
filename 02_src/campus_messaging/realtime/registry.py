"""ConnectionRegistry: live server-push connections per user and per class."""

import random
import string
import time
from datetime import datetime, timezone

from ..config import CONNECTION_RECORD_TTL, STALE_CONNECTION_TIMEOUT
from ..logging_config import get_logger, log_context
from ..models import Connection
from .connection_store import ConnectionRecord, IConnectionStore, MemoryConnectionStore

logger = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_connection_id() -> str:
    """``sse_<epoch ms>_<9 random base-36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"sse_{int(time.time() * 1000)}_{suffix}"


def _epoch_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


class ConnectionRegistry:
    """Tracks open streams in-process and mirrors them to a shared store.

    Only the in-process map can push events; the store exists so other
    processes can see who is connected. Store failures are logged and never
    break a stream.
    """

    def __init__(
        self,
        store: IConnectionStore | None = None,
        record_ttl: int = CONNECTION_RECORD_TTL,
    ):
        self._store = store or MemoryConnectionStore()
        self._record_ttl = record_ttl
        self._connections: dict[str, Connection] = {}

    @property
    def store(self) -> IConnectionStore:
        return self._store

    async def register(self, user_id: str, class_id: str | None = None) -> Connection:
        now = datetime.now(timezone.utc)
        connection = Connection(
            id=new_connection_id(),
            user_id=user_id,
            class_id=class_id,
            created_at=now,
            last_heartbeat=now,
        )
        self._connections[connection.id] = connection

        try:
            await self._store.save(
                ConnectionRecord(
                    connection_id=connection.id,
                    user_id=user_id,
                    class_id=class_id,
                    created_at=_epoch_ms(now),
                    last_ping=_epoch_ms(now),
                ),
                self._record_ttl,
            )
        except Exception as e:
            logger.warning("Failed to record connection %s: %s", connection.id, e)

        logger.info(
            "Connection %s established for user %s (class %s)",
            connection.id,
            user_id,
            class_id,
            extra=log_context(
                connection_id=connection.id, user_id=user_id, class_id=class_id
            ),
        )
        return connection

    async def heartbeat(self, connection_id: str, now: datetime | None = None) -> bool:
        """Refresh the heartbeat timestamp and the shared record's TTL."""
        connection = self._connections.get(connection_id)
        if connection is None or connection.closed:
            return False
        connection.last_heartbeat = now or datetime.now(timezone.utc)
        try:
            await self._store.touch(
                connection_id, _epoch_ms(connection.last_heartbeat), self._record_ttl
            )
        except Exception as e:
            logger.warning("Failed to refresh connection %s: %s", connection_id, e)
        return True

    async def close(self, connection_id: str) -> None:
        """Close and forget a connection; closing twice is harmless."""
        connection = self._connections.pop(connection_id, None)
        if connection is not None:
            connection.close()
            logger.info(
                "Connection %s closed for user %s",
                connection_id,
                connection.user_id,
                extra=log_context(
                    connection_id=connection_id, user_id=connection.user_id
                ),
            )
        try:
            await self._store.remove(connection_id)
        except Exception as e:
            logger.warning("Failed to remove connection record %s: %s", connection_id, e)

    async def close_all(self) -> int:
        ids = list(self._connections)
        for connection_id in ids:
            await self.close(connection_id)
        return len(ids)

    async def cleanup_stale(
        self,
        now: datetime | None = None,
        timeout: float = STALE_CONNECTION_TIMEOUT,
    ) -> int:
        """Evict connections whose last heartbeat is older than ``timeout`` seconds."""
        now = now or datetime.now(timezone.utc)
        stale = [
            c.id
            for c in self._connections.values()
            if (now - c.last_heartbeat).total_seconds() > timeout
        ]
        for connection_id in stale:
            await self.close(connection_id)
        if stale:
            logger.info(
                "Cleaned up %d stale connections",
                len(stale),
                extra=log_context(connection_ids=stale, timeout=timeout),
            )
        return len(stale)

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def all(self) -> list[Connection]:
        return list(self._connections.values())

    def for_user(self, user_id: str) -> list[Connection]:
        return [c for c in self._connections.values() if c.user_id == user_id]

    def for_class(self, class_id: str) -> list[Connection]:
        return [c for c in self._connections.values() if c.class_id == class_id]

    def __len__(self) -> int:
        return len(self._connections)

    async def is_online(self, user_id: str) -> bool:
        """Whether any process holds a live connection for ``user_id``."""
        if self.for_user(user_id):
            return True
        return bool(await self._store.connections_for_user(user_id))
