"""Shared, TTL-bounded records of live connections."""

import json
import time
from dataclasses import asdict, dataclass
from typing import Callable, Protocol

from redis.asyncio import Redis

from ..logging_config import get_logger

logger = get_logger(__name__)


def connection_key(connection_id: str) -> str:
    return f"sse:connection:{connection_id}"


def user_key(user_id: str) -> str:
    return f"sse:user:{user_id}"


def class_key(class_id: str) -> str:
    return f"sse:class:{class_id}"


@dataclass
class ConnectionRecord:
    """Serializable view of a connection (epoch milliseconds)."""

    connection_id: str
    user_id: str
    class_id: str | None
    created_at: int
    last_ping: int


class IConnectionStore(Protocol):
    """Connection records shared across server processes.

    Writes are idempotent and last-write-wins; every key expires after ``ttl``
    seconds unless refreshed.
    """

    async def save(self, record: ConnectionRecord, ttl: int) -> None: ...

    async def touch(self, connection_id: str, last_ping: int, ttl: int) -> None: ...

    async def remove(self, connection_id: str) -> None: ...

    async def get(self, connection_id: str) -> ConnectionRecord | None: ...

    async def connections_for_user(self, user_id: str) -> set[str]: ...

    async def connections_for_class(self, class_id: str) -> set[str]: ...

    async def close(self) -> None: ...


class MemoryConnectionStore:
    """Single-process store with lazily applied expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._records: dict[str, tuple[ConnectionRecord, float]] = {}
        self._sets: dict[str, tuple[set[str], float]] = {}

    def _alive(self, expires_at: float) -> bool:
        return self._clock() < expires_at

    def _add_member(self, key: str, member: str, ttl: int) -> None:
        members, expires_at = self._sets.get(key, (set(), 0.0))
        if not self._alive(expires_at):
            members = set()
        members.add(member)
        self._sets[key] = (members, self._clock() + ttl)

    def _members(self, key: str) -> set[str]:
        entry = self._sets.get(key)
        if entry is None or not self._alive(entry[1]):
            self._sets.pop(key, None)
            return set()
        return set(entry[0])

    async def save(self, record: ConnectionRecord, ttl: int) -> None:
        self._records[record.connection_id] = (record, self._clock() + ttl)
        self._add_member(user_key(record.user_id), record.connection_id, ttl)
        if record.class_id:
            self._add_member(class_key(record.class_id), record.connection_id, ttl)

    async def touch(self, connection_id: str, last_ping: int, ttl: int) -> None:
        record = await self.get(connection_id)
        if record is None:
            return
        record.last_ping = last_ping
        await self.save(record, ttl)

    async def remove(self, connection_id: str) -> None:
        entry = self._records.pop(connection_id, None)
        if entry is None:
            return
        record = entry[0]
        keys = [user_key(record.user_id)]
        if record.class_id:
            keys.append(class_key(record.class_id))
        for key in keys:
            members = self._sets.get(key)
            if members:
                members[0].discard(connection_id)

    async def get(self, connection_id: str) -> ConnectionRecord | None:
        entry = self._records.get(connection_id)
        if entry is None or not self._alive(entry[1]):
            self._records.pop(connection_id, None)
            return None
        return entry[0]

    async def connections_for_user(self, user_id: str) -> set[str]:
        return self._members(user_key(user_id))

    async def connections_for_class(self, class_id: str) -> set[str]:
        return self._members(class_key(class_id))

    async def close(self) -> None:
        self._records.clear()
        self._sets.clear()


class RedisConnectionStore:
    """Connection records in Redis, visible to every server process."""

    def __init__(self, client: Redis):
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisConnectionStore":
        client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
        logger.info("Redis connection store initialized")
        return cls(client)

    async def save(self, record: ConnectionRecord, ttl: int) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(connection_key(record.connection_id), json.dumps(asdict(record)), ex=ttl)
            pipe.sadd(user_key(record.user_id), record.connection_id)
            pipe.expire(user_key(record.user_id), ttl)
            if record.class_id:
                pipe.sadd(class_key(record.class_id), record.connection_id)
                pipe.expire(class_key(record.class_id), ttl)
            await pipe.execute()

    async def touch(self, connection_id: str, last_ping: int, ttl: int) -> None:
        record = await self.get(connection_id)
        if record is None:
            return
        record.last_ping = last_ping
        await self.save(record, ttl)

    async def remove(self, connection_id: str) -> None:
        record = await self.get(connection_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            if record is not None:
                pipe.srem(user_key(record.user_id), connection_id)
                if record.class_id:
                    pipe.srem(class_key(record.class_id), connection_id)
            pipe.delete(connection_key(connection_id))
            await pipe.execute()

    async def get(self, connection_id: str) -> ConnectionRecord | None:
        raw = await self._redis.get(connection_key(connection_id))
        if raw is None:
            return None
        return ConnectionRecord(**json.loads(raw))

    async def connections_for_user(self, user_id: str) -> set[str]:
        return set(await self._redis.smembers(user_key(user_id)))

    async def connections_for_class(self, class_id: str) -> set[str]:
        return set(await self._redis.smembers(class_key(class_id)))

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Redis connection store closed")
