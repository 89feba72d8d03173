"""EventBus implementation for in-process pub/sub."""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

from ..logging_config import get_logger
from ..models import BusMessage, Topic
from ..storage import IStorage

logger = get_logger(__name__)


TopicHandler = Callable[[BusMessage], Awaitable[None]]


class IEventBus(Protocol):
    """In-memory pub/sub for exchanging BusMessages."""

    def subscribe(self, topic: Topic, handler: TopicHandler) -> None:
        """Subscribe a handler to a topic."""
        ...

    def unsubscribe(self, topic: Topic, handler: TopicHandler) -> None:
        """Remove a previously subscribed handler."""
        ...

    async def publish(self, message: BusMessage) -> None:
        """Publish BusMessage: calls subscriber callbacks, persists to Storage."""
        ...

    async def emit(self, topic: Topic, payload: dict[str, Any], source: str) -> BusMessage:
        """Build a BusMessage for ``topic`` and publish it."""
        ...


class EventBus:
    """In-memory pub/sub event bus."""

    def __init__(self, storage: IStorage):
        self._storage = storage
        self._subscribers: dict[Topic, list[TopicHandler]] = {
            topic: [] for topic in Topic
        }

    def subscribe(self, topic: Topic, handler: TopicHandler) -> None:
        """Subscribe a handler to a topic."""
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: Topic, handler: TopicHandler) -> None:
        """Remove a previously subscribed handler."""
        handlers = self._subscribers[topic]
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, message: BusMessage) -> None:
        """Publish BusMessage: calls subscriber callbacks, persists to Storage."""
        if not message.id:
            message.id = str(uuid.uuid4())

        handlers = list(self._subscribers.get(message.topic, []))

        # Handlers run concurrently; one failing handler does not affect others
        if handlers:
            results = await asyncio.gather(
                *[handler(message) for handler in handlers],
                return_exceptions=True,
            )

            for handler, result in zip(handlers, results):
                if isinstance(result, Exception):
                    logger.error(
                        "Error in %s handler %s: %s",
                        message.topic.value,
                        getattr(handler, "__qualname__", handler),
                        result,
                    )

        await self._storage.save_bus_message(message)

    async def emit(self, topic: Topic, payload: dict[str, Any], source: str) -> BusMessage:
        """Build a BusMessage for ``topic`` and publish it."""
        message = BusMessage(
            id=str(uuid.uuid4()),
            topic=topic,
            payload=payload,
            source=source,
            timestamp=datetime.now(timezone.utc),
        )
        await self.publish(message)
        return message
