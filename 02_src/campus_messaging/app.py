"""Application bootstrap and lifecycle management."""

import os
from pathlib import Path
from typing import Protocol

from .blobstore import HttpBlobStore, IBlobStore, LocalBlobStore
from .config import resolve_attachments_dir, resolve_db_path
from .event_bus import EventBus, IEventBus
from .logging_config import get_logger
from .messaging import (
    AttachmentService,
    BroadcastDispatcher,
    ConversationStore,
    MessageScheduler,
    MessageStore,
    TemplateCatalog,
)
from .realtime import (
    AttendanceBroadcaster,
    ConnectionRegistry,
    EventBroadcaster,
    IConnectionStore,
    MemoryConnectionStore,
    NotificationRouter,
    RealtimeService,
    RedisConnectionStore,
)
from .retry import RetryExecutor
from .storage import IStorage, Storage
from .tracker import ITracker, Tracker

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        db_path: str | None = None,
        attachments_dir: str | None = None,
        redis_url: str | None = None,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._attachments_dir = resolve_attachments_dir(
            os.getenv("ATTACHMENTS_DIR") if attachments_dir is None else attachments_dir
        )
        self._attachments_base_url = os.getenv(
            "ATTACHMENTS_BASE_URL", "/attachments"
        )
        self._blob_store_url = os.getenv("BLOB_STORE_URL")
        self._blob_store_token = os.getenv("BLOB_STORE_TOKEN")
        self._redis_url = os.getenv("REDIS_URL") if redis_url is None else redis_url

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._event_bus: IEventBus | None = None
        self._tracker: Tracker | None = None
        self._blob_store: IBlobStore | None = None
        self._retry: RetryExecutor | None = None
        self._conversations: ConversationStore | None = None
        self._messages: MessageStore | None = None
        self._broadcasts: BroadcastDispatcher | None = None
        self._scheduler: MessageScheduler | None = None
        self._templates: TemplateCatalog | None = None
        self._realtime: RealtimeService | None = None
        self._notifications: NotificationRouter | None = None
        self._attendance: AttendanceBroadcaster | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. EventBus (depends on Storage for persistence)
        self._event_bus = EventBus(self._storage)

        # 3. Tracker (depends on EventBus + Storage)
        self._tracker = Tracker(self._event_bus, self._storage)
        await self._tracker.start()

        # 4. Retry executor, probing the database before each attempt
        self._retry = RetryExecutor(probe=self._storage.ping, tracker=self._tracker)

        # 5. Attachment blobs
        if self._blob_store_url:
            self._blob_store = HttpBlobStore(
                self._blob_store_url, token=self._blob_store_token
            )
        else:
            self._blob_store = LocalBlobStore(
                self._attachments_dir, self._attachments_base_url
            )
        attachments = AttachmentService(self._storage, self._blob_store)

        # 6. Messaging services
        self._conversations = ConversationStore(self._storage)
        self._messages = MessageStore(
            self._storage,
            self._conversations,
            attachments,
            self._retry,
            event_bus=self._event_bus,
        )
        self._broadcasts = BroadcastDispatcher(
            self._storage,
            self._conversations,
            attachments,
            event_bus=self._event_bus,
            tracker=self._tracker,
        )
        self._scheduler = MessageScheduler(self._storage, self._conversations)
        self._templates = TemplateCatalog(self._storage)
        logger.info("Messaging services initialized")

        # 7. Real-time push
        store: IConnectionStore
        if self._redis_url:
            store = RedisConnectionStore.from_url(self._redis_url)
        else:
            store = MemoryConnectionStore()
        registry = ConnectionRegistry(store)
        broadcaster = EventBroadcaster(registry)
        self._realtime = RealtimeService(registry, broadcaster)
        await self._realtime.start()

        # 8. Bus subscribers feeding the real-time layer
        self._notifications = NotificationRouter(
            self._event_bus, broadcaster, self._storage, self._tracker
        )
        await self._notifications.start()
        self._attendance = AttendanceBroadcaster(broadcaster, self._event_bus)
        await self._attendance.start()
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._attendance:
            await self._attendance.stop()
        if self._notifications:
            await self._notifications.stop()
        if self._realtime:
            await self._realtime.stop()
            await self._realtime.registry.store.close()
        if isinstance(self._blob_store, HttpBlobStore):
            await self._blob_store.aclose()
        if self._tracker:
            await self._tracker.stop()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def event_bus(self) -> IEventBus:
        if not self._event_bus:
            raise RuntimeError("Application not started")
        return self._event_bus

    @property
    def tracker(self) -> ITracker:
        if not self._tracker:
            raise RuntimeError("Application not started")
        return self._tracker

    @property
    def conversations(self) -> ConversationStore:
        if not self._conversations:
            raise RuntimeError("Application not started")
        return self._conversations

    @property
    def messages(self) -> MessageStore:
        if not self._messages:
            raise RuntimeError("Application not started")
        return self._messages

    @property
    def broadcasts(self) -> BroadcastDispatcher:
        if not self._broadcasts:
            raise RuntimeError("Application not started")
        return self._broadcasts

    @property
    def scheduler(self) -> MessageScheduler:
        if not self._scheduler:
            raise RuntimeError("Application not started")
        return self._scheduler

    @property
    def templates(self) -> TemplateCatalog:
        if not self._templates:
            raise RuntimeError("Application not started")
        return self._templates

    @property
    def realtime(self) -> RealtimeService:
        if not self._realtime:
            raise RuntimeError("Application not started")
        return self._realtime

    @property
    def attendance(self) -> AttendanceBroadcaster:
        if not self._attendance:
            raise RuntimeError("Application not started")
        return self._attendance

    @property
    def blob_store(self) -> IBlobStore:
        if not self._blob_store:
            raise RuntimeError("Application not started")
        return self._blob_store

    @property
    def local_attachments_dir(self) -> Path | None:
        """Directory of locally stored blobs, or None with a remote blob store."""
        if self._blob_store_url:
            return None
        return self._attachments_dir
