"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from campus_messaging.models import Actor, DirectoryUser, UserKind  # noqa: E402

CLASS_10A = "10A - 2024"
CLASS_10B = "10B - 2024"

DIRECTORY = [
    DirectoryUser(id="s1", kind=UserKind.STUDENT, name="Alice Johnson", class_section=CLASS_10A),
    DirectoryUser(id="s2", kind=UserKind.STUDENT, name="Bob Smith", class_section=CLASS_10A),
    DirectoryUser(id="s3", kind=UserKind.STUDENT, name="Carol White", class_section=CLASS_10B),
    DirectoryUser(id="t1", kind=UserKind.TEACHER, name="Tom Brown", department="Science"),
    DirectoryUser(id="t2", kind=UserKind.TEACHER, name="Jane Doe", department="Math"),
    DirectoryUser(id="o1", kind=UserKind.OFFICE, name="Olga Admin"),
]


async def no_sleep(_delay: float) -> None:
    """Stand-in for asyncio.sleep so backoff does not slow the suite."""


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from campus_messaging.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest_asyncio.fixture
async def directory(storage):
    """Seed the user directory."""
    for user in DIRECTORY:
        await storage.save_directory_user(user)
    return {user.id: user for user in DIRECTORY}


@pytest.fixture
def teacher(directory) -> Actor:
    return directory["t1"].as_actor()


@pytest.fixture
def student(directory) -> Actor:
    return directory["s1"].as_actor()


@pytest.fixture
def other_student(directory) -> Actor:
    return directory["s2"].as_actor()


@pytest.fixture
def office(directory) -> Actor:
    return directory["o1"].as_actor()


@pytest.fixture
def event_bus(storage):
    """Create EventBus with storage."""
    from campus_messaging.event_bus import EventBus

    return EventBus(storage)


@pytest.fixture
def tracker(storage, event_bus):
    """Create Tracker with storage and event bus."""
    from campus_messaging.tracker import Tracker

    return Tracker(event_bus=event_bus, storage=storage)


@pytest.fixture
def blob_store(tmp_path):
    from campus_messaging.blobstore import LocalBlobStore

    return LocalBlobStore(tmp_path / "blobs", "http://files.test")


@pytest.fixture
def attachments(storage, blob_store):
    """AttachmentService with a zero-delay scanner."""
    from campus_messaging.messaging import AttachmentService, HeuristicScanner

    return AttachmentService(storage, blob_store, scanner=HeuristicScanner(delay=0))


@pytest.fixture
def retry(storage, tracker):
    from campus_messaging.retry import RetryExecutor

    return RetryExecutor(probe=storage.ping, tracker=tracker, sleep=no_sleep)


@pytest.fixture
def conversations(storage):
    from campus_messaging.messaging import ConversationStore

    return ConversationStore(storage)


@pytest.fixture
def messages(storage, conversations, attachments, retry, event_bus):
    from campus_messaging.messaging import MessageStore

    return MessageStore(storage, conversations, attachments, retry, event_bus=event_bus)


@pytest.fixture
def broadcasts(storage, conversations, attachments, event_bus, tracker):
    from campus_messaging.messaging import BroadcastDispatcher

    return BroadcastDispatcher(
        storage, conversations, attachments, event_bus=event_bus, tracker=tracker
    )


@pytest.fixture
def scheduler(storage, conversations):
    from campus_messaging.messaging import MessageScheduler

    return MessageScheduler(storage, conversations)


@pytest.fixture
def registry():
    from campus_messaging.realtime import ConnectionRegistry

    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry):
    from campus_messaging.realtime import EventBroadcaster

    return EventBroadcaster(registry)
