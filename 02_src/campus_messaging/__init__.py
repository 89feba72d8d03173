"""Campus messaging and real-time notification service."""

from .app import Application, IApplication
from .errors import (
    AccessDeniedError,
    FileUploadError,
    MessageSendError,
    MessagingError,
    NetworkError,
    NoRecipientsError,
    NotFoundError,
    ValidationError,
)
from .event_bus import EventBus, IEventBus
from .storage import IStorage, Storage
from .tracker import ITracker, Tracker

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Errors
    "MessagingError",
    "AccessDeniedError",
    "ValidationError",
    "FileUploadError",
    "NoRecipientsError",
    "NetworkError",
    "NotFoundError",
    "MessageSendError",
    # Components
    "IStorage",
    "Storage",
    "IEventBus",
    "EventBus",
    "ITracker",
    "Tracker",
]
