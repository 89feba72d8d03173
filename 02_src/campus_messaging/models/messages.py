"""Message-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .participants import UserKind


class MessageCategory(str, Enum):
    """Message categories."""

    GENERAL = "general"
    ADMINISTRATIVE = "administrative"
    ATTENDANCE_ALERT = "attendance_alert"
    SCHEDULE_CHANGE = "schedule_change"
    ANNOUNCEMENT = "announcement"
    URGENT = "urgent"


class Priority(str, Enum):
    """Message priority levels."""

    NORMAL = "normal"
    IMPORTANT = "important"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.NORMAL: 0, Priority.IMPORTANT: 1, Priority.URGENT: 2}


class DeliveryStatus(str, Enum):
    """Derived delivery status of a message (never stored)."""

    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class ReactionType(str, Enum):
    """Reactions available on a message."""

    ACKNOWLEDGE = "acknowledge"
    IMPORTANT = "important"
    AGREE = "agree"
    QUESTION = "question"
    URGENT = "urgent"


class ScanStatus(str, Enum):
    """Attachment scan outcome."""

    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


@dataclass
class UploadedFile:
    """A file submitted with a message, before it is stored."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class Attachment:
    """A stored attachment of a message."""

    id: str
    message_id: str
    original_filename: str
    filename: str  # storage-safe name
    content_type: str
    size: int
    storage_path: str
    url: str
    uploaded_by_id: str
    uploaded_by_kind: UserKind
    scan_status: ScanStatus
    created_at: datetime
    thumbnail_url: str | None = None


@dataclass
class Reaction:
    """A single user's reaction to a message."""

    message_id: str
    user_id: str
    user_kind: UserKind
    user_name: str
    type: ReactionType
    created_at: datetime


@dataclass
class ForwardedFrom:
    """Back-reference to the message a forwarded message was copied from."""

    message_id: str
    sender_name: str


@dataclass
class Message:
    """A single message in a conversation."""

    id: str
    conversation_id: str
    sender_id: str
    sender_kind: UserKind
    sender_name: str
    content: str
    category: MessageCategory
    priority: Priority
    created_at: datetime
    status: DeliveryStatus = DeliveryStatus.SENT
    attachments: list[Attachment] = field(default_factory=list)
    reactions: list[Reaction] = field(default_factory=list)
    is_pinned: bool = False
    is_forwarded: bool = False
    forwarded_from: ForwardedFrom | None = None
    reply_to_id: str | None = None
    broadcast_id: str | None = None
    is_deleted: bool = False
    delivered_at: datetime | None = None
    read_at: datetime | None = None


@dataclass
class MessageTemplate:
    """Reusable message text with ``{{variable}}`` placeholders."""

    id: str
    name: str
    content: str
    category: MessageCategory
    variables: list[str] = field(default_factory=list)
    usage_count: int = 0


@dataclass
class SearchResult:
    """A message hit from the search procedure."""

    message_id: str
    conversation_id: str
    content: str
    sender_name: str
    created_at: datetime
