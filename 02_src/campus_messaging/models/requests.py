"""Inputs of the messaging operations."""

from dataclasses import dataclass, field
from datetime import datetime

from .broadcasts import BroadcastCriteria
from .messages import MessageCategory, Priority, UploadedFile
from .participants import UserKind


@dataclass
class SendMessageRequest:
    """A new message, addressed by conversation or by recipient."""

    content: str
    conversation_id: str | None = None
    recipient_id: str | None = None
    recipient_kind: UserKind | None = None
    category: MessageCategory = MessageCategory.GENERAL
    priority: Priority = Priority.NORMAL
    reply_to_id: str | None = None
    attachments: list[UploadedFile] = field(default_factory=list)


@dataclass
class ForwardMessageRequest:
    message_id: str
    recipient_id: str
    recipient_kind: UserKind
    additional_context: str | None = None


@dataclass
class BroadcastRequest:
    content: str
    criteria: BroadcastCriteria
    category: MessageCategory = MessageCategory.ANNOUNCEMENT
    priority: Priority = Priority.NORMAL
    attachments: list[UploadedFile] = field(default_factory=list)


@dataclass
class ScheduleMessageRequest:
    """A draft to be delivered at ``scheduled_for``."""

    content: str
    scheduled_for: datetime
    conversation_id: str | None = None
    recipient_id: str | None = None
    recipient_kind: UserKind | None = None
    category: MessageCategory = MessageCategory.GENERAL
    priority: Priority = Priority.NORMAL
