"""Request and response models of the HTTP API."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ..models import (
    AttendanceStatus,
    CriteriaType,
    DeliveryStatus,
    MessageCategory,
    Priority,
    ReactionType,
    RecipientStatus,
    ScanStatus,
    ScheduledStatus,
    UserKind,
)


class CreateConversationRequest(BaseModel):
    """Request model for starting (or reopening) a conversation."""

    recipient_id: str
    recipient_type: UserKind


class CreateConversationResponse(BaseModel):
    conversation_id: str


class ParticipantResponse(BaseModel):
    user_id: str
    user_kind: UserKind
    user_name: str
    user_avatar: str | None = None
    unread_count: int = 0
    is_pinned: bool = False
    is_starred: bool = False
    is_archived: bool = False
    is_resolved: bool = False
    is_muted: bool = False
    last_read_at: datetime | None = None


class ConversationResponse(BaseModel):
    """Response model for a conversation."""

    id: str
    participants: list[ParticipantResponse]
    created_at: datetime
    updated_at: datetime
    last_message_preview: str | None = None
    last_message_at: datetime | None = None
    unread_priority: Priority | None = None


class AttachmentResponse(BaseModel):
    id: str
    message_id: str
    original_filename: str
    filename: str
    content_type: str
    size: int
    url: str
    thumbnail_url: str | None = None
    scan_status: ScanStatus
    created_at: datetime


class ReactionResponse(BaseModel):
    user_id: str
    user_kind: UserKind
    user_name: str
    type: ReactionType
    created_at: datetime


class ForwardedFromResponse(BaseModel):
    message_id: str
    sender_name: str


class MessageResponse(BaseModel):
    """Response model for a message."""

    id: str
    conversation_id: str
    sender_id: str
    sender_kind: UserKind
    sender_name: str
    content: str
    category: MessageCategory
    priority: Priority
    created_at: datetime
    status: DeliveryStatus
    attachments: list[AttachmentResponse] = Field(default_factory=list)
    reactions: list[ReactionResponse] = Field(default_factory=list)
    is_pinned: bool = False
    is_forwarded: bool = False
    forwarded_from: ForwardedFromResponse | None = None
    reply_to_id: str | None = None
    broadcast_id: str | None = None
    delivered_at: datetime | None = None
    read_at: datetime | None = None


class ForwardMessageRequest(BaseModel):
    recipient_id: str
    recipient_type: UserKind
    additional_context: str | None = None


class SearchResultResponse(BaseModel):
    message_id: str
    conversation_id: str
    content: str
    sender_name: str
    created_at: datetime


class ChangedResponse(BaseModel):
    """Outcome of an idempotent toggle (pin, reaction, cancel)."""

    changed: bool


class CriteriaResponse(BaseModel):
    type: CriteriaType
    class_name: str | None = None
    session: str | None = None
    department: str | None = None


class BroadcastResponse(BaseModel):
    """Response model for a broadcast."""

    id: str
    sender_id: str
    sender_kind: UserKind
    sender_name: str
    content: str
    category: MessageCategory
    priority: Priority
    criteria: CriteriaResponse
    recipient_count: int
    delivered_count: int
    failed_count: int
    failed_recipients: list[str]
    created_at: datetime


class BroadcastRecipientResponse(BaseModel):
    user_id: str
    user_kind: UserKind
    user_name: str
    status: RecipientStatus
    message_id: str | None = None
    error: str | None = None


class ScheduleMessageRequest(BaseModel):
    """Request model for scheduling a message."""

    content: str
    scheduled_for: datetime
    conversation_id: str | None = None
    recipient_id: str | None = None
    recipient_type: UserKind | None = None
    category: MessageCategory = MessageCategory.GENERAL
    priority: Priority = Priority.NORMAL


class ScheduledMessageResponse(BaseModel):
    id: str
    conversation_id: str | None = None
    recipient_id: str | None = None
    recipient_kind: UserKind | None = None
    content: str
    category: MessageCategory
    priority: Priority
    scheduled_for: datetime
    status: ScheduledStatus
    created_at: datetime


class TemplateResponse(BaseModel):
    id: str
    name: str
    content: str
    category: MessageCategory
    variables: list[str]
    usage_count: int = 0


class AttendanceMarkRequest(BaseModel):
    student_id: str
    status: AttendanceStatus
    period: int | None = None
    subject: str | None = None


class AttendanceRequest(BaseModel):
    """Attendance marked for a class on one date."""

    class_id: str
    date: str
    marks: list[AttendanceMarkRequest]


class TraceEventResponse(BaseModel):
    """Response model for trace event."""

    id: str
    event_type: str
    actor: str
    data: dict[str, Any]
    timestamp: datetime
