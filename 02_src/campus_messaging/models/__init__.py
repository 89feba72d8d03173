"""Core data models for campus messaging."""

from .broadcasts import (
    BroadcastCriteria,
    BroadcastMessage,
    BroadcastRecipient,
    CriteriaType,
    RecipientStatus,
    ScheduledMessage,
    ScheduledStatus,
)
from .bus import BusMessage, Topic
from .conversations import (
    Conversation,
    ConversationAction,
    ConversationFilters,
    ConversationFlag,
    ConversationParticipant,
    ConversationStatus,
    SortOption,
)
from .messages import (
    Attachment,
    DeliveryStatus,
    ForwardedFrom,
    Message,
    MessageCategory,
    MessageTemplate,
    Priority,
    Reaction,
    ReactionType,
    ScanStatus,
    SearchResult,
    UploadedFile,
)
from .participants import Actor, DirectoryUser, UserKind, directory_table
from .realtime import (
    AttendanceMark,
    AttendanceStatus,
    Connection,
    EventType,
    RealtimeEvent,
)
from .requests import (
    BroadcastRequest,
    ForwardMessageRequest,
    ScheduleMessageRequest,
    SendMessageRequest,
)
from .tracing import TraceEvent

__all__ = [
    # Identity
    "Actor",
    "DirectoryUser",
    "UserKind",
    "directory_table",
    # Messages
    "Attachment",
    "DeliveryStatus",
    "ForwardedFrom",
    "Message",
    "MessageCategory",
    "MessageTemplate",
    "Priority",
    "Reaction",
    "ReactionType",
    "ScanStatus",
    "SearchResult",
    "UploadedFile",
    # Conversations
    "Conversation",
    "ConversationAction",
    "ConversationFilters",
    "ConversationFlag",
    "ConversationParticipant",
    "ConversationStatus",
    "SortOption",
    # Broadcasts / scheduling
    "BroadcastCriteria",
    "BroadcastMessage",
    "BroadcastRecipient",
    "CriteriaType",
    "RecipientStatus",
    "ScheduledMessage",
    "ScheduledStatus",
    # Requests
    "BroadcastRequest",
    "ForwardMessageRequest",
    "ScheduleMessageRequest",
    "SendMessageRequest",
    # Real-time
    "AttendanceMark",
    "AttendanceStatus",
    "Connection",
    "EventType",
    "RealtimeEvent",
    # Bus / tracing
    "BusMessage",
    "Topic",
    "TraceEvent",
]
