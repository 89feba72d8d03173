"""Broadcast and scheduling data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .messages import MessageCategory, Priority
from .participants import UserKind


class CriteriaType(str, Enum):
    """How broadcast recipients are selected."""

    ALL_STUDENTS = "all_students"
    SPECIFIC_CLASS = "specific_class"
    ALL_TEACHERS = "all_teachers"
    SPECIFIC_DEPARTMENT = "specific_department"


@dataclass
class BroadcastCriteria:
    """Recipient selection for a broadcast."""

    type: CriteriaType
    class_name: str | None = None
    session: str | None = None
    department: str | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "class_name": self.class_name,
            "session": self.session,
            "department": self.department,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BroadcastCriteria":
        return cls(
            type=CriteriaType(data["type"]),
            class_name=data.get("class_name"),
            session=data.get("session"),
            department=data.get("department"),
        )


class RecipientStatus(str, Enum):
    """Delivery state of one broadcast recipient."""

    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class BroadcastRecipient:
    """Per-recipient delivery record of a broadcast."""

    broadcast_id: str
    user_id: str
    user_kind: UserKind
    user_name: str
    status: RecipientStatus
    message_id: str | None = None
    error: str | None = None


@dataclass
class BroadcastMessage:
    """One message fanned out to a criteria-resolved recipient set."""

    id: str
    sender_id: str
    sender_kind: UserKind
    sender_name: str
    content: str
    category: MessageCategory
    priority: Priority
    criteria: BroadcastCriteria
    recipient_count: int
    created_at: datetime
    delivered_count: int = 0
    failed_count: int = 0
    failed_recipients: list[str] = field(default_factory=list)


class ScheduledStatus(str, Enum):
    """Lifecycle of a scheduled message."""

    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"


@dataclass
class ScheduledMessage:
    """A draft persisted for delivery at a future time."""

    id: str
    sender_id: str
    sender_kind: UserKind
    sender_name: str
    conversation_id: str | None
    recipient_id: str | None
    content: str
    category: MessageCategory
    priority: Priority
    scheduled_for: datetime
    status: ScheduledStatus
    created_at: datetime
    recipient_kind: UserKind | None = None
