"""Conversation data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .messages import Priority
from .participants import Actor, UserKind


class ConversationFlag(str, Enum):
    """Per-participant boolean flags, named after their storage column."""

    PINNED = "is_pinned"
    STARRED = "is_starred"
    ARCHIVED = "is_archived"
    RESOLVED = "is_resolved"
    MUTED = "is_muted"


class ConversationStatus(str, Enum):
    """Status filter for the conversation list."""

    ALL = "all"
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"
    RESOLVED = "resolved"


class SortOption(str, Enum):
    """Conversation list orderings."""

    RECENT = "recent"
    UNREAD_FIRST = "unread_first"
    PRIORITY = "priority"
    ALPHABETICAL = "alphabetical"


@dataclass
class ConversationParticipant:
    """One participant of a conversation together with their own view state."""

    conversation_id: str
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

    def is_actor(self, actor: Actor) -> bool:
        return self.user_id == actor.id and self.user_kind == actor.kind


@dataclass
class Conversation:
    """A message thread between two or more participants."""

    id: str
    participants: list[ConversationParticipant]
    created_at: datetime
    updated_at: datetime
    last_message_preview: str | None = None
    last_message_at: datetime | None = None
    # Highest priority among the viewer's unread messages (list views only)
    unread_priority: Priority | None = None

    def participant(self, actor: Actor) -> ConversationParticipant | None:
        """The row describing ``actor``'s own view of this conversation."""
        for p in self.participants:
            if p.is_actor(actor):
                return p
        return None

    def others(self, actor: Actor) -> list[ConversationParticipant]:
        """Every participant except ``actor``."""
        return [p for p in self.participants if not p.is_actor(actor)]


@dataclass
class ConversationFilters:
    """Filters accepted by the conversation list."""

    user_kind: UserKind | None = None
    status: ConversationStatus = ConversationStatus.ALL
    starred: bool | None = None
    limit: int | None = None
    offset: int = 0


class ConversationAction(str, Enum):
    """Mutations a participant can apply to their own view of a conversation."""

    PIN = "pin"
    UNPIN = "unpin"
    STAR = "star"
    UNSTAR = "unstar"
    ARCHIVE = "archive"
    UNARCHIVE = "unarchive"
    RESOLVE = "resolve"
    UNRESOLVE = "unresolve"
    MUTE = "mute"
    UNMUTE = "unmute"
    READ = "read"
    UNREAD = "unread"
