"""Conversation store: lookup-or-create, listing and per-participant state."""

import uuid
from datetime import datetime, timezone

from ..errors import AccessDeniedError, NotFoundError, ValidationError
from ..logging_config import get_logger
from ..models import (
    Actor,
    Conversation,
    ConversationAction,
    ConversationFilters,
    ConversationFlag,
    ConversationParticipant,
    ConversationStatus,
    DirectoryUser,
    SortOption,
    UserKind,
)
from ..storage import IStorage

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

_FLAG_ACTIONS: dict[ConversationAction, tuple[ConversationFlag, bool]] = {
    ConversationAction.PIN: (ConversationFlag.PINNED, True),
    ConversationAction.UNPIN: (ConversationFlag.PINNED, False),
    ConversationAction.STAR: (ConversationFlag.STARRED, True),
    ConversationAction.UNSTAR: (ConversationFlag.STARRED, False),
    ConversationAction.ARCHIVE: (ConversationFlag.ARCHIVED, True),
    ConversationAction.UNARCHIVE: (ConversationFlag.ARCHIVED, False),
    ConversationAction.RESOLVE: (ConversationFlag.RESOLVED, True),
    ConversationAction.UNRESOLVE: (ConversationFlag.RESOLVED, False),
    ConversationAction.MUTE: (ConversationFlag.MUTED, True),
    ConversationAction.UNMUTE: (ConversationFlag.MUTED, False),
}


def pair_key(a_id: str, a_kind: UserKind, b_id: str, b_kind: UserKind) -> str:
    """Order-independent key of a direct conversation between two users."""
    first, second = sorted([f"{a_kind.value}:{a_id}", f"{b_kind.value}:{b_id}"])
    return f"{first}|{second}"


def _last_activity(conversation: Conversation) -> datetime:
    return conversation.last_message_at or conversation.created_at or _EPOCH


def _counterpart_name(conversation: Conversation, actor: Actor) -> str:
    others = conversation.others(actor)
    return others[0].user_name.casefold() if others else ""


def _matches(conversation: Conversation, actor: Actor, filters: ConversationFilters) -> bool:
    me = conversation.participant(actor)
    if me is None:
        return False

    if filters.user_kind and not any(
        p.user_kind == filters.user_kind for p in conversation.others(actor)
    ):
        return False

    status = filters.status
    if status == ConversationStatus.UNREAD and me.unread_count <= 0:
        return False
    if status == ConversationStatus.READ and me.unread_count != 0:
        return False
    if status == ConversationStatus.ARCHIVED and not me.is_archived:
        return False
    if status == ConversationStatus.RESOLVED and not me.is_resolved:
        return False

    if filters.starred and not me.is_starred:
        return False
    return True


def sort_conversations(
    conversations: list[Conversation], actor: Actor, sort_by: SortOption
) -> list[Conversation]:
    """Order a conversation list; ties always fall back to most recent first."""
    by_recent = sorted(conversations, key=_last_activity, reverse=True)

    if sort_by == SortOption.UNREAD_FIRST:
        return sorted(
            by_recent,
            key=lambda c: c.participant(actor).unread_count,
            reverse=True,
        )
    if sort_by == SortOption.PRIORITY:
        return sorted(
            by_recent,
            key=lambda c: c.unread_priority.rank if c.unread_priority else -1,
            reverse=True,
        )
    if sort_by == SortOption.ALPHABETICAL:
        return sorted(by_recent, key=lambda c: _counterpart_name(c, actor))
    return by_recent


class ConversationStore:
    """Conversations and each participant's own view of them."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def list_conversations(
        self,
        actor: Actor,
        filters: ConversationFilters | None = None,
        sort_by: SortOption = SortOption.RECENT,
    ) -> list[Conversation]:
        filters = filters or ConversationFilters()
        conversations = await self._storage.list_conversations_for(actor.id, actor.kind)
        matching = [c for c in conversations if _matches(c, actor, filters)]
        ordered = sort_conversations(matching, actor, SortOption(sort_by))

        if filters.limit is None:
            return ordered[filters.offset :]
        return ordered[filters.offset : filters.offset + filters.limit]

    async def get_conversation(self, actor: Actor, conversation_id: str) -> Conversation:
        """Fetch one conversation; NotFoundError unless ``actor`` takes part in it."""
        conversation = await self._storage.get_conversation(conversation_id)
        if conversation is None or conversation.participant(actor) is None:
            raise NotFoundError(
                "Conversation not found", details={"conversation_id": conversation_id}
            )
        return conversation

    async def require_access(
        self, actor: Actor, conversation_id: str
    ) -> ConversationParticipant:
        participant = await self._storage.get_participant(
            conversation_id, actor.id, actor.kind
        )
        if participant is None:
            raise AccessDeniedError(
                "You do not have access to this conversation",
                details={"conversation_id": conversation_id},
            )
        return participant

    async def resolve_user(self, user_id: str, kind: UserKind) -> DirectoryUser:
        user = await self._storage.get_directory_user(user_id, UserKind(kind))
        if user is None:
            raise NotFoundError(
                "User not found", details={"user_id": user_id, "user_kind": kind.value}
            )
        return user

    async def create_conversation(
        self, actor: Actor, recipient_id: str, recipient_kind: UserKind
    ) -> str:
        """Return the id of the conversation between ``actor`` and the recipient.

        Idempotent: an existing conversation is reused, otherwise one is
        created with both participants.
        """
        recipient = await self.resolve_user(recipient_id, recipient_kind)
        return await self.get_or_create(actor, recipient)

    async def get_or_create(self, actor: Actor, recipient: DirectoryUser) -> str:
        if recipient.id == actor.id and recipient.kind == actor.kind:
            raise ValidationError("Cannot start a conversation with yourself")

        existing = await self._storage.find_conversation_between(
            actor.id, actor.kind, recipient.id, recipient.kind
        )
        if existing:
            return existing

        key = pair_key(actor.id, actor.kind, recipient.id, recipient.kind)
        conversation_id = str(uuid.uuid4())
        participants = [
            ConversationParticipant(
                conversation_id=conversation_id,
                user_id=actor.id,
                user_kind=actor.kind,
                user_name=actor.name,
                user_avatar=actor.avatar,
            ),
            ConversationParticipant(
                conversation_id=conversation_id,
                user_id=recipient.id,
                user_kind=recipient.kind,
                user_name=recipient.name,
                user_avatar=recipient.avatar,
            ),
        ]
        created = await self._storage.insert_conversation(
            conversation_id, key, participants, datetime.now(timezone.utc)
        )
        if created:
            logger.info(
                "Created conversation %s between %s:%s and %s:%s",
                conversation_id,
                actor.kind.value,
                actor.id,
                recipient.kind.value,
                recipient.id,
            )
            return conversation_id

        # Lost a race with a concurrent creator for the same pair
        winner = await self._storage.get_conversation_id_by_pair_key(key)
        if winner is None:
            raise NotFoundError("Conversation not found", details={"pair_key": key})
        return winner

    async def apply_action(
        self, actor: Actor, conversation_id: str, action: ConversationAction
    ) -> None:
        """Apply one participant-scoped action (flag toggle, read or unread)."""
        action = ConversationAction(action)
        if action == ConversationAction.READ:
            await self.mark_read(actor, conversation_id)
        elif action == ConversationAction.UNREAD:
            await self.mark_unread(actor, conversation_id)
        else:
            flag, value = _FLAG_ACTIONS[action]
            await self.set_flag(actor, conversation_id, flag, value)

    async def set_flag(
        self, actor: Actor, conversation_id: str, flag: ConversationFlag, value: bool
    ) -> None:
        await self.require_access(actor, conversation_id)
        await self._storage.set_participant_flag(
            conversation_id, actor.id, actor.kind, flag, value
        )

    async def mark_read(self, actor: Actor, conversation_id: str) -> int:
        """Add read receipts for others' messages and zero the unread count."""
        await self.require_access(actor, conversation_id)
        return await self._storage.mark_conversation_read(
            conversation_id, actor.id, actor.kind, datetime.now(timezone.utc)
        )

    async def mark_unread(self, actor: Actor, conversation_id: str) -> None:
        await self.require_access(actor, conversation_id)
        await self._storage.set_unread_count(conversation_id, actor.id, actor.kind, 1)
