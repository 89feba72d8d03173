"""Message scheduling: persist drafts for future delivery."""

import uuid
from datetime import datetime, timezone

from ..errors import NotFoundError, ValidationError
from ..logging_config import get_logger
from ..models import (
    Actor,
    MessageCategory,
    Priority,
    ScheduledMessage,
    ScheduledStatus,
    ScheduleMessageRequest,
    UserKind,
)
from ..storage import IStorage
from .conversations import ConversationStore

logger = get_logger(__name__)


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


class MessageScheduler:
    """Stores pending messages; an external worker delivers them when due."""

    def __init__(self, storage: IStorage, conversations: ConversationStore):
        self._storage = storage
        self._conversations = conversations

    async def schedule_message(
        self, actor: Actor, request: ScheduleMessageRequest
    ) -> ScheduledMessage:
        """Validate everything first; nothing is written for a rejected request."""
        now = datetime.now(timezone.utc)
        scheduled_for = _as_utc(request.scheduled_for)
        if scheduled_for <= now:
            raise ValidationError(
                "Scheduled time must be in the future",
                details={"scheduled_for": scheduled_for.isoformat()},
            )
        if not request.content.strip():
            raise ValidationError("Message content cannot be empty")

        recipient_kind = None
        if request.conversation_id:
            await self._conversations.require_access(actor, request.conversation_id)
        elif request.recipient_id and request.recipient_kind:
            recipient_kind = UserKind(request.recipient_kind)
            await self._conversations.resolve_user(request.recipient_id, recipient_kind)
        else:
            raise ValidationError(
                "Either conversation_id or recipient_id and recipient_kind are required"
            )

        scheduled = ScheduledMessage(
            id=str(uuid.uuid4()),
            sender_id=actor.id,
            sender_kind=actor.kind,
            sender_name=actor.name,
            conversation_id=request.conversation_id,
            recipient_id=request.recipient_id,
            recipient_kind=recipient_kind,
            content=request.content,
            category=MessageCategory(request.category),
            priority=Priority(request.priority),
            scheduled_for=scheduled_for,
            status=ScheduledStatus.PENDING,
            created_at=now,
        )
        await self._storage.insert_scheduled_message(scheduled)
        logger.info(
            "Scheduled message %s for %s", scheduled.id, scheduled_for.isoformat()
        )
        return scheduled

    async def get_scheduled_messages(self, actor: Actor) -> list[ScheduledMessage]:
        """The caller's pending scheduled messages, soonest first."""
        return await self._storage.list_scheduled_messages(
            actor.id, actor.kind, ScheduledStatus.PENDING
        )

    async def cancel_scheduled_message(self, actor: Actor, scheduled_id: str) -> bool:
        """Cancel a pending message; False if it was already sent or cancelled."""
        scheduled = await self._storage.get_scheduled_message(scheduled_id)
        if (
            scheduled is None
            or scheduled.sender_id != actor.id
            or scheduled.sender_kind != actor.kind
        ):
            raise NotFoundError(
                "Scheduled message not found", details={"scheduled_id": scheduled_id}
            )
        cancelled = await self._storage.cancel_scheduled_message(
            scheduled_id, actor.id, actor.kind
        )
        if not cancelled:
            logger.info(
                "Scheduled message %s not cancelled (status %s)",
                scheduled_id,
                scheduled.status.value,
            )
        return cancelled
