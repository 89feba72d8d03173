"""Message store: send, read, search, forward and per-message actions."""

import uuid
from datetime import datetime, timezone

import aiosqlite

from ..errors import (
    AccessDeniedError,
    MessageSendError,
    NotFoundError,
    ValidationError,
)
from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import (
    Actor,
    Attachment,
    DeliveryStatus,
    ForwardedFrom,
    ForwardMessageRequest,
    Message,
    MessageCategory,
    Priority,
    Reaction,
    ReactionType,
    SearchResult,
    SendMessageRequest,
    Topic,
    UploadedFile,
    UserKind,
)
from ..retry import RetryExecutor
from ..storage import IStorage
from .attachments import AttachmentService
from .conversations import ConversationStore

logger = get_logger(__name__)

FORWARD_SEPARATOR = "\n\n--- Forwarded Message ---\n"


def delivery_status(message: Message, actor: Actor) -> DeliveryStatus:
    """Status of ``message`` as seen by ``actor``.

    Own messages are read once another participant has read them, delivered
    once pushed to a live connection, and sent otherwise. Messages from
    others are always delivered.
    """
    if message.sender_id == actor.id and message.sender_kind == actor.kind:
        if message.read_at:
            return DeliveryStatus.READ
        if message.delivered_at:
            return DeliveryStatus.DELIVERED
        return DeliveryStatus.SENT
    return DeliveryStatus.DELIVERED


def forwarded_content(original: str, additional_context: str | None) -> str:
    if additional_context:
        return f"{additional_context}{FORWARD_SEPARATOR}{original}"
    return original


class MessageStore:
    """Append-only message log per conversation."""

    def __init__(
        self,
        storage: IStorage,
        conversations: ConversationStore,
        attachments: AttachmentService,
        retry: RetryExecutor,
        event_bus: IEventBus | None = None,
    ):
        self._storage = storage
        self._conversations = conversations
        self._attachments = attachments
        self._retry = retry
        self._event_bus = event_bus

    async def get_messages(
        self, actor: Actor, conversation_id: str, limit: int = 50, offset: int = 0
    ) -> list[Message]:
        """Non-deleted messages, oldest first, with attachments and reactions."""
        await self._conversations.require_access(actor, conversation_id)
        messages = await self._storage.get_messages(conversation_id, limit, offset)
        for message in messages:
            message.status = delivery_status(message, actor)
        return messages

    async def get_pinned_messages(self, actor: Actor, conversation_id: str) -> list[Message]:
        await self._conversations.require_access(actor, conversation_id)
        messages = await self._storage.get_pinned_messages(conversation_id)
        for message in messages:
            message.status = delivery_status(message, actor)
        return messages

    async def get_accessible_message(self, actor: Actor, message_id: str) -> Message:
        """Load a message the caller can see (NotFound, then AccessDenied)."""
        message = await self._storage.get_message(message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("Message not found", details={"message_id": message_id})
        await self._conversations.require_access(actor, message.conversation_id)
        message.status = delivery_status(message, actor)
        return message

    async def _target_conversation(self, actor: Actor, request: SendMessageRequest) -> str:
        if request.conversation_id:
            await self._conversations.require_access(actor, request.conversation_id)
            return request.conversation_id
        if request.recipient_id and request.recipient_kind:
            return await self._conversations.create_conversation(
                actor, request.recipient_id, UserKind(request.recipient_kind)
            )
        raise ValidationError(
            "Either conversation_id or recipient_id and recipient_kind are required"
        )

    async def _insert(self, message: Message, action: str) -> None:
        try:
            await self._storage.insert_message(message)
        except aiosqlite.Error as e:
            logger.error("Failed to %s %s: %s", action, message.id, e)
            raise MessageSendError(
                f"Failed to {action}", details={"message_id": message.id}
            ) from e

    async def send_message(self, actor: Actor, request: SendMessageRequest) -> Message:
        """Send a message, creating the conversation on first contact.

        Attachments are validated before anything is written. Only the
        message insert is retried; once it is stored each file is uploaded
        on its own and a failed upload only drops that file.
        """
        if not request.content.strip() and not request.attachments:
            raise ValidationError("Message content cannot be empty")
        self._attachments.validator.validate_all(request.attachments)

        message_id = str(uuid.uuid4())

        async def send() -> Message:
            # An attempt cancelled after its commit must not insert a second copy
            existing = await self._storage.get_message(message_id)
            if existing is not None:
                return existing

            conversation_id = await self._target_conversation(actor, request)

            if request.reply_to_id:
                replied = await self._storage.get_message(request.reply_to_id)
                if replied is None or replied.conversation_id != conversation_id:
                    raise ValidationError(
                        "Reply target is not part of this conversation",
                        details={"reply_to_id": request.reply_to_id},
                    )

            message = Message(
                id=message_id,
                conversation_id=conversation_id,
                sender_id=actor.id,
                sender_kind=actor.kind,
                sender_name=actor.name,
                content=request.content,
                category=MessageCategory(request.category),
                priority=Priority(request.priority),
                created_at=datetime.now(timezone.utc),
                reply_to_id=request.reply_to_id,
            )
            await self._insert(message, "send message")
            return message

        message = await self._retry.execute(send, "send message")
        message.attachments = await self._attachments.upload_many(
            actor, message.id, request.attachments
        )
        logger.info(
            "Message %s sent to conversation %s by %s:%s",
            message.id,
            message.conversation_id,
            actor.kind.value,
            actor.id,
        )
        await self._publish_sent(message)
        return message

    async def forward_message(self, actor: Actor, request: ForwardMessageRequest) -> Message:
        """Copy a visible message into the conversation with a new recipient."""
        original = await self.get_accessible_message(actor, request.message_id)
        conversation_id = await self._conversations.create_conversation(
            actor, request.recipient_id, UserKind(request.recipient_kind)
        )

        message = Message(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            sender_id=actor.id,
            sender_kind=actor.kind,
            sender_name=actor.name,
            content=forwarded_content(original.content, request.additional_context),
            category=original.category,
            priority=original.priority,
            created_at=datetime.now(timezone.utc),
            is_forwarded=True,
            forwarded_from=ForwardedFrom(
                message_id=original.id, sender_name=original.sender_name
            ),
        )
        await self._insert(message, "forward message")
        await self._publish_sent(message)
        return message

    async def delete_message(self, actor: Actor, message_id: str) -> None:
        """Soft-delete; only the sender may delete a message."""
        message = await self.get_accessible_message(actor, message_id)
        if message.sender_id != actor.id or message.sender_kind != actor.kind:
            raise AccessDeniedError(
                "You can only delete your own messages",
                details={"message_id": message_id},
            )
        await self._storage.soft_delete_message(message_id, datetime.now(timezone.utc))

    async def search_messages(
        self,
        actor: Actor,
        query: str,
        conversation_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SearchResult]:
        """Full-text search over conversations the caller takes part in."""
        if conversation_id:
            await self._conversations.require_access(actor, conversation_id)
        return await self._storage.search_messages(
            actor.id, actor.kind, query, limit, offset, conversation_id=conversation_id
        )

    async def pin_message(self, actor: Actor, message_id: str) -> bool:
        message = await self.get_accessible_message(actor, message_id)
        return await self._storage.pin_message(
            message_id,
            message.conversation_id,
            actor.id,
            actor.kind,
            datetime.now(timezone.utc),
        )

    async def unpin_message(self, actor: Actor, message_id: str) -> bool:
        await self.get_accessible_message(actor, message_id)
        return await self._storage.unpin_message(message_id)

    async def add_reaction(
        self, actor: Actor, message_id: str, reaction_type: ReactionType
    ) -> bool:
        """Add a reaction; adding the same one twice is a no-op returning False."""
        await self.get_accessible_message(actor, message_id)
        return await self._storage.add_reaction(
            Reaction(
                message_id=message_id,
                user_id=actor.id,
                user_kind=actor.kind,
                user_name=actor.name,
                type=ReactionType(reaction_type),
                created_at=datetime.now(timezone.utc),
            )
        )

    async def remove_reaction(
        self, actor: Actor, message_id: str, reaction_type: ReactionType
    ) -> bool:
        await self.get_accessible_message(actor, message_id)
        return await self._storage.remove_reaction(
            message_id, actor.id, actor.kind, ReactionType(reaction_type)
        )

    async def upload_attachment(
        self, actor: Actor, message_id: str, file: UploadedFile
    ) -> Attachment:
        message = await self.get_accessible_message(actor, message_id)
        return await self._attachments.upload(actor, message.id, file)

    async def download_attachment(
        self, actor: Actor, attachment_id: str
    ) -> tuple[Attachment, bytes]:
        attachment = await self._storage.get_attachment(attachment_id)
        if attachment is None:
            raise NotFoundError(
                "Attachment not found", details={"attachment_id": attachment_id}
            )
        message = await self._storage.get_message(attachment.message_id)
        if message is None:
            raise NotFoundError(
                "Attachment not found", details={"attachment_id": attachment_id}
            )
        await self._conversations.require_access(actor, message.conversation_id)

        data = await self._retry.execute(
            lambda: self._attachments.read(attachment), "download attachment"
        )
        return attachment, data

    async def _publish_sent(self, message: Message) -> None:
        if not self._event_bus:
            return
        conversation = await self._storage.get_conversation(message.conversation_id)
        recipients = [
            {"user_id": p.user_id, "user_kind": p.user_kind.value}
            for p in (conversation.participants if conversation else [])
            if not (p.user_id == message.sender_id and p.user_kind == message.sender_kind)
        ]
        await self._event_bus.emit(
            Topic.MESSAGE_SENT,
            {
                "message_id": message.id,
                "conversation_id": message.conversation_id,
                "sender_id": message.sender_id,
                "sender_kind": message.sender_kind.value,
                "sender_name": message.sender_name,
                "preview": message.content[:100],
                "category": message.category.value,
                "priority": message.priority.value,
                "broadcast_id": message.broadcast_id,
                "recipients": recipients,
            },
            source="message_store",
        )
