"""Broadcast dispatcher: one message fanned out to a resolved recipient set."""

import uuid
from datetime import datetime, timezone

from ..errors import AccessDeniedError, NoRecipientsError, NotFoundError, ValidationError
from ..event_bus import IEventBus
from ..logging_config import get_logger, log_context
from ..models import (
    Actor,
    BroadcastCriteria,
    BroadcastMessage,
    BroadcastRecipient,
    BroadcastRequest,
    CriteriaType,
    DirectoryUser,
    Message,
    RecipientStatus,
    Topic,
    UserKind,
)
from ..storage import IStorage
from ..tracker import ITracker
from .attachments import AttachmentService, StoredFile
from .conversations import ConversationStore

logger = get_logger(__name__)


def class_section(class_name: str, session: str) -> str:
    return f"{class_name} - {session}"


class BroadcastDispatcher:
    """Sends a broadcast to every recipient in turn, recording each outcome.

    Delivery is sequential. One recipient failing is recorded and the loop
    moves on; counters are written once, after the loop.
    """

    def __init__(
        self,
        storage: IStorage,
        conversations: ConversationStore,
        attachments: AttachmentService,
        event_bus: IEventBus | None = None,
        tracker: ITracker | None = None,
    ):
        self._storage = storage
        self._conversations = conversations
        self._attachments = attachments
        self._event_bus = event_bus
        self._tracker = tracker

    async def resolve_recipients(self, criteria: BroadcastCriteria) -> list[DirectoryUser]:
        criteria_type = CriteriaType(criteria.type)

        if criteria_type == CriteriaType.ALL_STUDENTS:
            return await self._storage.list_directory_users(UserKind.STUDENT)

        if criteria_type == CriteriaType.SPECIFIC_CLASS:
            if not criteria.class_name or not criteria.session:
                raise ValidationError("Class name and session required")
            return await self._storage.list_directory_users(
                UserKind.STUDENT,
                class_section=class_section(criteria.class_name, criteria.session),
            )

        if criteria_type == CriteriaType.ALL_TEACHERS:
            return await self._storage.list_directory_users(UserKind.TEACHER)

        if not criteria.department:
            raise ValidationError("Department required")
        return await self._storage.list_directory_users(
            UserKind.TEACHER, department=criteria.department
        )

    async def send_broadcast(self, actor: Actor, request: BroadcastRequest) -> BroadcastMessage:
        """Create a broadcast and deliver it to every resolved recipient."""
        if actor.kind == UserKind.STUDENT:
            raise AccessDeniedError("Students cannot send broadcasts")
        if not request.content.strip():
            raise ValidationError("Broadcast content cannot be empty")
        self._attachments.validator.validate_all(request.attachments)

        recipients = [
            r
            for r in await self.resolve_recipients(request.criteria)
            if not (r.id == actor.id and r.kind == actor.kind)
        ]
        if not recipients:
            raise NoRecipientsError(
                "No recipients found for broadcast criteria",
                details={"criteria": request.criteria.to_dict()},
            )

        broadcast = BroadcastMessage(
            id=str(uuid.uuid4()),
            sender_id=actor.id,
            sender_kind=actor.kind,
            sender_name=actor.name,
            content=request.content,
            category=request.category,
            priority=request.priority,
            criteria=request.criteria,
            recipient_count=len(recipients),
            created_at=datetime.now(timezone.utc),
        )
        await self._storage.insert_broadcast(broadcast)
        logger.info(
            "Broadcast %s created for %d recipients (%s)",
            broadcast.id,
            len(recipients),
            request.criteria.type.value,
            extra=log_context(
                broadcast_id=broadcast.id,
                criteria=request.criteria.type.value,
                recipient_count=len(recipients),
            ),
        )

        stored_files = await self._store_attachments(broadcast.id, request)

        results = []
        for recipient in recipients:
            results.append(
                await self._deliver(actor, broadcast, recipient, stored_files)
            )

        delivered = [r for r in results if r.status == RecipientStatus.DELIVERED]
        failed = [r for r in results if r.status == RecipientStatus.FAILED]
        broadcast.delivered_count = len(delivered)
        broadcast.failed_count = len(failed)
        broadcast.failed_recipients = [r.user_id for r in failed]

        await self._storage.finalize_broadcast(
            broadcast.id, broadcast.delivered_count, broadcast.failed_count, results
        )
        await self._completed(broadcast, delivered)
        return broadcast

    async def retry_failed_broadcast(self, actor: Actor, broadcast_id: str) -> BroadcastMessage:
        """Re-deliver to previously failed recipients only; counters move additively."""
        broadcast = await self.get_broadcast_details(actor, broadcast_id)
        failed = await self._storage.get_broadcast_recipients(
            broadcast_id, RecipientStatus.FAILED
        )
        if not failed:
            return broadcast

        results = []
        for record in failed:
            user = await self._storage.get_directory_user(record.user_id, record.user_kind)
            if user is None:
                logger.error(
                    "Broadcast %s retry: recipient %s:%s no longer exists",
                    broadcast_id,
                    record.user_kind.value,
                    record.user_id,
                )
                results.append(
                    BroadcastRecipient(
                        broadcast_id=broadcast_id,
                        user_id=record.user_id,
                        user_kind=record.user_kind,
                        user_name=record.user_name,
                        status=RecipientStatus.FAILED,
                        error="User not found",
                    )
                )
                continue
            results.append(await self._deliver(actor, broadcast, user, []))

        retried = [r for r in results if r.status == RecipientStatus.DELIVERED]
        await self._storage.finalize_broadcast(
            broadcast_id,
            broadcast.delivered_count + len(retried),
            broadcast.failed_count - len(retried),
            results,
        )
        logger.info(
            "Broadcast %s retry delivered %d of %d failed recipients",
            broadcast_id,
            len(retried),
            len(failed),
            extra=log_context(
                broadcast_id=broadcast_id, retried=len(failed), delivered=len(retried)
            ),
        )

        updated = await self.get_broadcast_details(actor, broadcast_id)
        await self._completed(updated, retried)
        return updated

    async def get_broadcast_history(self, actor: Actor) -> list[BroadcastMessage]:
        return await self._storage.list_broadcasts(actor.id, actor.kind)

    async def get_broadcast_details(self, actor: Actor, broadcast_id: str) -> BroadcastMessage:
        broadcast = await self._storage.get_broadcast(broadcast_id)
        if (
            broadcast is None
            or broadcast.sender_id != actor.id
            or broadcast.sender_kind != actor.kind
        ):
            raise NotFoundError(
                "Broadcast not found", details={"broadcast_id": broadcast_id}
            )
        return broadcast

    async def get_recipients(
        self,
        actor: Actor,
        broadcast_id: str,
        status: RecipientStatus | None = None,
    ) -> list[BroadcastRecipient]:
        await self.get_broadcast_details(actor, broadcast_id)
        return await self._storage.get_broadcast_recipients(broadcast_id, status)

    async def _store_attachments(
        self, broadcast_id: str, request: BroadcastRequest
    ) -> list[StoredFile]:
        """Upload each file once; every delivered message links to the same blobs."""
        stored = []
        for file in request.attachments:
            try:
                stored.append(
                    await self._attachments.store(f"broadcasts/{broadcast_id}", file)
                )
            except Exception as e:
                logger.error(
                    "Failed to upload broadcast attachment %s: %s", file.filename, e
                )
        return stored

    async def _deliver(
        self,
        actor: Actor,
        broadcast: BroadcastMessage,
        recipient: DirectoryUser,
        stored_files: list[StoredFile],
    ) -> BroadcastRecipient:
        """Deliver to one recipient; any failure is captured, never raised."""
        try:
            conversation_id = await self._conversations.get_or_create(actor, recipient)
            message = Message(
                id=str(uuid.uuid4()),
                conversation_id=conversation_id,
                sender_id=actor.id,
                sender_kind=actor.kind,
                sender_name=actor.name,
                content=broadcast.content,
                category=broadcast.category,
                priority=broadcast.priority,
                created_at=datetime.now(timezone.utc),
                broadcast_id=broadcast.id,
            )
            await self._storage.insert_message(message)
        except Exception as e:
            logger.error(
                "Broadcast %s failed for %s:%s: %s",
                broadcast.id,
                recipient.kind.value,
                recipient.id,
                e,
                extra=log_context(
                    broadcast_id=broadcast.id,
                    user_id=recipient.id,
                    user_kind=recipient.kind.value,
                ),
            )
            return BroadcastRecipient(
                broadcast_id=broadcast.id,
                user_id=recipient.id,
                user_kind=recipient.kind,
                user_name=recipient.name,
                status=RecipientStatus.FAILED,
                error=str(e),
            )

        for stored in stored_files:
            try:
                await self._attachments.record(actor, message.id, stored)
            except Exception as e:
                logger.error(
                    "Failed to link attachment %s to message %s: %s",
                    stored.filename,
                    message.id,
                    e,
                )

        return BroadcastRecipient(
            broadcast_id=broadcast.id,
            user_id=recipient.id,
            user_kind=recipient.kind,
            user_name=recipient.name,
            status=RecipientStatus.DELIVERED,
            message_id=message.id,
        )

    async def _completed(
        self, broadcast: BroadcastMessage, delivered: list[BroadcastRecipient]
    ) -> None:
        data = {
            "broadcast_id": broadcast.id,
            "recipient_count": broadcast.recipient_count,
            "delivered_count": broadcast.delivered_count,
            "failed_count": broadcast.failed_count,
        }
        if self._tracker:
            await self._tracker.track(
                event_type="broadcast_completed", actor="broadcast_dispatcher", data=data
            )
        if self._event_bus:
            await self._event_bus.emit(
                Topic.BROADCAST_COMPLETED,
                {
                    **data,
                    "sender_id": broadcast.sender_id,
                    "sender_kind": broadcast.sender_kind.value,
                    "sender_name": broadcast.sender_name,
                    "preview": broadcast.content[:100],
                    "category": broadcast.category.value,
                    "priority": broadcast.priority.value,
                    "delivered": [
                        {
                            "user_id": r.user_id,
                            "user_kind": r.user_kind.value,
                            "message_id": r.message_id,
                        }
                        for r in delivered
                    ],
                },
                source="broadcast_dispatcher",
            )
