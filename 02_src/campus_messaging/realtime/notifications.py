"""NotificationRouter: turns bus events into ``notification`` pushes."""

from datetime import datetime, timezone

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import BusMessage, EventType, Priority, Topic, UserKind
from ..storage import IStorage
from ..tracker import ITracker
from .broadcaster import EventBroadcaster, make_event

logger = get_logger(__name__)

_SEVERITY = {
    Priority.NORMAL: "info",
    Priority.IMPORTANT: "warning",
    Priority.URGENT: "error",
}


class NotificationRouter:
    """Notifies recipients' live connections about new messages.

    A message pushed to at least one open stream is marked delivered.
    Recipients who muted the conversation are not notified.
    """

    def __init__(
        self,
        event_bus: IEventBus,
        broadcaster: EventBroadcaster,
        storage: IStorage,
        tracker: ITracker | None = None,
    ):
        self._event_bus = event_bus
        self._broadcaster = broadcaster
        self._storage = storage
        self._tracker = tracker

    async def start(self) -> None:
        """Subscribe to MESSAGE_SENT and BROADCAST_COMPLETED."""
        self._event_bus.subscribe(Topic.MESSAGE_SENT, self._handle_message_sent)
        self._event_bus.subscribe(Topic.BROADCAST_COMPLETED, self._handle_broadcast)

    async def stop(self) -> None:
        self._event_bus.unsubscribe(Topic.MESSAGE_SENT, self._handle_message_sent)
        self._event_bus.unsubscribe(Topic.BROADCAST_COMPLETED, self._handle_broadcast)

    async def _handle_message_sent(self, bus_message: BusMessage) -> None:
        payload = bus_message.payload
        for recipient in payload.get("recipients", []):
            await self._notify(
                user_id=recipient["user_id"],
                user_kind=UserKind(recipient["user_kind"]),
                message_id=payload["message_id"],
                conversation_id=payload["conversation_id"],
                title=f"New message from {payload['sender_name']}",
                body=payload.get("preview", ""),
                priority=Priority(payload.get("priority", Priority.NORMAL.value)),
            )

    async def _handle_broadcast(self, bus_message: BusMessage) -> None:
        payload = bus_message.payload
        for recipient in payload.get("delivered", []):
            message = await self._storage.get_message(recipient["message_id"])
            if message is None:
                continue
            await self._notify(
                user_id=recipient["user_id"],
                user_kind=UserKind(recipient["user_kind"]),
                message_id=message.id,
                conversation_id=message.conversation_id,
                title=f"Announcement from {payload['sender_name']}",
                body=payload.get("preview", ""),
                priority=Priority(payload.get("priority", Priority.NORMAL.value)),
            )

    async def _notify(
        self,
        user_id: str,
        user_kind: UserKind,
        message_id: str,
        conversation_id: str,
        title: str,
        body: str,
        priority: Priority,
    ) -> None:
        participant = await self._storage.get_participant(conversation_id, user_id, user_kind)
        if participant is not None and participant.is_muted:
            return

        event = make_event(
            EventType.NOTIFICATION,
            {
                "id": message_id,
                "title": title,
                "message": body,
                "severity": _SEVERITY[priority],
                "conversationId": conversation_id,
                "actionUrl": f"/messages/{conversation_id}",
            },
            event_id=f"notification_{message_id}",
        )
        sent = await self._broadcaster.send_to_user(user_id, event)
        if not sent:
            return

        await self._storage.mark_delivered(message_id, datetime.now(timezone.utc))
        if self._tracker:
            await self._tracker.track(
                event_type="notification_pushed",
                actor="notification_router",
                data={"user_id": user_id, "message_id": message_id, "connections": sent},
            )
