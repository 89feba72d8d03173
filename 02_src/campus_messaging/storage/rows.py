"""Row -> model conversion.

Every table is read through one of these functions so that enum columns are
parsed (and unknown values rejected) in a single place.
"""

import json
from datetime import datetime, timezone
from typing import Any, Mapping

from ..models import (
    Attachment,
    BroadcastCriteria,
    BroadcastMessage,
    BroadcastRecipient,
    BusMessage,
    ConversationParticipant,
    DirectoryUser,
    ForwardedFrom,
    Message,
    MessageCategory,
    MessageTemplate,
    Priority,
    Reaction,
    ReactionType,
    RecipientStatus,
    ScanStatus,
    ScheduledMessage,
    ScheduledStatus,
    SearchResult,
    Topic,
    TraceEvent,
    UserKind,
)

Row = Mapping[str, Any]


def to_db(ts: datetime | None) -> str | None:
    """Serialize a timestamp as a fixed-width UTC ISO string (sortable as text)."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db(value: str | None) -> datetime | None:
    if value is None:
        return None
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _required_ts(value: str) -> datetime:
    ts = from_db(value)
    if ts is None:
        raise ValueError("missing timestamp")
    return ts


def full_name(first_name: str | None, last_name: str | None) -> str:
    return f"{first_name or ''} {last_name or ''}".strip() or "Unknown"


def directory_user(row: Row, kind: UserKind) -> DirectoryUser:
    keys = row.keys()
    return DirectoryUser(
        id=row["id"],
        kind=kind,
        name=full_name(row["first_name"], row["last_name"]),
        avatar=row["avatar"],
        class_section=row["class_section"] if "class_section" in keys else None,
        department=row["department"] if "department" in keys else None,
    )


def participant(row: Row) -> ConversationParticipant:
    return ConversationParticipant(
        conversation_id=row["conversation_id"],
        user_id=row["user_id"],
        user_kind=UserKind(row["user_kind"]),
        user_name=row["user_name"],
        user_avatar=row["user_avatar"],
        unread_count=row["unread_count"],
        is_pinned=bool(row["is_pinned"]),
        is_starred=bool(row["is_starred"]),
        is_archived=bool(row["is_archived"]),
        is_resolved=bool(row["is_resolved"]),
        is_muted=bool(row["is_muted"]),
        last_read_at=from_db(row["last_read_at"]),
    )


def attachment(row: Row) -> Attachment:
    return Attachment(
        id=row["id"],
        message_id=row["message_id"],
        original_filename=row["original_filename"],
        filename=row["filename"],
        content_type=row["content_type"],
        size=row["size"],
        storage_path=row["storage_path"],
        url=row["url"],
        thumbnail_url=row["thumbnail_url"],
        uploaded_by_id=row["uploaded_by_id"],
        uploaded_by_kind=UserKind(row["uploaded_by_kind"]),
        scan_status=ScanStatus(row["scan_status"]),
        created_at=_required_ts(row["created_at"]),
    )


def reaction(row: Row) -> Reaction:
    return Reaction(
        message_id=row["message_id"],
        user_id=row["user_id"],
        user_kind=UserKind(row["user_kind"]),
        user_name=row["user_name"],
        type=ReactionType(row["reaction_type"]),
        created_at=_required_ts(row["created_at"]),
    )


def message(row: Row) -> Message:
    """Map a ``messages`` row (plus optional ``is_pinned``/``read_at`` columns)."""
    keys = row.keys()
    forwarded_from = None
    if row["is_forwarded"]:
        forwarded_from = ForwardedFrom(
            message_id=row["forwarded_from_id"],
            sender_name=row["original_sender_name"] or "Unknown",
        )
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        sender_id=row["sender_id"],
        sender_kind=UserKind(row["sender_kind"]),
        sender_name=row["sender_name"],
        content=row["content"],
        category=MessageCategory(row["category"]),
        priority=Priority(row["priority"]),
        created_at=_required_ts(row["created_at"]),
        is_pinned=bool(row["is_pinned"]) if "is_pinned" in keys else False,
        is_forwarded=bool(row["is_forwarded"]),
        forwarded_from=forwarded_from,
        reply_to_id=row["reply_to_id"],
        broadcast_id=row["broadcast_id"],
        is_deleted=bool(row["is_deleted"]),
        delivered_at=from_db(row["delivered_at"]),
        read_at=from_db(row["read_at"]) if "read_at" in keys else None,
    )


def search_result(row: Row) -> SearchResult:
    return SearchResult(
        message_id=row["id"],
        conversation_id=row["conversation_id"],
        content=row["content"],
        sender_name=row["sender_name"],
        created_at=_required_ts(row["created_at"]),
    )


def broadcast(row: Row, failed_recipients: list[str]) -> BroadcastMessage:
    return BroadcastMessage(
        id=row["id"],
        sender_id=row["sender_id"],
        sender_kind=UserKind(row["sender_kind"]),
        sender_name=row["sender_name"],
        content=row["content"],
        category=MessageCategory(row["category"]),
        priority=Priority(row["priority"]),
        criteria=BroadcastCriteria.from_dict(json.loads(row["criteria"])),
        recipient_count=row["total_recipients"],
        delivered_count=row["delivered_count"],
        failed_count=row["failed_count"],
        failed_recipients=failed_recipients,
        created_at=_required_ts(row["created_at"]),
    )


def broadcast_recipient(row: Row) -> BroadcastRecipient:
    return BroadcastRecipient(
        broadcast_id=row["broadcast_id"],
        user_id=row["user_id"],
        user_kind=UserKind(row["user_kind"]),
        user_name=row["user_name"],
        status=RecipientStatus(row["status"]),
        message_id=row["message_id"],
        error=row["error"],
    )


def scheduled_message(row: Row) -> ScheduledMessage:
    return ScheduledMessage(
        id=row["id"],
        sender_id=row["sender_id"],
        sender_kind=UserKind(row["sender_kind"]),
        sender_name=row["sender_name"],
        conversation_id=row["conversation_id"],
        recipient_id=row["recipient_id"],
        recipient_kind=UserKind(row["recipient_kind"]) if row["recipient_kind"] else None,
        content=row["content"],
        category=MessageCategory(row["category"]),
        priority=Priority(row["priority"]),
        scheduled_for=_required_ts(row["scheduled_at"]),
        status=ScheduledStatus(row["status"]),
        created_at=_required_ts(row["created_at"]),
    )


def template(row: Row) -> MessageTemplate:
    return MessageTemplate(
        id=row["id"],
        name=row["name"],
        content=row["content"],
        category=MessageCategory(row["category"]),
        variables=json.loads(row["variables"]),
        usage_count=row["usage_count"],
    )


def trace_event(row: Row) -> TraceEvent:
    return TraceEvent(
        id=row["id"],
        event_type=row["event_type"],
        actor=row["actor"],
        data=json.loads(row["data"]),
        timestamp=_required_ts(row["timestamp"]),
    )


def bus_message(row: Row) -> BusMessage:
    return BusMessage(
        id=row["id"],
        topic=Topic(row["topic"]),
        payload=json.loads(row["payload"]),
        source=row["source"],
        timestamp=_required_ts(row["timestamp"]),
    )
