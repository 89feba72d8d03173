"""SQLite storage implementation."""

import asyncio
import functools
import json
from datetime import datetime
from pathlib import Path
from typing import Iterable, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import (
    Attachment,
    BroadcastMessage,
    BroadcastRecipient,
    BusMessage,
    Conversation,
    ConversationFlag,
    ConversationParticipant,
    DirectoryUser,
    Message,
    MessageTemplate,
    Priority,
    Reaction,
    ReactionType,
    RecipientStatus,
    ScheduledMessage,
    ScheduledStatus,
    SearchResult,
    TraceEvent,
    UserKind,
    directory_table,
)
from . import rows
from .rows import to_db


class IStorage(Protocol):
    """Persistent storage for all messaging data (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    async def ping(self) -> None:
        """Round-trip a trivial query; raises if the database is unusable."""
        ...

    # Directory
    async def save_directory_user(self, user: DirectoryUser) -> None: ...

    async def get_directory_user(
        self, user_id: str, kind: UserKind
    ) -> DirectoryUser | None: ...

    async def list_directory_users(
        self,
        kind: UserKind,
        class_section: str | None = None,
        department: str | None = None,
    ) -> list[DirectoryUser]: ...

    async def save_session(
        self, token: str, user_id: str, kind: UserKind, expires_at: datetime | None = None
    ) -> None: ...

    async def get_session_user(
        self, token: str, now: datetime
    ) -> DirectoryUser | None: ...

    # Conversations
    async def find_conversation_between(
        self, user_id: str, user_kind: UserKind, other_id: str, other_kind: UserKind
    ) -> str | None: ...

    async def get_conversation_id_by_pair_key(self, pair_key: str) -> str | None: ...

    async def insert_conversation(
        self,
        conversation_id: str,
        pair_key: str | None,
        participants: list[ConversationParticipant],
        now: datetime,
    ) -> bool: ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def list_conversations_for(
        self, user_id: str, user_kind: UserKind
    ) -> list[Conversation]: ...

    async def get_participant(
        self, conversation_id: str, user_id: str, user_kind: UserKind
    ) -> ConversationParticipant | None: ...

    async def set_participant_flag(
        self,
        conversation_id: str,
        user_id: str,
        user_kind: UserKind,
        flag: ConversationFlag,
        value: bool,
    ) -> bool: ...

    async def set_unread_count(
        self, conversation_id: str, user_id: str, user_kind: UserKind, count: int
    ) -> bool: ...

    async def mark_conversation_read(
        self, conversation_id: str, user_id: str, user_kind: UserKind, now: datetime
    ) -> int: ...

    # Messages
    async def insert_message(self, message: Message) -> None: ...

    async def get_message(self, message_id: str) -> Message | None: ...

    async def get_messages(
        self, conversation_id: str, limit: int = 50, offset: int = 0
    ) -> list[Message]: ...

    async def get_pinned_messages(self, conversation_id: str) -> list[Message]: ...

    async def soft_delete_message(self, message_id: str, now: datetime) -> bool: ...

    async def mark_delivered(self, message_id: str, now: datetime) -> None: ...

    async def search_messages(
        self,
        user_id: str,
        user_kind: UserKind,
        query: str,
        limit: int,
        offset: int,
        conversation_id: str | None = None,
    ) -> list[SearchResult]: ...

    # Attachments / reactions / pins
    async def insert_attachment(self, attachment: Attachment) -> None: ...

    async def get_attachment(self, attachment_id: str) -> Attachment | None: ...

    async def add_reaction(self, reaction: Reaction) -> bool: ...

    async def remove_reaction(
        self,
        message_id: str,
        user_id: str,
        user_kind: UserKind,
        reaction_type: ReactionType,
    ) -> bool: ...

    async def pin_message(
        self,
        message_id: str,
        conversation_id: str,
        user_id: str,
        user_kind: UserKind,
        now: datetime,
    ) -> bool: ...

    async def unpin_message(self, message_id: str) -> bool: ...

    # Broadcasts
    async def insert_broadcast(self, broadcast: BroadcastMessage) -> None: ...

    async def finalize_broadcast(
        self,
        broadcast_id: str,
        delivered_count: int,
        failed_count: int,
        recipients: list[BroadcastRecipient],
    ) -> None: ...

    async def get_broadcast(self, broadcast_id: str) -> BroadcastMessage | None: ...

    async def list_broadcasts(
        self, sender_id: str, sender_kind: UserKind
    ) -> list[BroadcastMessage]: ...

    async def get_broadcast_recipients(
        self, broadcast_id: str, status: RecipientStatus | None = None
    ) -> list[BroadcastRecipient]: ...

    # Scheduling
    async def insert_scheduled_message(self, scheduled: ScheduledMessage) -> None: ...

    async def list_scheduled_messages(
        self, sender_id: str, sender_kind: UserKind, status: ScheduledStatus
    ) -> list[ScheduledMessage]: ...

    async def get_scheduled_message(
        self, scheduled_id: str
    ) -> ScheduledMessage | None: ...

    async def cancel_scheduled_message(
        self, scheduled_id: str, sender_id: str, sender_kind: UserKind
    ) -> bool: ...

    # Templates
    async def save_template(self, template: MessageTemplate) -> None: ...

    async def list_templates(self) -> list[MessageTemplate]: ...

    # Observability
    async def save_trace_event(self, event: TraceEvent) -> None: ...

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]: ...

    async def save_bus_message(self, message: BusMessage) -> None: ...

    async def get_bus_messages(self, limit: int = 100) -> list[BusMessage]: ...


def _placeholders(values: Iterable) -> str:
    return ",".join("?" for _ in values)


def _like_pattern(term: str) -> str:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


_MESSAGE_COLUMNS = """
    m.*,
    EXISTS (SELECT 1 FROM pinned_messages p WHERE p.message_id = m.id) AS is_pinned,
    (
        SELECT MIN(r.read_at) FROM message_read_status r
        WHERE r.message_id = m.id
          AND NOT (r.user_id = m.sender_id AND r.user_kind = m.sender_kind)
    ) AS read_at
"""


def _serialized(method):
    """Run a write under the storage lock.

    All coroutines share one connection, so a transaction must not interleave
    with another writer's commit or rollback.
    """

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        async with self._write_lock:
            return await method(self, *args, **kwargs)

    return wrapper


class Storage:
    """SQLite storage implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def _db(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Storage not initialized")
        return self._conn

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def ping(self) -> None:
        """Round-trip a trivial query; raises if the database is unusable."""
        cursor = await self._db.execute("SELECT 1")
        await cursor.fetchone()

    # Directory
    @_serialized
    async def save_directory_user(self, user: DirectoryUser) -> None:
        """Insert or replace a directory entry (seeding and tests)."""
        first_name, _, last_name = user.name.partition(" ")
        table = directory_table(user.kind)
        if user.kind == UserKind.STUDENT:
            await self._db.execute(
                """
                INSERT OR REPLACE INTO students
                (id, first_name, last_name, avatar, class_section)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user.id, first_name, last_name, user.avatar, user.class_section),
            )
        elif user.kind == UserKind.TEACHER:
            await self._db.execute(
                """
                INSERT OR REPLACE INTO teachers
                (id, first_name, last_name, avatar, department)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user.id, first_name, last_name, user.avatar, user.department),
            )
        else:
            await self._db.execute(
                f"""
                INSERT OR REPLACE INTO {table} (id, first_name, last_name, avatar)
                VALUES (?, ?, ?, ?)
                """,
                (user.id, first_name, last_name, user.avatar),
            )
        await self._db.commit()

    async def get_directory_user(
        self, user_id: str, kind: UserKind
    ) -> DirectoryUser | None:
        """Look up one user in the directory table for ``kind``."""
        cursor = await self._db.execute(
            f"SELECT * FROM {directory_table(kind)} WHERE id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        return rows.directory_user(row, kind) if row else None

    async def list_directory_users(
        self,
        kind: UserKind,
        class_section: str | None = None,
        department: str | None = None,
    ) -> list[DirectoryUser]:
        """List directory users of one kind, optionally by class or department."""
        conditions = []
        params: list = []
        if class_section is not None:
            conditions.append("class_section = ?")
            params.append(class_section)
        if department is not None:
            conditions.append("department = ?")
            params.append(department)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        cursor = await self._db.execute(
            f"SELECT * FROM {directory_table(kind)} {where_clause} ORDER BY rowid",
            params,
        )
        return [rows.directory_user(row, kind) for row in await cursor.fetchall()]

    @_serialized
    async def save_session(
        self, token: str, user_id: str, kind: UserKind, expires_at: datetime | None = None
    ) -> None:
        await self._db.execute(
            """
            INSERT OR REPLACE INTO sessions (token, user_id, user_kind, expires_at)
            VALUES (?, ?, ?, ?)
            """,
            (token, user_id, kind.value, to_db(expires_at)),
        )
        await self._db.commit()

    async def get_session_user(
        self, token: str, now: datetime
    ) -> DirectoryUser | None:
        """Resolve a session token to its directory user, ignoring expired tokens."""
        cursor = await self._db.execute(
            """
            SELECT user_id, user_kind FROM sessions
            WHERE token = ? AND (expires_at IS NULL OR expires_at > ?)
            """,
            (token, to_db(now)),
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return await self.get_directory_user(row["user_id"], UserKind(row["user_kind"]))

    # Conversations
    async def find_conversation_between(
        self, user_id: str, user_kind: UserKind, other_id: str, other_kind: UserKind
    ) -> str | None:
        """Scan ``user``'s conversations for one that includes ``other``."""
        cursor = await self._db.execute(
            """
            SELECT conversation_id FROM conversation_participants
            WHERE user_id = ? AND user_kind = ?
            ORDER BY joined_at
            """,
            (user_id, user_kind.value),
        )
        for row in await cursor.fetchall():
            other = await self.get_participant(
                row["conversation_id"], other_id, other_kind
            )
            if other:
                return row["conversation_id"]
        return None

    async def get_conversation_id_by_pair_key(self, pair_key: str) -> str | None:
        cursor = await self._db.execute(
            "SELECT id FROM conversations WHERE pair_key = ?", (pair_key,)
        )
        row = await cursor.fetchone()
        return row["id"] if row else None

    @_serialized
    async def insert_conversation(
        self,
        conversation_id: str,
        pair_key: str | None,
        participants: list[ConversationParticipant],
        now: datetime,
    ) -> bool:
        """Create a conversation with its participants.

        Returns False (and writes nothing) when ``pair_key`` is already taken.
        """
        try:
            await self._db.execute(
                """
                INSERT INTO conversations (id, pair_key, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (conversation_id, pair_key, to_db(now), to_db(now)),
            )
            await self._db.executemany(
                """
                INSERT INTO conversation_participants
                (conversation_id, user_id, user_kind, user_name, user_avatar, joined_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        conversation_id,
                        p.user_id,
                        p.user_kind.value,
                        p.user_name,
                        p.user_avatar,
                        to_db(now),
                    )
                    for p in participants
                ],
            )
            await self._db.commit()
        except aiosqlite.IntegrityError:
            await self._db.rollback()
            return False
        return True

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        conversations = await self._load_conversations([conversation_id])
        return conversations[0] if conversations else None

    async def list_conversations_for(
        self, user_id: str, user_kind: UserKind
    ) -> list[Conversation]:
        """All conversations the user participates in, with unread priorities."""
        cursor = await self._db.execute(
            """
            SELECT conversation_id FROM conversation_participants
            WHERE user_id = ? AND user_kind = ?
            """,
            (user_id, user_kind.value),
        )
        ids = [row["conversation_id"] for row in await cursor.fetchall()]
        if not ids:
            return []

        conversations = await self._load_conversations(ids)

        # Highest priority among messages the viewer has not read yet
        cursor = await self._db.execute(
            f"""
            SELECT m.conversation_id, m.priority FROM messages m
            WHERE m.conversation_id IN ({_placeholders(ids)})
              AND m.is_deleted = 0
              AND NOT (m.sender_id = ? AND m.sender_kind = ?)
              AND NOT EXISTS (
                  SELECT 1 FROM message_read_status r
                  WHERE r.message_id = m.id AND r.user_id = ? AND r.user_kind = ?
              )
            """,
            (*ids, user_id, user_kind.value, user_id, user_kind.value),
        )
        unread: dict[str, Priority] = {}
        for row in await cursor.fetchall():
            priority = Priority(row["priority"])
            current = unread.get(row["conversation_id"])
            if current is None or priority.rank > current.rank:
                unread[row["conversation_id"]] = priority

        for conversation in conversations:
            conversation.unread_priority = unread.get(conversation.id)
        return conversations

    async def _load_conversations(self, ids: list[str]) -> list[Conversation]:
        cursor = await self._db.execute(
            f"SELECT * FROM conversations WHERE id IN ({_placeholders(ids)})", ids
        )
        conversation_rows = await cursor.fetchall()

        cursor = await self._db.execute(
            f"""
            SELECT * FROM conversation_participants
            WHERE conversation_id IN ({_placeholders(ids)})
            ORDER BY joined_at, rowid
            """,
            ids,
        )
        participants: dict[str, list[ConversationParticipant]] = {}
        for row in await cursor.fetchall():
            participants.setdefault(row["conversation_id"], []).append(
                rows.participant(row)
            )

        return [
            Conversation(
                id=row["id"],
                participants=participants.get(row["id"], []),
                created_at=rows.from_db(row["created_at"]),
                updated_at=rows.from_db(row["updated_at"]),
                last_message_preview=row["last_message_preview"],
                last_message_at=rows.from_db(row["last_message_at"]),
            )
            for row in conversation_rows
        ]

    async def get_participant(
        self, conversation_id: str, user_id: str, user_kind: UserKind
    ) -> ConversationParticipant | None:
        cursor = await self._db.execute(
            """
            SELECT * FROM conversation_participants
            WHERE conversation_id = ? AND user_id = ? AND user_kind = ?
            """,
            (conversation_id, user_id, user_kind.value),
        )
        row = await cursor.fetchone()
        return rows.participant(row) if row else None

    @_serialized
    async def set_participant_flag(
        self,
        conversation_id: str,
        user_id: str,
        user_kind: UserKind,
        flag: ConversationFlag,
        value: bool,
    ) -> bool:
        """Set one boolean flag on the caller's participant row."""
        # Column name comes from the closed ConversationFlag enum
        cursor = await self._db.execute(
            f"""
            UPDATE conversation_participants SET {ConversationFlag(flag).value} = ?
            WHERE conversation_id = ? AND user_id = ? AND user_kind = ?
            """,
            (int(value), conversation_id, user_id, user_kind.value),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    @_serialized
    async def set_unread_count(
        self, conversation_id: str, user_id: str, user_kind: UserKind, count: int
    ) -> bool:
        cursor = await self._db.execute(
            """
            UPDATE conversation_participants SET unread_count = ?
            WHERE conversation_id = ? AND user_id = ? AND user_kind = ?
            """,
            (count, conversation_id, user_id, user_kind.value),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    @_serialized
    async def mark_conversation_read(
        self, conversation_id: str, user_id: str, user_kind: UserKind, now: datetime
    ) -> int:
        """Insert read receipts for every unread message from others; zero the counter."""
        cursor = await self._db.execute(
            """
            INSERT OR IGNORE INTO message_read_status (message_id, user_id, user_kind, read_at)
            SELECT m.id, ?, ?, ? FROM messages m
            WHERE m.conversation_id = ?
              AND NOT (m.sender_id = ? AND m.sender_kind = ?)
            """,
            (
                user_id,
                user_kind.value,
                to_db(now),
                conversation_id,
                user_id,
                user_kind.value,
            ),
        )
        inserted = cursor.rowcount
        await self._db.execute(
            """
            UPDATE conversation_participants SET unread_count = 0, last_read_at = ?
            WHERE conversation_id = ? AND user_id = ? AND user_kind = ?
            """,
            (to_db(now), conversation_id, user_id, user_kind.value),
        )
        await self._db.commit()
        return inserted

    # Messages
    @_serialized
    async def insert_message(self, message: Message) -> None:
        """Append a message; the insert trigger maintains previews and unread counts."""
        forwarded = message.forwarded_from
        await self._db.execute(
            """
            INSERT INTO messages (
                id, conversation_id, sender_id, sender_kind, sender_name, content,
                category, priority, reply_to_id, is_forwarded, forwarded_from_id,
                original_sender_name, broadcast_id, created_at, delivered_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.conversation_id,
                message.sender_id,
                message.sender_kind.value,
                message.sender_name,
                message.content,
                message.category.value,
                message.priority.value,
                message.reply_to_id,
                int(message.is_forwarded),
                forwarded.message_id if forwarded else None,
                forwarded.sender_name if forwarded else None,
                message.broadcast_id,
                to_db(message.created_at),
                to_db(message.delivered_at),
            ),
        )
        await self._db.commit()

    async def get_message(self, message_id: str) -> Message | None:
        cursor = await self._db.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages m WHERE m.id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        if not row:
            return None
        messages = await self._attach_children([rows.message(row)])
        return messages[0]

    async def get_messages(
        self, conversation_id: str, limit: int = 50, offset: int = 0
    ) -> list[Message]:
        """Non-deleted messages of a conversation, oldest first."""
        cursor = await self._db.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages m
            WHERE m.conversation_id = ? AND m.is_deleted = 0
            ORDER BY m.created_at ASC, m.rowid ASC
            LIMIT ? OFFSET ?
            """,
            (conversation_id, limit, offset),
        )
        messages = [rows.message(row) for row in await cursor.fetchall()]
        return await self._attach_children(messages)

    async def get_pinned_messages(self, conversation_id: str) -> list[Message]:
        cursor = await self._db.execute(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages m
            JOIN pinned_messages pm ON pm.message_id = m.id
            WHERE pm.conversation_id = ? AND m.is_deleted = 0
            ORDER BY pm.pinned_at DESC
            """,
            (conversation_id,),
        )
        messages = [rows.message(row) for row in await cursor.fetchall()]
        return await self._attach_children(messages)

    async def _attach_children(self, messages: list[Message]) -> list[Message]:
        """Join attachments and reactions onto already-loaded messages."""
        if not messages:
            return messages
        by_id = {m.id: m for m in messages}
        ids = list(by_id)

        cursor = await self._db.execute(
            f"""
            SELECT * FROM message_attachments
            WHERE message_id IN ({_placeholders(ids)}) ORDER BY created_at
            """,
            ids,
        )
        for row in await cursor.fetchall():
            by_id[row["message_id"]].attachments.append(rows.attachment(row))

        cursor = await self._db.execute(
            f"""
            SELECT * FROM message_reactions
            WHERE message_id IN ({_placeholders(ids)}) ORDER BY created_at
            """,
            ids,
        )
        for row in await cursor.fetchall():
            by_id[row["message_id"]].reactions.append(rows.reaction(row))

        return messages

    @_serialized
    async def soft_delete_message(self, message_id: str, now: datetime) -> bool:
        cursor = await self._db.execute(
            """
            UPDATE messages SET is_deleted = 1, deleted_at = ?
            WHERE id = ? AND is_deleted = 0
            """,
            (to_db(now), message_id),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    @_serialized
    async def mark_delivered(self, message_id: str, now: datetime) -> None:
        await self._db.execute(
            "UPDATE messages SET delivered_at = ? WHERE id = ? AND delivered_at IS NULL",
            (to_db(now), message_id),
        )
        await self._db.commit()

    async def search_messages(
        self,
        user_id: str,
        user_kind: UserKind,
        query: str,
        limit: int,
        offset: int,
        conversation_id: str | None = None,
    ) -> list[SearchResult]:
        """Search procedure: every term must occur in a visible, non-deleted message."""
        terms = query.split()
        if not terms:
            return []

        conditions = ["lower(m.content) LIKE ? ESCAPE '\\'" for _ in terms]
        params: list = [_like_pattern(term) for term in terms]
        if conversation_id:
            conditions.append("m.conversation_id = ?")
            params.append(conversation_id)

        cursor = await self._db.execute(
            f"""
            SELECT m.id, m.conversation_id, m.content, m.sender_name, m.created_at
            FROM messages m
            JOIN conversation_participants cp ON cp.conversation_id = m.conversation_id
            WHERE cp.user_id = ? AND cp.user_kind = ?
              AND m.is_deleted = 0
              AND {' AND '.join(conditions)}
            ORDER BY m.created_at DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, user_kind.value, *params, limit, offset),
        )
        return [rows.search_result(row) for row in await cursor.fetchall()]

    # Attachments / reactions / pins
    @_serialized
    async def insert_attachment(self, attachment: Attachment) -> None:
        await self._db.execute(
            """
            INSERT INTO message_attachments (
                id, message_id, filename, original_filename, content_type, size,
                storage_path, url, thumbnail_url, uploaded_by_id, uploaded_by_kind,
                scan_status, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                attachment.id,
                attachment.message_id,
                attachment.filename,
                attachment.original_filename,
                attachment.content_type,
                attachment.size,
                attachment.storage_path,
                attachment.url,
                attachment.thumbnail_url,
                attachment.uploaded_by_id,
                attachment.uploaded_by_kind.value,
                attachment.scan_status.value,
                to_db(attachment.created_at),
            ),
        )
        await self._db.commit()

    async def get_attachment(self, attachment_id: str) -> Attachment | None:
        cursor = await self._db.execute(
            "SELECT * FROM message_attachments WHERE id = ?", (attachment_id,)
        )
        row = await cursor.fetchone()
        return rows.attachment(row) if row else None

    @_serialized
    async def add_reaction(self, reaction: Reaction) -> bool:
        """Insert a reaction; False when the same user already reacted that way."""
        cursor = await self._db.execute(
            """
            INSERT OR IGNORE INTO message_reactions
            (message_id, user_id, user_kind, user_name, reaction_type, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                reaction.message_id,
                reaction.user_id,
                reaction.user_kind.value,
                reaction.user_name,
                reaction.type.value,
                to_db(reaction.created_at),
            ),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    @_serialized
    async def remove_reaction(
        self,
        message_id: str,
        user_id: str,
        user_kind: UserKind,
        reaction_type: ReactionType,
    ) -> bool:
        cursor = await self._db.execute(
            """
            DELETE FROM message_reactions
            WHERE message_id = ? AND user_id = ? AND user_kind = ? AND reaction_type = ?
            """,
            (message_id, user_id, user_kind.value, reaction_type.value),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    @_serialized
    async def pin_message(
        self,
        message_id: str,
        conversation_id: str,
        user_id: str,
        user_kind: UserKind,
        now: datetime,
    ) -> bool:
        cursor = await self._db.execute(
            """
            INSERT OR IGNORE INTO pinned_messages
            (message_id, conversation_id, pinned_by_id, pinned_by_kind, pinned_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (message_id, conversation_id, user_id, user_kind.value, to_db(now)),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    @_serialized
    async def unpin_message(self, message_id: str) -> bool:
        cursor = await self._db.execute(
            "DELETE FROM pinned_messages WHERE message_id = ?", (message_id,)
        )
        await self._db.commit()
        return cursor.rowcount > 0

    # Broadcasts
    @_serialized
    async def insert_broadcast(self, broadcast: BroadcastMessage) -> None:
        await self._db.execute(
            """
            INSERT INTO broadcast_messages (
                id, sender_id, sender_kind, sender_name, content, category, priority,
                criteria, total_recipients, delivered_count, failed_count, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                broadcast.id,
                broadcast.sender_id,
                broadcast.sender_kind.value,
                broadcast.sender_name,
                broadcast.content,
                broadcast.category.value,
                broadcast.priority.value,
                json.dumps(broadcast.criteria.to_dict()),
                broadcast.recipient_count,
                broadcast.delivered_count,
                broadcast.failed_count,
                to_db(broadcast.created_at),
            ),
        )
        await self._db.commit()

    @_serialized
    async def finalize_broadcast(
        self,
        broadcast_id: str,
        delivered_count: int,
        failed_count: int,
        recipients: list[BroadcastRecipient],
    ) -> None:
        """Write counters and per-recipient outcomes in one transaction."""
        cursor = await self._db.execute(
            "SELECT COALESCE(MAX(position), -1) AS last FROM broadcast_recipients WHERE broadcast_id = ?",
            (broadcast_id,),
        )
        row = await cursor.fetchone()
        next_position = row["last"] + 1

        await self._db.execute(
            """
            UPDATE broadcast_messages SET delivered_count = ?, failed_count = ?
            WHERE id = ?
            """,
            (delivered_count, failed_count, broadcast_id),
        )
        # Upsert keeps a recipient's original position when a retry updates it
        await self._db.executemany(
            """
            INSERT INTO broadcast_recipients
            (broadcast_id, user_id, user_kind, user_name, status, message_id, error, position)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (broadcast_id, user_id, user_kind) DO UPDATE SET
                status = excluded.status,
                message_id = excluded.message_id,
                error = excluded.error
            """,
            [
                (
                    broadcast_id,
                    r.user_id,
                    r.user_kind.value,
                    r.user_name,
                    r.status.value,
                    r.message_id,
                    r.error,
                    next_position + i,
                )
                for i, r in enumerate(recipients)
            ],
        )
        await self._db.commit()

    async def get_broadcast(self, broadcast_id: str) -> BroadcastMessage | None:
        cursor = await self._db.execute(
            "SELECT * FROM broadcast_messages WHERE id = ?", (broadcast_id,)
        )
        row = await cursor.fetchone()
        if not row:
            return None
        failed = await self.get_broadcast_recipients(broadcast_id, RecipientStatus.FAILED)
        return rows.broadcast(row, [r.user_id for r in failed])

    async def list_broadcasts(
        self, sender_id: str, sender_kind: UserKind
    ) -> list[BroadcastMessage]:
        """Broadcasts sent by one sender, newest first."""
        cursor = await self._db.execute(
            """
            SELECT * FROM broadcast_messages
            WHERE sender_id = ? AND sender_kind = ?
            ORDER BY created_at DESC
            """,
            (sender_id, sender_kind.value),
        )
        broadcasts = []
        for row in await cursor.fetchall():
            failed = await self.get_broadcast_recipients(row["id"], RecipientStatus.FAILED)
            broadcasts.append(rows.broadcast(row, [r.user_id for r in failed]))
        return broadcasts

    async def get_broadcast_recipients(
        self, broadcast_id: str, status: RecipientStatus | None = None
    ) -> list[BroadcastRecipient]:
        if status is None:
            cursor = await self._db.execute(
                """
                SELECT * FROM broadcast_recipients
                WHERE broadcast_id = ? ORDER BY position
                """,
                (broadcast_id,),
            )
        else:
            cursor = await self._db.execute(
                """
                SELECT * FROM broadcast_recipients
                WHERE broadcast_id = ? AND status = ? ORDER BY position
                """,
                (broadcast_id, status.value),
            )
        return [rows.broadcast_recipient(row) for row in await cursor.fetchall()]

    # Scheduling
    @_serialized
    async def insert_scheduled_message(self, scheduled: ScheduledMessage) -> None:
        await self._db.execute(
            """
            INSERT INTO scheduled_messages (
                id, sender_id, sender_kind, sender_name, conversation_id, recipient_id,
                recipient_kind, content, category, priority, scheduled_at, status,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                scheduled.id,
                scheduled.sender_id,
                scheduled.sender_kind.value,
                scheduled.sender_name,
                scheduled.conversation_id,
                scheduled.recipient_id,
                scheduled.recipient_kind.value if scheduled.recipient_kind else None,
                scheduled.content,
                scheduled.category.value,
                scheduled.priority.value,
                to_db(scheduled.scheduled_for),
                scheduled.status.value,
                to_db(scheduled.created_at),
            ),
        )
        await self._db.commit()

    async def list_scheduled_messages(
        self, sender_id: str, sender_kind: UserKind, status: ScheduledStatus
    ) -> list[ScheduledMessage]:
        cursor = await self._db.execute(
            """
            SELECT * FROM scheduled_messages
            WHERE sender_id = ? AND sender_kind = ? AND status = ?
            ORDER BY scheduled_at ASC
            """,
            (sender_id, sender_kind.value, status.value),
        )
        return [rows.scheduled_message(row) for row in await cursor.fetchall()]

    async def get_scheduled_message(
        self, scheduled_id: str
    ) -> ScheduledMessage | None:
        cursor = await self._db.execute(
            "SELECT * FROM scheduled_messages WHERE id = ?", (scheduled_id,)
        )
        row = await cursor.fetchone()
        return rows.scheduled_message(row) if row else None

    @_serialized
    async def cancel_scheduled_message(
        self, scheduled_id: str, sender_id: str, sender_kind: UserKind
    ) -> bool:
        """Move a pending message to cancelled; anything else is left untouched."""
        cursor = await self._db.execute(
            """
            UPDATE scheduled_messages SET status = 'cancelled'
            WHERE id = ? AND sender_id = ? AND sender_kind = ? AND status = 'pending'
            """,
            (scheduled_id, sender_id, sender_kind.value),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    # Templates
    @_serialized
    async def save_template(self, template: MessageTemplate) -> None:
        await self._db.execute(
            """
            INSERT OR REPLACE INTO message_templates
            (id, name, content, category, variables, usage_count, is_active)
            VALUES (?, ?, ?, ?, ?, ?, 1)
            """,
            (
                template.id,
                template.name,
                template.content,
                template.category.value,
                json.dumps(template.variables),
                template.usage_count,
            ),
        )
        await self._db.commit()

    async def list_templates(self) -> list[MessageTemplate]:
        """Active templates, most used first."""
        cursor = await self._db.execute(
            """
            SELECT * FROM message_templates
            WHERE is_active = 1
            ORDER BY usage_count DESC, name ASC
            """
        )
        return [rows.template(row) for row in await cursor.fetchall()]

    # Observability
    @_serialized
    async def save_trace_event(self, event: TraceEvent) -> None:
        await self._db.execute(
            """
            INSERT INTO trace_events (id, event_type, actor, data, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.event_type,
                event.actor,
                json.dumps(event.data, default=str),
                to_db(event.timestamp),
            ),
        )
        await self._db.commit()

    async def get_trace_events(
        self,
        after: datetime | None = None,
        event_types: list[str] | None = None,
        actor: str | None = None,
        limit: int = 100,
    ) -> list[TraceEvent]:
        """Get trace events with optional filters (newest first)."""
        conditions = []
        params: list = []

        if after:
            conditions.append("timestamp > ?")
            params.append(to_db(after))
        if event_types:
            conditions.append(f"event_type IN ({_placeholders(event_types)})")
            params.extend(event_types)
        if actor:
            conditions.append("actor = ?")
            params.append(actor)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        query = f"""
            SELECT id, event_type, actor, data, timestamp
            FROM trace_events
            {where_clause}
            ORDER BY timestamp DESC
            LIMIT ?
        """
        params.append(limit)

        cursor = await self._db.execute(query, params)
        return [rows.trace_event(row) for row in await cursor.fetchall()]

    @_serialized
    async def save_bus_message(self, message: BusMessage) -> None:
        await self._db.execute(
            """
            INSERT INTO bus_messages (id, topic, payload, source, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                message.id,
                message.topic.value,
                json.dumps(message.payload, default=str),
                message.source,
                to_db(message.timestamp),
            ),
        )
        await self._db.commit()

    async def get_bus_messages(self, limit: int = 100) -> list[BusMessage]:
        """Get bus messages (newest first)."""
        cursor = await self._db.execute(
            """
            SELECT id, topic, payload, source, timestamp
            FROM bus_messages
            ORDER BY timestamp DESC
            LIMIT ?
            """,
            (limit,),
        )
        return [rows.bus_message(row) for row in await cursor.fetchall()]
