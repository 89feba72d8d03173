"""Tests for Storage."""

import uuid
from datetime import datetime, timedelta, timezone

from campus_messaging.models import (
    BusMessage,
    ConversationFlag,
    ConversationParticipant,
    Message,
    MessageCategory,
    Priority,
    Topic,
    TraceEvent,
    UserKind,
)

from conftest import CLASS_10A


def participants_for(conversation_id, *users):
    return [
        ConversationParticipant(
            conversation_id=conversation_id,
            user_id=u.id,
            user_kind=u.kind,
            user_name=u.name,
        )
        for u in users
    ]


def make_message(conversation_id, sender, content, created_at=None, **kwargs):
    return Message(
        id=str(uuid.uuid4()),
        conversation_id=conversation_id,
        sender_id=sender.id,
        sender_kind=sender.kind,
        sender_name=sender.name,
        content=content,
        category=kwargs.pop("category", MessageCategory.GENERAL),
        priority=kwargs.pop("priority", Priority.NORMAL),
        created_at=created_at or datetime.now(timezone.utc),
        **kwargs,
    )


async def create_conversation(storage, a, b, conversation_id="c1"):
    await storage.insert_conversation(
        conversation_id,
        f"{a.kind.value}:{a.id}|{b.kind.value}:{b.id}",
        participants_for(conversation_id, a, b),
        datetime.now(timezone.utc),
    )
    return conversation_id


class TestStorageInit:
    """Tests for Storage initialization."""

    async def test_init_creates_tables(self, storage):
        """Test that init creates all tables."""
        async with storage._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ) as cursor:
            tables = {row[0] for row in await cursor.fetchall()}
        for table in (
            "students",
            "teachers",
            "office_staff",
            "sessions",
            "conversations",
            "conversation_participants",
            "messages",
            "message_read_status",
            "message_attachments",
            "message_reactions",
            "pinned_messages",
            "broadcast_messages",
            "broadcast_recipients",
            "scheduled_messages",
            "message_templates",
            "trace_events",
            "bus_messages",
        ):
            assert table in tables

    async def test_ping(self, storage):
        await storage.ping()


class TestStorageDirectory:
    """Tests for the user directory."""

    async def test_get_directory_user(self, storage, directory):
        user = await storage.get_directory_user("s1", UserKind.STUDENT)
        assert user is not None
        assert user.name == "Alice Johnson"
        assert user.class_section == CLASS_10A

    async def test_same_id_different_kind_is_not_found(self, storage, directory):
        assert await storage.get_directory_user("s1", UserKind.TEACHER) is None

    async def test_list_by_class_section(self, storage, directory):
        users = await storage.list_directory_users(UserKind.STUDENT, class_section=CLASS_10A)
        assert [u.id for u in users] == ["s1", "s2"]

    async def test_list_by_department(self, storage, directory):
        users = await storage.list_directory_users(UserKind.TEACHER, department="Math")
        assert [u.id for u in users] == ["t2"]

    async def test_session_resolves_user(self, storage, directory):
        await storage.save_session("tok", "t1", UserKind.TEACHER)
        user = await storage.get_session_user("tok", datetime.now(timezone.utc))
        assert user is not None
        assert user.id == "t1"
        assert user.kind == UserKind.TEACHER

    async def test_expired_session_is_ignored(self, storage, directory):
        now = datetime.now(timezone.utc)
        await storage.save_session("old", "t1", UserKind.TEACHER, expires_at=now - timedelta(minutes=1))
        assert await storage.get_session_user("old", now) is None

    async def test_unknown_session(self, storage):
        assert await storage.get_session_user("nope", datetime.now(timezone.utc)) is None


class TestStorageConversations:
    """Tests for conversation persistence."""

    async def test_insert_and_get(self, storage, directory):
        await create_conversation(storage, directory["t1"], directory["s1"])

        conversation = await storage.get_conversation("c1")
        assert conversation is not None
        assert [p.user_id for p in conversation.participants] == ["t1", "s1"]

    async def test_duplicate_pair_key_is_rejected(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1, "c1")

        created = await storage.insert_conversation(
            "c2",
            "teacher:t1|student:s1",
            participants_for("c2", t1, s1),
            datetime.now(timezone.utc),
        )

        assert created is False
        assert await storage.get_conversation("c2") is None
        assert await storage.get_conversation_id_by_pair_key("teacher:t1|student:s1") == "c1"

    async def test_find_conversation_between(self, storage, directory):
        await create_conversation(storage, directory["t1"], directory["s1"])

        found = await storage.find_conversation_between("s1", UserKind.STUDENT, "t1", UserKind.TEACHER)
        missing = await storage.find_conversation_between("s2", UserKind.STUDENT, "t1", UserKind.TEACHER)

        assert found == "c1"
        assert missing is None

    async def test_message_insert_trigger(self, storage, directory):
        """Inserting a message updates the preview and others' unread counts."""
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)

        await storage.insert_message(make_message("c1", t1, "x" * 150))

        conversation = await storage.get_conversation("c1")
        assert conversation.last_message_preview == "x" * 100
        assert conversation.last_message_at is not None
        teacher_row = await storage.get_participant("c1", "t1", UserKind.TEACHER)
        student_row = await storage.get_participant("c1", "s1", UserKind.STUDENT)
        assert teacher_row.unread_count == 0
        assert student_row.unread_count == 1

    async def test_mark_conversation_read(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)
        await storage.insert_message(make_message("c1", t1, "one"))
        await storage.insert_message(make_message("c1", t1, "two"))
        await storage.insert_message(make_message("c1", s1, "mine"))

        inserted = await storage.mark_conversation_read(
            "c1", "s1", UserKind.STUDENT, datetime.now(timezone.utc)
        )
        again = await storage.mark_conversation_read(
            "c1", "s1", UserKind.STUDENT, datetime.now(timezone.utc)
        )

        assert inserted == 2
        assert again == 0
        row = await storage.get_participant("c1", "s1", UserKind.STUDENT)
        assert row.unread_count == 0
        assert row.last_read_at is not None

    async def test_set_participant_flag(self, storage, directory):
        await create_conversation(storage, directory["t1"], directory["s1"])

        changed = await storage.set_participant_flag(
            "c1", "s1", UserKind.STUDENT, ConversationFlag.STARRED, True
        )

        assert changed is True
        assert (await storage.get_participant("c1", "s1", UserKind.STUDENT)).is_starred
        assert not (await storage.get_participant("c1", "t1", UserKind.TEACHER)).is_starred

    async def test_unread_priority(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)
        await storage.insert_message(make_message("c1", t1, "fyi"))
        await storage.insert_message(make_message("c1", t1, "now", priority=Priority.URGENT))

        [for_student] = await storage.list_conversations_for("s1", UserKind.STUDENT)
        [for_teacher] = await storage.list_conversations_for("t1", UserKind.TEACHER)

        assert for_student.unread_priority == Priority.URGENT
        assert for_teacher.unread_priority is None


class TestStorageMessages:
    """Tests for message persistence and search."""

    async def test_get_messages_oldest_first(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        await storage.insert_message(make_message("c1", t1, "second", base + timedelta(minutes=1)))
        await storage.insert_message(make_message("c1", s1, "first", base))

        messages = await storage.get_messages("c1")

        assert [m.content for m in messages] == ["first", "second"]

    async def test_soft_deleted_messages_are_hidden(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)
        message = make_message("c1", t1, "oops")
        await storage.insert_message(message)

        assert await storage.soft_delete_message(message.id, datetime.now(timezone.utc))
        assert not await storage.soft_delete_message(message.id, datetime.now(timezone.utc))
        assert await storage.get_messages("c1") == []
        assert (await storage.get_message(message.id)).is_deleted

    async def test_read_at_comes_from_other_participants(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)
        message = make_message("c1", t1, "hello")
        await storage.insert_message(message)

        assert (await storage.get_message(message.id)).read_at is None
        await storage.mark_conversation_read("c1", "s1", UserKind.STUDENT, datetime.now(timezone.utc))
        assert (await storage.get_message(message.id)).read_at is not None

    async def test_search_requires_every_term(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)
        await storage.insert_message(make_message("c1", t1, "Math exam on Friday"))
        await storage.insert_message(make_message("c1", t1, "Science exam moved"))

        results = await storage.search_messages("s1", UserKind.STUDENT, "EXAM friday", 50, 0)

        assert [r.content for r in results] == ["Math exam on Friday"]

    async def test_search_treats_wildcards_literally(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)
        await storage.insert_message(make_message("c1", t1, "score 100%"))
        await storage.insert_message(make_message("c1", t1, "score 1000"))

        results = await storage.search_messages("s1", UserKind.STUDENT, "100%", 50, 0)

        assert [r.content for r in results] == ["score 100%"]

    async def test_search_only_covers_own_conversations(self, storage, directory):
        t1, s1 = directory["t1"], directory["s1"]
        await create_conversation(storage, t1, s1)
        await storage.insert_message(make_message("c1", t1, "secret plan"))

        assert await storage.search_messages("s2", UserKind.STUDENT, "secret", 50, 0) == []

    async def test_empty_query_returns_nothing(self, storage, directory):
        assert await storage.search_messages("s1", UserKind.STUDENT, "   ", 50, 0) == []


class TestStorageObservability:
    """Tests for trace events and bus messages."""

    async def test_trace_events_filters(self, storage):
        now = datetime.now(timezone.utc)
        for i, event_type in enumerate(["a", "b", "a"]):
            await storage.save_trace_event(
                TraceEvent(
                    id=f"e{i}",
                    event_type=event_type,
                    actor="tester",
                    data={"i": i},
                    timestamp=now + timedelta(seconds=i),
                )
            )

        events = await storage.get_trace_events(event_types=["a"])
        later = await storage.get_trace_events(after=now)

        assert [e.id for e in events] == ["e2", "e0"]
        assert [e.id for e in later] == ["e2", "e1"]

    async def test_bus_messages_roundtrip(self, storage):
        await storage.save_bus_message(
            BusMessage(
                id="b1",
                topic=Topic.MESSAGE_SENT,
                payload={"message_id": "m1"},
                source="test",
                timestamp=datetime.now(timezone.utc),
            )
        )

        [saved] = await storage.get_bus_messages()
        assert saved.topic == Topic.MESSAGE_SENT
        assert saved.payload == {"message_id": "m1"}
