"""Tests for BroadcastDispatcher."""

import pytest

from campus_messaging.errors import (
    AccessDeniedError,
    NoRecipientsError,
    NotFoundError,
    ValidationError,
)
from campus_messaging.messaging.broadcasts import class_section
from campus_messaging.models import (
    BroadcastCriteria,
    BroadcastRequest,
    CriteriaType,
    RecipientStatus,
    Topic,
    UploadedFile,
    UserKind,
)


def announcement(criteria_type=CriteriaType.ALL_STUDENTS, **criteria):
    return BroadcastRequest(
        content="School closes early on Friday",
        criteria=BroadcastCriteria(type=criteria_type, **criteria),
    )


@pytest.fixture
def failing_for(monkeypatch, conversations):
    """Make conversation setup fail for the given user ids."""

    def install(*user_ids):
        original = conversations.get_or_create

        async def flaky(actor, recipient):
            if recipient.id in user_ids:
                raise RuntimeError(f"cannot reach {recipient.id}")
            return await original(actor, recipient)

        monkeypatch.setattr(conversations, "get_or_create", flaky)
        return monkeypatch

    return install


class TestResolveRecipients:
    """Tests for recipient resolution."""

    def test_class_section(self):
        assert class_section("10A", "2024") == "10A - 2024"

    async def test_all_students(self, broadcasts, directory):
        users = await broadcasts.resolve_recipients(
            BroadcastCriteria(type=CriteriaType.ALL_STUDENTS)
        )
        assert sorted(u.id for u in users) == ["s1", "s2", "s3"]

    async def test_specific_class(self, broadcasts, directory):
        users = await broadcasts.resolve_recipients(
            BroadcastCriteria(type=CriteriaType.SPECIFIC_CLASS, class_name="10B", session="2024")
        )
        assert [u.id for u in users] == ["s3"]

    async def test_specific_department(self, broadcasts, directory):
        users = await broadcasts.resolve_recipients(
            BroadcastCriteria(type=CriteriaType.SPECIFIC_DEPARTMENT, department="Math")
        )
        assert [u.id for u in users] == ["t2"]

    async def test_specific_class_requires_class_and_session(self, broadcasts, directory):
        with pytest.raises(ValidationError):
            await broadcasts.resolve_recipients(
                BroadcastCriteria(type=CriteriaType.SPECIFIC_CLASS, class_name="10A")
            )

    async def test_department_required(self, broadcasts, directory):
        with pytest.raises(ValidationError):
            await broadcasts.resolve_recipients(
                BroadcastCriteria(type=CriteriaType.SPECIFIC_DEPARTMENT)
            )


class TestSendBroadcast:
    """Tests for sending broadcasts."""

    async def test_delivers_to_every_recipient(self, broadcasts, storage, teacher):
        broadcast = await broadcasts.send_broadcast(teacher, announcement())

        assert broadcast.recipient_count == 3
        assert broadcast.delivered_count == 3
        assert broadcast.failed_count == 0

        recipients = await broadcasts.get_recipients(teacher, broadcast.id)
        assert all(r.status == RecipientStatus.DELIVERED for r in recipients)
        message = await storage.get_message(recipients[0].message_id)
        assert message.broadcast_id == broadcast.id
        assert message.content == "School closes early on Friday"

    async def test_partial_failure_is_recorded(self, broadcasts, teacher, failing_for):
        failing_for("s2")

        broadcast = await broadcasts.send_broadcast(teacher, announcement())

        assert broadcast.recipient_count == 3
        assert broadcast.delivered_count == 2
        assert broadcast.failed_count == 1
        assert broadcast.failed_recipients == ["s2"]

        [failed] = await broadcasts.get_recipients(
            teacher, broadcast.id, RecipientStatus.FAILED
        )
        assert failed.user_id == "s2"
        assert failed.error == "cannot reach s2"

    async def test_office_broadcast_with_one_failure(
        self, broadcasts, storage, office, failing_for
    ):
        failing_for("s3")

        broadcast = await broadcasts.send_broadcast(office, announcement())

        assert broadcast.sender_kind == UserKind.OFFICE
        assert broadcast.recipient_count == 3
        assert broadcast.delivered_count == 2
        assert broadcast.failed_count == 1
        assert broadcast.failed_recipients == ["s3"]

        stored = await storage.get_broadcast(broadcast.id)
        assert (stored.delivered_count, stored.failed_count) == (2, 1)

    async def test_sender_is_not_a_recipient(self, broadcasts, teacher):
        broadcast = await broadcasts.send_broadcast(
            teacher, announcement(CriteriaType.ALL_TEACHERS)
        )

        recipients = await broadcasts.get_recipients(teacher, broadcast.id)
        assert [r.user_id for r in recipients] == ["t2"]

    async def test_students_cannot_broadcast(self, broadcasts, storage, student):
        with pytest.raises(AccessDeniedError):
            await broadcasts.send_broadcast(student, announcement())
        assert await storage.list_broadcasts("s1", UserKind.STUDENT) == []

    async def test_no_recipients(self, broadcasts, teacher):
        with pytest.raises(NoRecipientsError) as exc_info:
            await broadcasts.send_broadcast(
                teacher, announcement(CriteriaType.SPECIFIC_DEPARTMENT, department="History")
            )

        assert exc_info.value.details["criteria"]["department"] == "History"

    async def test_empty_content_is_rejected(self, broadcasts, teacher):
        request = announcement()
        request.content = "  "

        with pytest.raises(ValidationError):
            await broadcasts.send_broadcast(teacher, request)

    async def test_attachments_are_stored_once(self, broadcasts, storage, teacher):
        request = announcement(CriteriaType.SPECIFIC_CLASS, class_name="10A", session="2024")
        request.attachments = [UploadedFile("timetable.pdf", "application/pdf", b"pdf")]

        broadcast = await broadcasts.send_broadcast(teacher, request)

        recipients = await broadcasts.get_recipients(teacher, broadcast.id)
        paths = set()
        for recipient in recipients:
            message = await storage.get_message(recipient.message_id)
            [attachment] = message.attachments
            paths.add(attachment.storage_path)
        assert len(paths) == 1
        assert paths.pop().startswith(f"broadcasts/{broadcast.id}/")

    async def test_completion_is_published_and_tracked(
        self, broadcasts, event_bus, storage, teacher, failing_for
    ):
        failing_for("s3")
        received = []

        async def handler(bus_message):
            received.append(bus_message)

        event_bus.subscribe(Topic.BROADCAST_COMPLETED, handler)
        broadcast = await broadcasts.send_broadcast(teacher, announcement())

        [bus_message] = received
        assert bus_message.payload["broadcast_id"] == broadcast.id
        assert sorted(d["user_id"] for d in bus_message.payload["delivered"]) == ["s1", "s2"]

        [event] = await storage.get_trace_events(event_types=["broadcast_completed"])
        assert event.data["failed_count"] == 1


class TestRetryAndHistory:
    """Tests for retrying failed recipients and reading history."""

    async def test_retry_delivers_previously_failed(self, broadcasts, teacher, failing_for):
        patch = failing_for("s2")
        broadcast = await broadcasts.send_broadcast(teacher, announcement())
        patch.undo()

        updated = await broadcasts.retry_failed_broadcast(teacher, broadcast.id)

        assert updated.delivered_count == 3
        assert updated.failed_count == 0
        assert updated.failed_recipients == []
        recipients = await broadcasts.get_recipients(teacher, broadcast.id)
        assert [r.status for r in recipients] == [RecipientStatus.DELIVERED] * 3

    async def test_retry_still_failing(self, broadcasts, teacher, failing_for):
        failing_for("s2")
        broadcast = await broadcasts.send_broadcast(teacher, announcement())

        updated = await broadcasts.retry_failed_broadcast(teacher, broadcast.id)

        assert updated.delivered_count == 2
        assert updated.failed_count == 1

    async def test_retry_without_failures_is_noop(self, broadcasts, teacher):
        broadcast = await broadcasts.send_broadcast(teacher, announcement())

        updated = await broadcasts.retry_failed_broadcast(teacher, broadcast.id)

        assert updated.delivered_count == 3

    async def test_history_is_per_sender(self, broadcasts, teacher, office):
        await broadcasts.send_broadcast(teacher, announcement())
        await broadcasts.send_broadcast(office, announcement(CriteriaType.ALL_TEACHERS))

        history = await broadcasts.get_broadcast_history(teacher)

        assert len(history) == 1
        assert history[0].criteria.type == CriteriaType.ALL_STUDENTS

    async def test_details_hidden_from_other_senders(self, broadcasts, teacher, office):
        broadcast = await broadcasts.send_broadcast(teacher, announcement())

        with pytest.raises(NotFoundError):
            await broadcasts.get_broadcast_details(office, broadcast.id)
        with pytest.raises(NotFoundError):
            await broadcasts.get_recipients(office, broadcast.id)
