"""Tests for the HTTP API."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from campus_messaging.api import create_fastapi_app
from campus_messaging.app import Application
from campus_messaging.models import EventType, UserKind
from conftest import CLASS_10A, DIRECTORY


def auth(user_id):
    return {"Authorization": f"Bearer token-{user_id}"}


@pytest_asyncio.fixture
async def application(tmp_path):
    """Started application with a seeded directory and one session per user."""
    app = Application(
        db_path=":memory:", attachments_dir=str(tmp_path / "files"), redis_url=""
    )
    await app.start()
    for user in DIRECTORY:
        await app.storage.save_directory_user(user)
        await app.storage.save_session(f"token-{user.id}", user.id, user.kind)
    yield app
    await app.stop()


@pytest_asyncio.fixture
async def client(application):
    # ASGITransport does not run the lifespan; the fixture starts the application
    fastapi_app = create_fastapi_app(application)
    transport = httpx.ASGITransport(app=fastapi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def send(client, sender, recipient, content="Hello", **extra):
    response = await client.post(
        "/api/messages",
        data={"content": content, "recipient_id": recipient, "recipient_type": "student", **extra},
        headers=auth(sender),
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestApplication:
    """Tests for Application lifecycle."""

    @pytest.mark.asyncio
    async def test_components_require_start(self):
        """Test that components are unavailable before start()."""
        app = Application(db_path=":memory:", redis_url="")

        with pytest.raises(RuntimeError, match="Application not started"):
            app.messages

    @pytest.mark.asyncio
    async def test_start_wires_components(self, application):
        """Test that start() shares one storage and bus across components."""
        assert application.local_attachments_dir is not None
        assert len(application.realtime.registry) == 0
        assert application.tracker._storage is application.storage


class TestAuthAndHealth:
    @pytest.mark.asyncio
    async def test_health_is_public(self, client):
        response = await client.get("/api/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": "ok", "connections": 0}

    @pytest.mark.asyncio
    async def test_missing_session(self, client):
        response = await client.get("/api/conversations")

        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    @pytest.mark.asyncio
    async def test_unknown_session(self, client):
        response = await client.get(
            "/api/conversations", headers={"Authorization": "Bearer nope"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_session_cookie(self, client):
        response = await client.get(
            "/api/templates", cookies={"session-token": "token-t1"}
        )

        assert response.status_code == 200
        assert len(response.json()) == 12

    @pytest.mark.asyncio
    async def test_expired_session(self, client, application):
        expired = datetime.now(timezone.utc) - timedelta(minutes=1)
        await application.storage.save_session("old", "t1", UserKind.TEACHER, expired)

        response = await client.get("/api/templates", headers={"Authorization": "Bearer old"})

        assert response.status_code == 401


class TestMessagingRoutes:
    """Tests for conversation and message routes."""

    @pytest.mark.asyncio
    async def test_send_and_read(self, client):
        sent = await send(client, "t1", "s1", "Quiz tomorrow", priority="urgent")

        assert sent["status"] == "sent"
        assert sent["priority"] == "urgent"

        conversations = (await client.get("/api/conversations", headers=auth("s1"))).json()
        assert len(conversations) == 1
        assert conversations[0]["unread_priority"] == "urgent"

        messages = await client.get(
            f"/api/conversations/{sent['conversation_id']}/messages", headers=auth("s1")
        )
        assert [m["content"] for m in messages.json()] == ["Quiz tomorrow"]

    @pytest.mark.asyncio
    async def test_empty_message_is_bad_request(self, client):
        response = await client.post(
            "/api/messages",
            data={"content": " ", "recipient_id": "s1", "recipient_type": "student"},
            headers=auth("t1"),
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_foreign_conversation_is_forbidden(self, client):
        sent = await send(client, "t1", "s1")

        response = await client.get(
            f"/api/conversations/{sent['conversation_id']}/messages", headers=auth("s2")
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_not_found(self, client):
        response = await client.get("/api/conversations/missing", headers=auth("t1"))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_conversation_actions(self, client):
        sent = await send(client, "t1", "s1")
        conversation_id = sent["conversation_id"]

        response = await client.post(
            f"/api/conversations/{conversation_id}/actions/star", headers=auth("s1")
        )
        assert response.status_code == 204

        starred = await client.get(
            "/api/conversations", params={"starred": "true"}, headers=auth("s1")
        )
        assert [c["id"] for c in starred.json()] == [conversation_id]

    @pytest.mark.asyncio
    async def test_attachment_upload_and_download(self, client):
        response = await client.post(
            "/api/messages",
            data={"content": "Notes", "recipient_id": "s1", "recipient_type": "student"},
            files=[("attachments", ("notes.pdf", b"%PDF-1.4 notes", "application/pdf"))],
            headers=auth("t1"),
        )
        assert response.status_code == 201, response.text
        [attachment] = response.json()["attachments"]
        assert attachment["url"].startswith("/attachments/messages/")

        download = await client.get(f"/api/attachments/{attachment['id']}", headers=auth("s1"))
        assert download.status_code == 200
        assert download.content == b"%PDF-1.4 notes"
        assert "notes.pdf" in download.headers["content-disposition"]

        denied = await client.get(f"/api/attachments/{attachment['id']}", headers=auth("s2"))
        assert denied.status_code == 403

    @pytest.mark.asyncio
    async def test_reactions_pins_and_search(self, client):
        sent = await send(client, "t1", "s1", "Science fair on Friday")
        message_id = sent["id"]

        first = await client.post(
            f"/api/messages/{message_id}/reactions/acknowledge", headers=auth("s1")
        )
        again = await client.post(
            f"/api/messages/{message_id}/reactions/acknowledge", headers=auth("s1")
        )
        assert first.json() == {"changed": True}
        assert again.json() == {"changed": False}

        pin = await client.post(f"/api/messages/{message_id}/pin", headers=auth("s1"))
        assert pin.json() == {"changed": True}

        results = await client.get(
            "/api/messages/search", params={"q": "science friday"}, headers=auth("s1")
        )
        assert [r["message_id"] for r in results.json()] == [message_id]

    @pytest.mark.asyncio
    async def test_forward_and_delete(self, client):
        sent = await send(client, "t1", "s1", "Bus leaves at 8")

        forwarded = await client.post(
            f"/api/messages/{sent['id']}/forward",
            json={"recipient_id": "o1", "recipient_type": "office"},
            headers=auth("t1"),
        )
        assert forwarded.status_code == 201
        assert forwarded.json()["is_forwarded"] is True

        not_mine = await client.delete(f"/api/messages/{sent['id']}", headers=auth("s1"))
        assert not_mine.status_code == 403
        deleted = await client.delete(f"/api/messages/{sent['id']}", headers=auth("t1"))
        assert deleted.status_code == 204


class TestBroadcastAndScheduleRoutes:
    @pytest.mark.asyncio
    async def test_broadcast(self, client):
        response = await client.post(
            "/api/broadcasts",
            data={
                "content": "Sports day",
                "criteria_type": "specific_class",
                "class_name": "10A",
                "session": "2024",
            },
            headers=auth("t1"),
        )

        assert response.status_code == 201, response.text
        broadcast = response.json()
        assert broadcast["recipient_count"] == 2
        assert broadcast["delivered_count"] == 2

        recipients = await client.get(
            f"/api/broadcasts/{broadcast['id']}/recipients",
            params={"status": "delivered"},
            headers=auth("t1"),
        )
        assert sorted(r["user_id"] for r in recipients.json()) == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_student_broadcast_is_forbidden(self, client):
        response = await client.post(
            "/api/broadcasts",
            data={"content": "Party", "criteria_type": "all_students"},
            headers=auth("s1"),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_schedule_and_cancel(self, client):
        scheduled_for = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()

        created = await client.post(
            "/api/scheduled-messages",
            json={
                "content": "Reminder",
                "scheduled_for": scheduled_for,
                "recipient_id": "s1",
                "recipient_type": "student",
            },
            headers=auth("t1"),
        )
        assert created.status_code == 201, created.text
        scheduled_id = created.json()["id"]

        cancelled = await client.delete(
            f"/api/scheduled-messages/{scheduled_id}", headers=auth("t1")
        )
        assert cancelled.json() == {"changed": True}
        pending = await client.get("/api/scheduled-messages", headers=auth("t1"))
        assert pending.json() == []


class TestRealtimeRoutes:
    @pytest.mark.asyncio
    async def test_attendance_reaches_student_stream(self, client, application):
        connection = await application.realtime.connect("s1", CLASS_10A)

        response = await client.post(
            "/api/realtime/attendance",
            json={
                "class_id": CLASS_10A,
                "date": "2024-03-01",
                "marks": [{"student_id": "s1", "status": "SICK", "period": 2}],
            },
            headers=auth("t1"),
        )

        assert response.status_code == 202
        assert response.json() == {"accepted": 1}
        events = []
        while not connection.queue.empty():
            events.append(connection.queue.get_nowait())
        assert [e.type for e in events] == [
            EventType.PING,
            EventType.ATTENDANCE_UPDATE,
            EventType.METRICS_UPDATE,
        ]

    @pytest.mark.asyncio
    async def test_stream_response_advertises_reconnect_backoff(self, application):
        fastapi_app = create_fastapi_app(application)
        [route] = [
            r for r in fastapi_app.routes if getattr(r, "path", "") == "/api/realtime/stream"
        ]

        response = await route.endpoint(user=DIRECTORY[0])

        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        assert response.headers["x-accel-buffering"] == "no"
        assert response.headers["x-reconnect-base-delay"] == "1000"
        assert response.headers["x-reconnect-max-delay"] == "30000"
        assert application.realtime.registry.for_user("s1")

    @pytest.mark.asyncio
    async def test_students_cannot_mark_attendance(self, client):
        response = await client.post(
            "/api/realtime/attendance",
            json={"class_id": CLASS_10A, "date": "2024-03-01", "marks": []},
            headers=auth("s1"),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_trace_events(self, client):
        await send(client, "t1", "s1")

        response = await client.get(
            "/api/trace-events",
            params={"event_type": "bus_message_published"},
            headers=auth("t1"),
        )

        assert response.status_code == 200
        assert response.json()[0]["data"]["topic"] == "message_sent"
