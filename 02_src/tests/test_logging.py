"""Tests for structured logging."""

import json
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from campus_messaging.errors import NetworkError
from campus_messaging.logging_config import JSONFormatter, log_context
from campus_messaging.models import BroadcastCriteria, BroadcastRequest, CriteriaType, UserKind
from campus_messaging.retry import RetryExecutor
from conftest import no_sleep


def context_of(caplog, message_fragment):
    [record] = [r for r in caplog.records if message_fragment in r.getMessage()]
    return record.context


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_context_is_nested(self):
        logger = logging.getLogger("campus_messaging.tests")
        record = logger.makeRecord(
            logger.name,
            logging.INFO,
            __file__,
            1,
            "Broadcast %s created",
            ("b-1",),
            None,
            extra=log_context(broadcast_id="b-1", kind=UserKind.OFFICE, class_id=None),
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Broadcast b-1 created"
        assert data["service"] == "campus_messaging"
        assert data["context"] == {"broadcast_id": "b-1", "kind": "office"}

    def test_non_json_values_are_stringified(self):
        when = datetime(2024, 3, 1, tzinfo=timezone.utc)
        record = logging.getLogger("t").makeRecord(
            "t", logging.INFO, __file__, 1, "x", (), None, extra=log_context(at=when)
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["context"] == {"at": "2024-03-01 00:00:00+00:00"}

    def test_plain_record_has_no_context(self):
        record = logging.getLogger("t").makeRecord("t", logging.INFO, __file__, 1, "x", (), None)

        assert "context" not in json.loads(JSONFormatter().format(record))


class TestDomainContext:
    """Components attach identifiers to their log records."""

    async def test_retry_exhaustion(self, caplog):
        executor = RetryExecutor(
            probe=AsyncMock(side_effect=ConnectionError("down")), sleep=no_sleep
        )

        with caplog.at_level(logging.WARNING, logger="campus_messaging.retry"):
            with pytest.raises(NetworkError):
                await executor.execute(AsyncMock(), "load roster", max_retries=1)

        assert context_of(caplog, "failed after") == {
            "operation": "load roster",
            "attempts": 2,
        }

    async def test_broadcast_failure(
        self, caplog, broadcasts, conversations, office, monkeypatch
    ):
        async def unreachable(actor, recipient):
            raise RuntimeError("unreachable")

        monkeypatch.setattr(conversations, "get_or_create", unreachable)

        with caplog.at_level(logging.INFO, logger="campus_messaging.messaging"):
            broadcast = await broadcasts.send_broadcast(
                office,
                BroadcastRequest(
                    content="Fire drill at 10",
                    criteria=BroadcastCriteria(type=CriteriaType.ALL_TEACHERS),
                ),
            )

        created = context_of(caplog, "created for")
        assert created["broadcast_id"] == broadcast.id
        assert created["recipient_count"] == 2
        failures = [
            r.context for r in caplog.records if "failed for" in r.getMessage()
        ]
        assert {c["user_id"] for c in failures} == {"t1", "t2"}

    async def test_connection_lifecycle(self, caplog, registry):
        with caplog.at_level(logging.INFO, logger="campus_messaging.realtime"):
            connection = await registry.register("s1", "10A - 2024")
            await registry.close(connection.id)

        assert context_of(caplog, "established") == {
            "connection_id": connection.id,
            "user_id": "s1",
            "class_id": "10A - 2024",
        }
        assert context_of(caplog, "closed")["connection_id"] == connection.id
