"""Tests for RetryExecutor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from campus_messaging.errors import AccessDeniedError, NetworkError, ValidationError
from campus_messaging.retry import RetryExecutor, backoff_delay, is_network_error


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestBackoff:
    def test_doubles_until_cap(self):
        assert [backoff_delay(a) for a in range(6)] == [1, 2, 4, 8, 10, 10]

    def test_network_error_classification(self):
        assert is_network_error(ConnectionError("reset"))
        assert is_network_error(asyncio.TimeoutError())
        assert is_network_error(RuntimeError("Failed to fetch"))
        assert is_network_error(RuntimeError("Request Timeout"))
        assert not is_network_error(RuntimeError("constraint failed"))


class TestRetryExecutor:
    """Tests for retry behaviour."""

    async def test_success_first_attempt(self):
        executor = RetryExecutor(sleep=RecordingSleep())
        operation = AsyncMock(return_value="ok")

        assert await executor.execute(operation, "send message") == "ok"
        assert operation.await_count == 1

    async def test_retries_network_errors_with_backoff(self):
        sleep = RecordingSleep()
        executor = RetryExecutor(sleep=sleep)
        operation = AsyncMock(
            side_effect=[ConnectionError("down"), ConnectionError("down"), "ok"]
        )

        assert await executor.execute(operation, "send message") == "ok"
        assert operation.await_count == 3
        assert sleep.delays == [1, 2]

    async def test_exhaustion_raises_network_error(self):
        sleep = RecordingSleep()
        tracker = AsyncMock()
        executor = RetryExecutor(tracker=tracker, sleep=sleep)
        operation = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(NetworkError) as exc_info:
            await executor.execute(operation, "send message")

        assert operation.await_count == 4
        assert sleep.delays == [1, 2, 4]
        assert "send message" in exc_info.value.message
        assert exc_info.value.code == "retries_exhausted"
        assert executor.retry_counts == {"send message": 1}
        tracker.track.assert_awaited_once()
        assert tracker.track.await_args.kwargs["event_type"] == "retry_exhausted"

    async def test_success_clears_retry_count(self):
        executor = RetryExecutor(sleep=RecordingSleep(), max_retries=0)
        with pytest.raises(NetworkError):
            await executor.execute(AsyncMock(side_effect=ConnectionError()), "load")
        assert executor.retry_counts == {"load": 1}

        await executor.execute(AsyncMock(return_value=None), "load")
        assert executor.retry_counts == {}

    @pytest.mark.parametrize(
        "error",
        [AccessDeniedError("no"), ValidationError("bad"), RuntimeError("constraint failed")],
    )
    async def test_non_network_errors_are_not_retried(self, error):
        sleep = RecordingSleep()
        executor = RetryExecutor(sleep=sleep)
        operation = AsyncMock(side_effect=error)

        with pytest.raises(type(error)):
            await executor.execute(operation, "send message")

        assert operation.await_count == 1
        assert sleep.delays == []

    async def test_timeout_counts_as_network_failure(self):
        executor = RetryExecutor(timeout=0.01, max_retries=1, sleep=RecordingSleep())

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(NetworkError) as exc_info:
            await executor.execute(slow, "load messages")

        assert exc_info.value.details["attempts"] == 2

    async def test_failed_probe_skips_the_operation(self):
        probe = AsyncMock(side_effect=OSError("unreachable"))
        executor = RetryExecutor(probe=probe, max_retries=1, sleep=RecordingSleep())
        operation = AsyncMock()

        with pytest.raises(NetworkError):
            await executor.execute(operation, "send message")

        assert probe.await_count == 2
        operation.assert_not_awaited()
