"""RetryExecutor: connectivity check, per-attempt timeout, exponential backoff."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from ..config import BACKOFF_BASE, BACKOFF_CAP, MAX_RETRIES, NETWORK_TIMEOUT
from ..errors import AccessDeniedError, NetworkError, ValidationError
from ..logging_config import get_logger, log_context
from ..tracker import ITracker

logger = get_logger(__name__)

T = TypeVar("T")

Probe = Callable[[], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]

_NETWORK_MARKERS = ("network", "fetch", "timeout")


def backoff_delay(
    attempt: int, base: float = BACKOFF_BASE, cap: float = BACKOFF_CAP
) -> float:
    """Delay before retry number ``attempt + 1`` (attempt counts from 0)."""
    return min(base * (2**attempt), cap)


def is_network_error(error: BaseException) -> bool:
    """Connectivity- or timeout-shaped errors are the only retryable ones."""
    if isinstance(error, (ConnectionError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _NETWORK_MARKERS)


class RetryExecutor:
    """Runs operations with a connectivity check, timeout and backoff."""

    def __init__(
        self,
        probe: Probe | None = None,
        tracker: ITracker | None = None,
        timeout: float = NETWORK_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        sleep: Sleep = asyncio.sleep,
    ):
        self._probe = probe
        self._tracker = tracker
        self._timeout = timeout
        self._max_retries = max_retries
        self._sleep = sleep
        self._retry_counts: dict[str, int] = {}

    @property
    def retry_counts(self) -> dict[str, int]:
        """Exhausted-retry count per operation name (cleared on success)."""
        return dict(self._retry_counts)

    async def _check_connectivity(self) -> None:
        if self._probe is None:
            return
        try:
            await self._probe()
        except Exception as e:
            raise NetworkError(
                "No connection to the backend. Please check your network and try again.",
                code="offline",
                details={"cause": str(e)},
            ) from e

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str,
        max_retries: int | None = None,
    ) -> T:
        """Run ``operation`` at most ``max_retries + 1`` times.

        Access and validation errors propagate on the first attempt, as does
        any other error that is not network-shaped. Network errors are
        retried with exponential backoff; once attempts run out a
        NetworkError naming the operation is raised.
        """
        retries = self._max_retries if max_retries is None else max_retries
        last_error: BaseException | None = None
        attempts = 0

        for attempt in range(retries + 1):
            attempts = attempt + 1
            try:
                await self._check_connectivity()
                result = await asyncio.wait_for(operation(), timeout=self._timeout)
                self._retry_counts.pop(name, None)
                return result
            except (AccessDeniedError, ValidationError):
                raise
            except asyncio.TimeoutError as e:
                last_error = NetworkError(
                    f"Operation {name} timed out after {self._timeout}s",
                    code="timeout",
                )
                last_error.__cause__ = e
            except Exception as e:
                if not is_network_error(e):
                    raise
                last_error = e

            if attempt < retries:
                delay = backoff_delay(attempt)
                logger.warning(
                    "Operation %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    name,
                    attempts,
                    retries + 1,
                    delay,
                    last_error,
                    extra=log_context(operation=name, attempt=attempts, delay=delay),
                )
                await self._sleep(delay)

        self._retry_counts[name] = self._retry_counts.get(name, 0) + 1
        logger.error(
            "Operation %s failed after %d attempts: %s",
            name,
            attempts,
            last_error,
            extra=log_context(operation=name, attempts=attempts),
        )
        if self._tracker:
            await self._tracker.track(
                event_type="retry_exhausted",
                actor="retry_executor",
                data={"operation": name, "attempts": attempts, "error": str(last_error)},
            )

        raise NetworkError(
            f"Failed to {name} after {attempts} attempts. "
            "Please check your connection and try again.",
            code="retries_exhausted",
            details={"operation": name, "attempts": attempts},
        ) from last_error
