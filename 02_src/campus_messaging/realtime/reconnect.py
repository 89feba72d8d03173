"""Client reconnection backoff contract."""

from ..config import RECONNECT_BASE_DELAY, RECONNECT_MAX_DELAY


class ReconnectPolicy:
    """Exponential backoff 1s, 2s, 4s, 8s ... capped, reset after a success."""

    def __init__(
        self,
        base_delay: float = RECONNECT_BASE_DELAY,
        max_delay: float = RECONNECT_MAX_DELAY,
        max_attempts: int | None = None,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self.attempts = 0

    def delay(self, attempt: int) -> float:
        """Delay before reconnect ``attempt`` (1-based)."""
        if attempt < 1:
            raise ValueError("attempt must be >= 1")
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def next_delay(self) -> float | None:
        """Advance the counter; None once ``max_attempts`` is exhausted."""
        if self.max_attempts is not None and self.attempts >= self.max_attempts:
            return None
        self.attempts += 1
        return self.delay(self.attempts)

    def reset(self) -> None:
        self.attempts = 0

    def as_headers(self) -> dict[str, str]:
        """Backoff bounds in milliseconds, sent with every SSE response."""
        return {
            "X-Reconnect-Base-Delay": str(int(self.base_delay * 1000)),
            "X-Reconnect-Max-Delay": str(int(self.max_delay * 1000)),
        }
