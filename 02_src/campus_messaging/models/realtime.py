"""Real-time (server push) data models."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class EventType(str, Enum):
    """Tagged event variants pushed to connected clients."""

    ATTENDANCE_UPDATE = "attendance_update"
    METRICS_UPDATE = "metrics_update"
    NOTIFICATION = "notification"
    PING = "ping"


@dataclass
class RealtimeEvent:
    """An event pushed over a live stream."""

    type: EventType
    data: dict
    timestamp: datetime
    id: str | None = None


@dataclass
class Connection:
    """A live server-push stream owned by one user."""

    id: str
    user_id: str
    created_at: datetime
    last_heartbeat: datetime
    class_id: str | None = None
    queue: asyncio.Queue = field(default_factory=asyncio.Queue, repr=False)
    closed: bool = False

    def push(self, event: RealtimeEvent) -> bool:
        """Enqueue an event; pushing to a closed stream is a no-op."""
        if self.closed:
            return False
        self.queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake the stream consumer so it can exit
        self.queue.put_nowait(None)


class AttendanceStatus(str, Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    SICK = "SICK"
    LEAVE = "LEAVE"


@dataclass
class AttendanceMark:
    """One student's attendance for a date (and optionally a period)."""

    student_id: str
    status: AttendanceStatus
    period: int | None = None
    subject: str | None = None
