"""AttendanceBroadcaster: push attendance marks to students and their class."""

import time
from datetime import datetime, timezone
from typing import Any

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import AttendanceMark, AttendanceStatus, BusMessage, EventType, Topic
from .broadcaster import EventBroadcaster, make_event

logger = get_logger(__name__)


def attendance_payload(
    class_id: str, date: str, marked_by: str, marks: list[AttendanceMark]
) -> dict[str, Any]:
    """Bus payload for Topic.ATTENDANCE_MARKED."""
    return {
        "class_id": class_id,
        "date": date,
        "marked_by": marked_by,
        "marks": [
            {
                "student_id": m.student_id,
                "status": AttendanceStatus(m.status).value,
                "period": m.period,
                "subject": m.subject,
            }
            for m in marks
        ],
    }


class AttendanceBroadcaster:
    """Turns attendance marks into real-time events."""

    def __init__(self, broadcaster: EventBroadcaster, event_bus: IEventBus | None = None):
        self._broadcaster = broadcaster
        self._event_bus = event_bus

    async def start(self) -> None:
        if self._event_bus:
            self._event_bus.subscribe(Topic.ATTENDANCE_MARKED, self._handle_marked)

    async def stop(self) -> None:
        if self._event_bus:
            self._event_bus.unsubscribe(Topic.ATTENDANCE_MARKED, self._handle_marked)

    async def _handle_marked(self, bus_message: BusMessage) -> None:
        payload = bus_message.payload
        marks = [
            AttendanceMark(
                student_id=m["student_id"],
                status=AttendanceStatus(m["status"]),
                period=m.get("period"),
                subject=m.get("subject"),
            )
            for m in payload.get("marks", [])
        ]
        await self.broadcast_marks(
            payload["class_id"], payload["date"], payload["marked_by"], marks
        )

    async def publish_marks(
        self, class_id: str, date: str, marked_by: str, marks: list[AttendanceMark]
    ) -> None:
        """Announce marks on the bus; without a bus, push them directly."""
        if self._event_bus is None:
            await self.broadcast_marks(class_id, date, marked_by, marks)
            return
        await self._event_bus.emit(
            Topic.ATTENDANCE_MARKED,
            attendance_payload(class_id, date, marked_by, marks),
            source="attendance",
        )

    async def broadcast_attendance_update(
        self, class_id: str, date: str, marked_by: str, mark: AttendanceMark
    ) -> int:
        """Send one ``attendance_update`` to the student's connections."""
        now = datetime.now(timezone.utc)
        event = make_event(
            EventType.ATTENDANCE_UPDATE,
            {
                "studentId": mark.student_id,
                "date": date,
                "period": mark.period,
                "status": AttendanceStatus(mark.status).value,
                "subject": mark.subject or "Unknown",
                "markedBy": marked_by,
                "classId": class_id,
                "timestamp": now.isoformat(),
            },
            event_id=f"attendance_{mark.student_id}_{mark.period or 'all'}_{int(time.time() * 1000)}",
        )
        return await self._broadcaster.send_to_user(mark.student_id, event)

    async def broadcast_marks(
        self, class_id: str, date: str, marked_by: str, marks: list[AttendanceMark]
    ) -> int:
        """Per-student updates, then one class summary ``metrics_update``.

        Returns the number of streams the summary reached.
        """
        for mark in marks:
            try:
                await self.broadcast_attendance_update(class_id, date, marked_by, mark)
            except Exception as e:
                logger.error(
                    "Failed to broadcast attendance for student %s: %s",
                    mark.student_id,
                    e,
                )

        summary = {status.value.lower(): 0 for status in AttendanceStatus}
        for mark in marks:
            summary[AttendanceStatus(mark.status).value.lower()] += 1

        event = make_event(
            EventType.METRICS_UPDATE,
            {
                "type": "class_summary",
                "classId": class_id,
                "date": date,
                "studentsUpdated": len(marks),
                "markedBy": marked_by,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "summary": summary,
            },
            event_id=f"class_summary_{class_id}_{int(time.time() * 1000)}",
        )
        sent = await self._broadcaster.broadcast_to_class(class_id, event)
        logger.info(
            "Attendance broadcast for %d students in class %s", len(marks), class_id
        )
        return sent
