"""Real-time push routes (server-sent events)."""

from fastapi import APIRouter, Depends, HTTPException
from sse_starlette.sse import EventSourceResponse

from ...app import Application
from ...logging_config import get_logger
from ...models import Actor, AttendanceMark, DirectoryUser, UserKind
from ...realtime import ReconnectPolicy, event_stream
from ..dependencies import (
    create_actor_dependency,
    create_user_dependency,
    to_http_exception,
)
from ..schemas import AttendanceRequest

logger = get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def stream_headers(policy: ReconnectPolicy | None = None) -> dict[str, str]:
    """SSE response headers, including the client reconnect backoff."""
    return {**SSE_HEADERS, **(policy or ReconnectPolicy()).as_headers()}


def create_realtime_router(app: Application) -> APIRouter:
    """Create realtime router."""
    router = APIRouter(prefix="/api/realtime", tags=["realtime"])
    current_user = create_user_dependency(app)
    current_actor = create_actor_dependency(app)

    @router.get("/stream")
    async def stream(user: DirectoryUser = Depends(current_user)) -> EventSourceResponse:
        """Open the caller's event stream.

        Students are also subscribed to their class, so they receive
        class-wide summaries.
        """
        class_id = user.class_section if user.kind == UserKind.STUDENT else None
        connection = await app.realtime.connect(user.id, class_id)
        logger.info("SSE stream opened for %s:%s", user.kind.value, user.id)
        return EventSourceResponse(
            event_stream(app.realtime.registry, connection),
            headers=stream_headers(),
        )

    @router.post("/attendance", status_code=202)
    async def publish_attendance(
        request: AttendanceRequest, actor: Actor = Depends(current_actor)
    ) -> dict:
        """Push freshly marked attendance to students and their class."""
        if actor.kind == UserKind.STUDENT:
            raise HTTPException(status_code=403, detail="Students cannot mark attendance")
        try:
            marks = [
                AttendanceMark(
                    student_id=m.student_id,
                    status=m.status,
                    period=m.period,
                    subject=m.subject,
                )
                for m in request.marks
            ]
            await app.attendance.publish_marks(
                request.class_id, request.date, actor.id, marks
            )
            return {"accepted": len(marks)}
        except Exception as e:
            raise to_http_exception(e)

    @router.get("/connections")
    async def connection_count(actor: Actor = Depends(current_actor)) -> dict:
        return {"connections": len(app.realtime.registry)}

    return router
