"""Observability API routes."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from ...app import Application
from ...models import Actor, TraceEvent
from ..dependencies import create_actor_dependency, to_http_exception
from ..schemas import TraceEventResponse


def create_observability_router(app: Application) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api", tags=["observability"])
    current_actor = create_actor_dependency(app)

    @router.get("/trace-events", response_model=list[TraceEventResponse])
    async def get_trace_events(
        after: str | None = Query(None, description="ISO timestamp filter"),
        limit: int = Query(100, ge=1, le=1000),
        event_type: str | None = Query(None, description="Filter by event type"),
        actor_name: str | None = Query(None, alias="actor", description="Filter by actor"),
        actor: Actor = Depends(current_actor),
    ) -> list[TraceEvent]:
        """Get trace events with optional filters."""
        after_dt = None
        if after:
            try:
                after_dt = datetime.fromisoformat(after)
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid after timestamp format")

        try:
            return await app.storage.get_trace_events(
                after=after_dt,
                event_types=[event_type] if event_type else None,
                actor=actor_name,
                limit=limit,
            )
        except Exception as e:
            raise to_http_exception(e)

    return router
