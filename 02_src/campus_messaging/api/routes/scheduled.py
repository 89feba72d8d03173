"""Scheduled message API routes."""

from fastapi import APIRouter, Depends

from ...app import Application
from ...models import Actor, ScheduledMessage, ScheduleMessageRequest
from ..dependencies import create_actor_dependency, to_http_exception
from ..schemas import ChangedResponse, ScheduledMessageResponse
from ..schemas import ScheduleMessageRequest as ScheduleBody


def create_scheduled_router(app: Application) -> APIRouter:
    router = APIRouter(prefix="/api/scheduled-messages", tags=["scheduled"])
    current_actor = create_actor_dependency(app)

    @router.post("", response_model=ScheduledMessageResponse, status_code=201)
    async def schedule_message(
        body: ScheduleBody, actor: Actor = Depends(current_actor)
    ) -> ScheduledMessage:
        """Persist a message for delivery at a future time."""
        try:
            return await app.scheduler.schedule_message(
                actor,
                ScheduleMessageRequest(
                    content=body.content,
                    scheduled_for=body.scheduled_for,
                    conversation_id=body.conversation_id,
                    recipient_id=body.recipient_id,
                    recipient_kind=body.recipient_type,
                    category=body.category,
                    priority=body.priority,
                ),
            )
        except Exception as e:
            raise to_http_exception(e)

    @router.get("", response_model=list[ScheduledMessageResponse])
    async def get_scheduled_messages(
        actor: Actor = Depends(current_actor),
    ) -> list[ScheduledMessage]:
        try:
            return await app.scheduler.get_scheduled_messages(actor)
        except Exception as e:
            raise to_http_exception(e)

    @router.delete("/{scheduled_id}", response_model=ChangedResponse)
    async def cancel_scheduled_message(
        scheduled_id: str, actor: Actor = Depends(current_actor)
    ) -> dict:
        """Cancel a pending message; ``changed`` is false if it was no longer pending."""
        try:
            cancelled = await app.scheduler.cancel_scheduled_message(actor, scheduled_id)
            return {"changed": cancelled}
        except Exception as e:
            raise to_http_exception(e)

    return router
