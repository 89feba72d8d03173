"""Broadcast API routes."""

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from ...app import Application
from ...models import (
    Actor,
    BroadcastCriteria,
    BroadcastMessage,
    BroadcastRecipient,
    BroadcastRequest,
    CriteriaType,
    MessageCategory,
    Priority,
    RecipientStatus,
)
from ..dependencies import create_actor_dependency, to_http_exception
from ..schemas import BroadcastRecipientResponse, BroadcastResponse
from .messages import read_uploads


def create_broadcasts_router(app: Application) -> APIRouter:
    """Create broadcasts router."""
    router = APIRouter(prefix="/api/broadcasts", tags=["broadcasts"])
    current_actor = create_actor_dependency(app)

    @router.post("", response_model=BroadcastResponse, status_code=201)
    async def send_broadcast(
        content: str = Form(...),
        criteria_type: CriteriaType = Form(...),
        class_name: str | None = Form(None),
        session: str | None = Form(None),
        department: str | None = Form(None),
        category: MessageCategory = Form(MessageCategory.ANNOUNCEMENT),
        priority: Priority = Form(Priority.NORMAL),
        attachments: list[UploadFile] | None = File(None),
        actor: Actor = Depends(current_actor),
    ) -> BroadcastMessage:
        """Fan a message out to every user matching the criteria."""
        try:
            request = BroadcastRequest(
                content=content,
                criteria=BroadcastCriteria(
                    type=criteria_type,
                    class_name=class_name,
                    session=session,
                    department=department,
                ),
                category=category,
                priority=priority,
                attachments=await read_uploads(attachments),
            )
            return await app.broadcasts.send_broadcast(actor, request)
        except Exception as e:
            raise to_http_exception(e)

    @router.get("", response_model=list[BroadcastResponse])
    async def get_broadcast_history(
        actor: Actor = Depends(current_actor),
    ) -> list[BroadcastMessage]:
        try:
            return await app.broadcasts.get_broadcast_history(actor)
        except Exception as e:
            raise to_http_exception(e)

    @router.get("/{broadcast_id}", response_model=BroadcastResponse)
    async def get_broadcast_details(
        broadcast_id: str, actor: Actor = Depends(current_actor)
    ) -> BroadcastMessage:
        try:
            return await app.broadcasts.get_broadcast_details(actor, broadcast_id)
        except Exception as e:
            raise to_http_exception(e)

    @router.get("/{broadcast_id}/recipients", response_model=list[BroadcastRecipientResponse])
    async def get_recipients(
        broadcast_id: str,
        status: RecipientStatus | None = Query(None),
        actor: Actor = Depends(current_actor),
    ) -> list[BroadcastRecipient]:
        try:
            return await app.broadcasts.get_recipients(actor, broadcast_id, status)
        except Exception as e:
            raise to_http_exception(e)

    @router.post("/{broadcast_id}/retry", response_model=BroadcastResponse)
    async def retry_failed_broadcast(
        broadcast_id: str, actor: Actor = Depends(current_actor)
    ) -> BroadcastMessage:
        """Re-deliver to the recipients that failed."""
        try:
            return await app.broadcasts.retry_failed_broadcast(actor, broadcast_id)
        except Exception as e:
            raise to_http_exception(e)

    return router
