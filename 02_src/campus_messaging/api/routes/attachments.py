"""Attachment download route."""

from urllib.parse import quote

from fastapi import APIRouter, Depends, Response

from ...app import Application
from ...models import Actor
from ..dependencies import create_actor_dependency, to_http_exception


def create_attachments_router(app: Application) -> APIRouter:
    router = APIRouter(prefix="/api/attachments", tags=["attachments"])
    current_actor = create_actor_dependency(app)

    @router.get("/{attachment_id}")
    async def download_attachment(
        attachment_id: str, actor: Actor = Depends(current_actor)
    ) -> Response:
        """Stream an attachment to a participant of its conversation."""
        try:
            attachment, data = await app.messages.download_attachment(actor, attachment_id)
        except Exception as e:
            raise to_http_exception(e)
        return Response(
            content=data,
            media_type=attachment.content_type,
            headers={
                "Content-Disposition": (
                    f"attachment; filename*=UTF-8''{quote(attachment.original_filename)}"
                )
            },
        )

    return router
