"""Message API routes."""

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile

from ...app import Application
from ...config import MAX_FILE_SIZE
from ...errors import FileUploadError
from ...models import (
    Actor,
    Attachment,
    ForwardMessageRequest,
    Message,
    MessageCategory,
    Priority,
    ReactionType,
    SearchResult,
    SendMessageRequest,
    UploadedFile,
    UserKind,
)
from ..dependencies import create_actor_dependency, to_http_exception
from ..schemas import (
    AttachmentResponse,
    ChangedResponse,
    MessageResponse,
    SearchResultResponse,
)
from ..schemas import ForwardMessageRequest as ForwardBody


def _too_large(f: UploadFile, size: int, max_size: int) -> FileUploadError:
    return FileUploadError(
        f"File size ({size / 1024 / 1024:.2f}MB) exceeds maximum allowed size "
        f"of {max_size / 1024 / 1024:g}MB",
        code="file_too_large",
        details={"filename": f.filename, "size": size},
    )


async def read_uploads(
    files: list[UploadFile] | None, max_size: int = MAX_FILE_SIZE
) -> list[UploadedFile]:
    """Buffer multipart uploads into UploadedFile values.

    Oversized files are rejected from the declared size before anything is
    read, and reads never go past ``max_size + 1`` bytes.
    """
    uploaded = []
    for f in files or []:
        if f.size is not None and f.size > max_size:
            raise _too_large(f, f.size, max_size)
        data = await f.read(max_size + 1)
        if len(data) > max_size:
            raise _too_large(f, len(data), max_size)
        uploaded.append(
            UploadedFile(
                filename=f.filename or "file",
                content_type=f.content_type or "application/octet-stream",
                data=data,
            )
        )
    return uploaded


def create_messages_router(app: Application) -> APIRouter:
    """Create messages router."""
    router = APIRouter(prefix="/api/messages", tags=["messages"])
    current_actor = create_actor_dependency(app)

    @router.post("", response_model=MessageResponse, status_code=201)
    async def send_message(
        content: str = Form(""),
        conversation_id: str | None = Form(None),
        recipient_id: str | None = Form(None),
        recipient_type: UserKind | None = Form(None),
        category: MessageCategory = Form(MessageCategory.GENERAL),
        priority: Priority = Form(Priority.NORMAL),
        reply_to_id: str | None = Form(None),
        attachments: list[UploadFile] | None = File(None),
        actor: Actor = Depends(current_actor),
    ) -> Message:
        """Send a message with optional attachments (multipart form)."""
        try:
            request = SendMessageRequest(
                content=content,
                conversation_id=conversation_id,
                recipient_id=recipient_id,
                recipient_kind=recipient_type,
                category=category,
                priority=priority,
                reply_to_id=reply_to_id,
                attachments=await read_uploads(attachments),
            )
            return await app.messages.send_message(actor, request)
        except Exception as e:
            raise to_http_exception(e)

    @router.get("/search", response_model=list[SearchResultResponse])
    async def search_messages(
        q: str = Query(..., min_length=1),
        conversation_id: str | None = Query(None),
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        actor: Actor = Depends(current_actor),
    ) -> list[SearchResult]:
        try:
            return await app.messages.search_messages(
                actor, q, conversation_id=conversation_id, limit=limit, offset=offset
            )
        except Exception as e:
            raise to_http_exception(e)

    @router.post("/{message_id}/forward", response_model=MessageResponse, status_code=201)
    async def forward_message(
        message_id: str, body: ForwardBody, actor: Actor = Depends(current_actor)
    ) -> Message:
        try:
            return await app.messages.forward_message(
                actor,
                ForwardMessageRequest(
                    message_id=message_id,
                    recipient_id=body.recipient_id,
                    recipient_kind=body.recipient_type,
                    additional_context=body.additional_context,
                ),
            )
        except Exception as e:
            raise to_http_exception(e)

    @router.delete("/{message_id}", status_code=204)
    async def delete_message(message_id: str, actor: Actor = Depends(current_actor)) -> None:
        try:
            await app.messages.delete_message(actor, message_id)
        except Exception as e:
            raise to_http_exception(e)

    @router.post("/{message_id}/pin", response_model=ChangedResponse)
    async def pin_message(message_id: str, actor: Actor = Depends(current_actor)) -> dict:
        try:
            return {"changed": await app.messages.pin_message(actor, message_id)}
        except Exception as e:
            raise to_http_exception(e)

    @router.delete("/{message_id}/pin", response_model=ChangedResponse)
    async def unpin_message(message_id: str, actor: Actor = Depends(current_actor)) -> dict:
        try:
            return {"changed": await app.messages.unpin_message(actor, message_id)}
        except Exception as e:
            raise to_http_exception(e)

    @router.post("/{message_id}/reactions/{reaction}", response_model=ChangedResponse)
    async def add_reaction(
        message_id: str, reaction: ReactionType, actor: Actor = Depends(current_actor)
    ) -> dict:
        try:
            return {"changed": await app.messages.add_reaction(actor, message_id, reaction)}
        except Exception as e:
            raise to_http_exception(e)

    @router.delete("/{message_id}/reactions/{reaction}", response_model=ChangedResponse)
    async def remove_reaction(
        message_id: str, reaction: ReactionType, actor: Actor = Depends(current_actor)
    ) -> dict:
        try:
            changed = await app.messages.remove_reaction(actor, message_id, reaction)
            return {"changed": changed}
        except Exception as e:
            raise to_http_exception(e)

    @router.post(
        "/{message_id}/attachments", response_model=AttachmentResponse, status_code=201
    )
    async def upload_attachment(
        message_id: str,
        file: UploadFile = File(...),
        actor: Actor = Depends(current_actor),
    ) -> Attachment:
        """Attach one more file to an existing message."""
        try:
            uploaded = await read_uploads([file])
            return await app.messages.upload_attachment(actor, message_id, uploaded[0])
        except Exception as e:
            raise to_http_exception(e)

    return router
