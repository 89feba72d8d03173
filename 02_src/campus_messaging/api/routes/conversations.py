"""Conversation API routes."""

from fastapi import APIRouter, Depends, Query

from ...app import Application
from ...models import (
    Actor,
    Conversation,
    ConversationAction,
    ConversationFilters,
    ConversationStatus,
    Message,
    SortOption,
    UserKind,
)
from ..dependencies import create_actor_dependency, to_http_exception
from ..schemas import (
    ConversationResponse,
    CreateConversationRequest,
    CreateConversationResponse,
    MessageResponse,
)


def create_conversations_router(app: Application) -> APIRouter:
    """Create conversations router."""
    router = APIRouter(prefix="/api/conversations", tags=["conversations"])
    current_actor = create_actor_dependency(app)

    @router.get("", response_model=list[ConversationResponse])
    async def list_conversations(
        user_type: UserKind | None = Query(None, description="Filter by the other side's kind"),
        status: ConversationStatus = Query(ConversationStatus.ALL),
        starred: bool | None = Query(None),
        sort_by: SortOption = Query(SortOption.RECENT),
        limit: int | None = Query(None, ge=1, le=500),
        offset: int = Query(0, ge=0),
        actor: Actor = Depends(current_actor),
    ) -> list[Conversation]:
        """List the caller's conversations."""
        try:
            filters = ConversationFilters(
                user_kind=user_type,
                status=status,
                starred=starred,
                limit=limit,
                offset=offset,
            )
            return await app.conversations.list_conversations(actor, filters, sort_by)
        except Exception as e:
            raise to_http_exception(e)

    @router.post("", response_model=CreateConversationResponse)
    async def create_conversation(
        request: CreateConversationRequest,
        actor: Actor = Depends(current_actor),
    ) -> dict:
        """Open the conversation with a recipient, creating it if needed."""
        try:
            conversation_id = await app.conversations.create_conversation(
                actor, request.recipient_id, request.recipient_type
            )
            return {"conversation_id": conversation_id}
        except Exception as e:
            raise to_http_exception(e)

    @router.get("/{conversation_id}", response_model=ConversationResponse)
    async def get_conversation(
        conversation_id: str, actor: Actor = Depends(current_actor)
    ) -> Conversation:
        try:
            return await app.conversations.get_conversation(actor, conversation_id)
        except Exception as e:
            raise to_http_exception(e)

    @router.post("/{conversation_id}/actions/{action}", status_code=204)
    async def apply_action(
        conversation_id: str,
        action: ConversationAction,
        actor: Actor = Depends(current_actor),
    ) -> None:
        """Pin, star, archive, resolve, mute (and their inverses), read or unread."""
        try:
            await app.conversations.apply_action(actor, conversation_id, action)
        except Exception as e:
            raise to_http_exception(e)

    @router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
    async def get_messages(
        conversation_id: str,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
        actor: Actor = Depends(current_actor),
    ) -> list[Message]:
        try:
            return await app.messages.get_messages(actor, conversation_id, limit, offset)
        except Exception as e:
            raise to_http_exception(e)

    @router.get("/{conversation_id}/pinned", response_model=list[MessageResponse])
    async def get_pinned_messages(
        conversation_id: str, actor: Actor = Depends(current_actor)
    ) -> list[Message]:
        try:
            return await app.messages.get_pinned_messages(actor, conversation_id)
        except Exception as e:
            raise to_http_exception(e)

    return router
