"""Message template routes."""

from fastapi import APIRouter, Depends

from ...app import Application
from ...models import Actor, MessageTemplate
from ..dependencies import create_actor_dependency, to_http_exception
from ..schemas import TemplateResponse


def create_templates_router(app: Application) -> APIRouter:
    router = APIRouter(prefix="/api/templates", tags=["templates"])
    current_actor = create_actor_dependency(app)

    @router.get("", response_model=list[TemplateResponse])
    async def list_templates(actor: Actor = Depends(current_actor)) -> list[MessageTemplate]:
        try:
            return await app.templates.list_templates()
        except Exception as e:
            raise to_http_exception(e)

    return router
