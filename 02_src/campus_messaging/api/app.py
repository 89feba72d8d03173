"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from ..app import Application
from ..config import cors_origins
from .routes import (
    attachments,
    broadcasts,
    conversations,
    health,
    messages,
    observability,
    realtime,
    scheduled,
    templates,
)


# Global application instance
_app: Application | None = None


def get_app() -> Application:
    """Get the global application instance."""
    global _app
    if not _app:
        _app = Application()
    return _app


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    application = application or get_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        await application.start()
        yield
        await application.stop()

    fastapi_app = FastAPI(
        title="Campus Messaging API",
        description="Messaging, broadcasts and real-time notifications",
        version="0.1.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    fastapi_app.include_router(conversations.create_conversations_router(application))
    fastapi_app.include_router(messages.create_messages_router(application))
    fastapi_app.include_router(attachments.create_attachments_router(application))
    fastapi_app.include_router(broadcasts.create_broadcasts_router(application))
    fastapi_app.include_router(scheduled.create_scheduled_router(application))
    fastapi_app.include_router(templates.create_templates_router(application))
    fastapi_app.include_router(realtime.create_realtime_router(application))
    fastapi_app.include_router(observability.create_observability_router(application))
    fastapi_app.include_router(health.create_health_router(application))

    # Locally stored blobs are served under ATTACHMENTS_BASE_URL's default path
    local_dir = application.local_attachments_dir
    if local_dir is not None:
        local_dir.mkdir(parents=True, exist_ok=True)
        fastapi_app.mount(
            "/attachments",
            StaticFiles(directory=local_dir, check_dir=False),
            name="attachments",
        )

    return fastapi_app
