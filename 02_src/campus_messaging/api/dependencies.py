"""Request identity and error mapping shared by the routers."""

from datetime import datetime, timezone
from typing import Awaitable, Callable

from fastapi import Cookie, Header, HTTPException

from ..app import Application
from ..errors import (
    AccessDeniedError,
    MessagingError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from ..logging_config import get_logger
from ..models import Actor, DirectoryUser

logger = get_logger(__name__)

SESSION_COOKIE = "session-token"

UserDependency = Callable[..., Awaitable[DirectoryUser]]


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_user_dependency(app: Application) -> UserDependency:
    """Resolve the session token (cookie or bearer header) to a directory user."""

    async def current_user(
        session_token: str | None = Cookie(None, alias=SESSION_COOKIE),
        authorization: str | None = Header(None),
    ) -> DirectoryUser:
        token = session_token or _bearer_token(authorization)
        if not token:
            raise HTTPException(status_code=401, detail="Not authenticated")
        user = await app.storage.get_session_user(token, datetime.now(timezone.utc))
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid or expired session")
        return user

    return current_user


def create_actor_dependency(app: Application) -> Callable[..., Awaitable[Actor]]:
    current_user = create_user_dependency(app)

    async def current_actor(
        session_token: str | None = Cookie(None, alias=SESSION_COOKIE),
        authorization: str | None = Header(None),
    ) -> Actor:
        user = await current_user(session_token, authorization)
        return user.as_actor()

    return current_actor


def to_http_exception(e: Exception) -> HTTPException:
    """Map messaging errors to HTTP status codes."""
    if isinstance(e, HTTPException):
        return e
    if isinstance(e, AccessDeniedError):
        return HTTPException(status_code=403, detail=e.to_dict())
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=e.to_dict())
    if isinstance(e, NetworkError):
        return HTTPException(status_code=503, detail=e.to_dict())
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=e.to_dict())
    if isinstance(e, MessagingError):
        return HTTPException(status_code=500, detail=e.to_dict())
    logger.error(f"Unhandled API error: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=str(e))
