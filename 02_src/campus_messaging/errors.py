"""Messaging error taxonomy.

Each error also derives from the closest builtin so callers can catch
``PermissionError`` / ``ConnectionError`` / ``ValueError`` / ``LookupError``
without importing this module.
"""

from typing import Any


class MessagingError(Exception):
    """Base class for all messaging errors."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}


class AccessDeniedError(MessagingError, PermissionError):
    """Caller is not authorized for the conversation, message or record."""


class ValidationError(MessagingError, ValueError):
    """Bad input rejected before anything is persisted."""


class FileUploadError(ValidationError):
    """Attachment rejected or could not be stored."""


class NoRecipientsError(ValidationError):
    """Broadcast criteria resolved to an empty recipient set."""


class NetworkError(MessagingError, ConnectionError):
    """Network unreachable, attempt timed out or retries exhausted."""


class NotFoundError(MessagingError, LookupError):
    """Requested record does not exist (or is not visible to the caller)."""


class MessageSendError(MessagingError):
    """Message could not be persisted."""
