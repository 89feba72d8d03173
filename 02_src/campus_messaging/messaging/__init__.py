"""Messaging services: conversations, messages, broadcasts, scheduling."""

from .attachments import (
    AttachmentService,
    AttachmentValidator,
    HeuristicScanner,
    IAttachmentScanner,
    StoredFile,
    safe_filename,
)
from .broadcasts import BroadcastDispatcher
from .conversations import ConversationStore, pair_key
from .messages import MessageStore, delivery_status, forwarded_content
from .scheduler import MessageScheduler
from .templates import DEFAULT_TEMPLATES, TemplateCatalog, render_template

__all__ = [
    "AttachmentService",
    "AttachmentValidator",
    "BroadcastDispatcher",
    "ConversationStore",
    "DEFAULT_TEMPLATES",
    "HeuristicScanner",
    "IAttachmentScanner",
    "MessageScheduler",
    "MessageStore",
    "StoredFile",
    "TemplateCatalog",
    "delivery_status",
    "forwarded_content",
    "pair_key",
    "render_template",
    "safe_filename",
]
