"""Internal event bus data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Topic(str, Enum):
    """EventBus topics."""

    MESSAGE_SENT = "message_sent"
    BROADCAST_COMPLETED = "broadcast_completed"
    ATTENDANCE_MARKED = "attendance_marked"


@dataclass
class BusMessage:
    """A message exchanged through EventBus."""

    id: str
    topic: Topic
    payload: dict  # varies by topic
    source: str  # component that published
    timestamp: datetime
