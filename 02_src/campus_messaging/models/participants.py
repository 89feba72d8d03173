"""Identity data models."""

from dataclasses import dataclass
from enum import Enum


class UserKind(str, Enum):
    """Kinds of users that can take part in a conversation."""

    STUDENT = "student"
    TEACHER = "teacher"
    OFFICE = "office"


_DIRECTORY_TABLES = {
    UserKind.STUDENT: "students",
    UserKind.TEACHER: "teachers",
    UserKind.OFFICE: "office_staff",
}


def directory_table(kind: UserKind) -> str:
    """Directory table holding users of the given kind."""
    return _DIRECTORY_TABLES[UserKind(kind)]


@dataclass(frozen=True)
class Actor:
    """The authenticated user on whose behalf an operation runs."""

    id: str
    kind: UserKind
    name: str
    avatar: str | None = None


@dataclass
class DirectoryUser:
    """A user resolved from the student/teacher/office directory."""

    id: str
    kind: UserKind
    name: str
    avatar: str | None = None
    class_section: str | None = None
    department: str | None = None

    def as_actor(self) -> Actor:
        return Actor(id=self.id, kind=self.kind, name=self.name, avatar=self.avatar)
