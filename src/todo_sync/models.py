from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Dict, Iterable, Optional

# Document field names in the backing store.
USERS_COLLECTION = "users"
TODOS_COLLECTION = "todos"

TODO_ID = "id"
TODO_USER_ID = "userId"
TODO_TITLE = "title"
TODO_IS_COMPLETED = "isCompleted"
TODO_CREATED_AT = "createdAt"
TODO_UPDATED_AT = "updatedAt"

USER_EMAIL = "email"
USER_DISPLAY_NAME = "displayName"
USER_IS_ANONYMOUS = "isAnonymous"
USER_CREATED_AT = "createdAt"

NEW_TODO_WINDOW = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Accept a datetime or an ISO8601 string (as written by JSON-backed stores)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    else:
        raise ValueError(f"Invalid timestamp value: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def user_path(owner_id: str) -> str:
    return f"{USERS_COLLECTION}/{owner_id}"


def todos_path(owner_id: str) -> str:
    return f"{USERS_COLLECTION}/{owner_id}/{TODOS_COLLECTION}"


def todo_path(owner_id: str, todo_id: str) -> str:
    return f"{todos_path(owner_id)}/{todo_id}"


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Todo:
    """
    A todo item owned by exactly one user.

    Fields:
    - id: Unique identifier assigned by the backing store
    - owner_id: Identifier of the owning user
    - title: Trimmed title (1..200 chars)
    - completed: Completion flag
    - created_at: Creation timestamp (UTC)
    - updated_at: Last update timestamp (UTC), never before created_at
    """

    id: str
    owner_id: str
    title: str
    completed: bool = False
    created_at: datetime = None  # type: ignore[assignment]
    updated_at: datetime = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        now = utcnow()
        if self.created_at is None:
            object.__setattr__(self, "created_at", now)
        if self.updated_at is None:
            object.__setattr__(self, "updated_at", self.created_at)
        if self.updated_at < self.created_at:
            raise ValueError("updated_at cannot be earlier than created_at")

    @property
    def status_emoji(self) -> str:
        return "✅" if self.completed else "⭕️"

    @property
    def is_new(self) -> bool:
        """True when the todo was created within the last five minutes."""
        return utcnow() - self.created_at < NEW_TODO_WINDOW

    def with_completion(self, completed: bool, now: Optional[datetime] = None) -> "Todo":
        return replace(self, completed=completed, updated_at=self._touch(now))

    def with_title(self, title: str, now: Optional[datetime] = None) -> "Todo":
        return replace(self, title=title, updated_at=self._touch(now))

    def _touch(self, now: Optional[datetime]) -> datetime:
        return max(now or utcnow(), self.created_at)

    def to_document(self) -> Dict[str, Any]:
        return {
            TODO_ID: self.id,
            TODO_USER_ID: self.owner_id,
            TODO_TITLE: self.title,
            TODO_IS_COMPLETED: self.completed,
            TODO_CREATED_AT: self.created_at,
            TODO_UPDATED_AT: self.updated_at,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any], document_id: Optional[str] = None) -> "Todo":
        """Build a Todo from store data; raises KeyError/ValueError on malformed documents."""
        return cls(
            id=str(data.get(TODO_ID) or document_id or ""),
            owner_id=str(data[TODO_USER_ID]),
            title=str(data[TODO_TITLE]),
            completed=bool(data.get(TODO_IS_COMPLETED, False)),
            created_at=parse_timestamp(data[TODO_CREATED_AT]),
            updated_at=parse_timestamp(data.get(TODO_UPDATED_AT, data[TODO_CREATED_AT])),
        )


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class User:
    """
    An authenticated user, either email/password or anonymous (guest).

    ``email`` is None exactly when ``is_anonymous`` is True.
    """

    id: str
    email: Optional[str]
    display_name: Optional[str] = None
    is_anonymous: bool = False
    created_at: datetime = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.created_at is None:
            object.__setattr__(self, "created_at", utcnow())
        if (self.email is None) != self.is_anonymous:
            raise ValueError("email must be None if and only if the user is anonymous")

    @property
    def display_text(self) -> str:
        if self.is_anonymous:
            return "Guest User"
        return self.display_name or self.email or "User"

    @property
    def short_name(self) -> str:
        if self.is_anonymous:
            return "Guest"
        if self.display_name:
            return self.display_name.split(" ")[0] or "User"
        if self.email:
            return self.email.split("@")[0] or "User"
        return "User"

    @property
    def initials(self) -> str:
        if self.is_anonymous:
            return "?"
        name = self.display_name or self.email or "User"
        words = [w for w in re.split(r"[^0-9A-Za-z]+", name) if w]
        if len(words) >= 2:
            return (words[0][0] + words[1][0]).upper()
        if words:
            return words[0][:2].upper()
        return "U"

    def with_display_name(self, display_name: Optional[str]) -> "User":
        return replace(self, display_name=display_name)

    def to_document(self) -> Dict[str, Any]:
        return {
            USER_EMAIL: self.email,
            USER_DISPLAY_NAME: self.display_name,
            USER_IS_ANONYMOUS: self.is_anonymous,
            USER_CREATED_AT: self.created_at,
        }

    @classmethod
    def from_document(cls, user_id: str, data: Dict[str, Any]) -> "User":
        is_anonymous = bool(data.get(USER_IS_ANONYMOUS, False))
        return cls(
            id=user_id,
            email=None if is_anonymous else (data.get(USER_EMAIL) or None),
            display_name=data.get(USER_DISPLAY_NAME) or None,
            is_anonymous=is_anonymous,
            created_at=parse_timestamp(data[USER_CREATED_AT]),
        )


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class TodoStatistics:
    """Counts derived from a snapshot of todos. Never persisted."""

    total: int
    completed: int
    active: int

    EMPTY: ClassVar["TodoStatistics"]

    @property
    def completion_percentage(self) -> float:
        """Fraction of completed todos in 0.0..1.0; 0.0 for an empty collection."""
        if self.total <= 0:
            return 0.0
        return self.completed / self.total

    @property
    def completion_percentage_string(self) -> str:
        return f"{self.completion_percentage * 100:.0f}%"

    @classmethod
    def from_todos(cls, todos: Iterable[Todo]) -> "TodoStatistics":
        items = list(todos)
        completed = sum(1 for t in items if t.completed)
        return cls(total=len(items), completed=completed, active=len(items) - completed)


TodoStatistics.EMPTY = TodoStatistics(total=0, completed=0, active=0)
