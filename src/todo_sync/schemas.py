from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .models import Todo, TodoStatistics, User
from .validation import validate_password_match


# PUBLIC_INTERFACE
class TodoCreate(BaseModel):
    """
    Schema for creating a new Todo item.

    Title rules (trimmed, 1..200 characters) are enforced by the repository
    so the same messages reach every caller.
    """

    model_config = ConfigDict(json_schema_extra={"example": {"title": "Buy groceries"}})

    title: str = Field(..., description="Short title for the todo item")


# PUBLIC_INTERFACE
class TodoTitleUpdate(BaseModel):
    """Schema for renaming a Todo item."""

    model_config = ConfigDict(json_schema_extra={"example": {"title": "Buy groceries and supplies"}})

    title: str = Field(..., description="New title for the todo item")


# PUBLIC_INTERFACE
class TodoCompletionUpdate(BaseModel):
    """Schema for toggling completion of a Todo item."""

    model_config = ConfigDict(json_schema_extra={"example": {"completed": True}})

    completed: bool = Field(..., description="Completion status flag")


# PUBLIC_INTERFACE
class TodoOut(BaseModel):
    """
    Schema returned by the API for a Todo item.
    """

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "b0f6c1e2a9d34c7f8e21",
                "owner_id": "3f2a9c1d0e8b4a7f9c6d5e4b3a2f1e0d",
                "title": "Buy groceries",
                "completed": False,
                "status_emoji": "⭕️",
                "is_new": True,
                "created_at": "2025-01-25T10:15:30.123456+00:00",
                "updated_at": "2025-01-25T10:15:30.123456+00:00",
            }
        },
    )

    id: str = Field(..., description="Unique identifier of the todo item")
    owner_id: str = Field(..., description="Identifier of the owning user")
    title: str = Field(..., description="Short title for the todo item")
    completed: bool = Field(..., description="Completion status flag")
    status_emoji: str = Field(..., description="Display marker for the completion state")
    is_new: bool = Field(..., description="True when created within the last five minutes")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @classmethod
    def from_todo(cls, todo: Todo) -> "TodoOut":
        return cls.model_validate(todo)


# PUBLIC_INTERFACE
class StatisticsOut(BaseModel):
    """Aggregate counts over the signed-in user's todos."""

    model_config = ConfigDict(from_attributes=True)

    total: int = Field(..., ge=0)
    completed: int = Field(..., ge=0)
    active: int = Field(..., ge=0)
    completion_percentage: float = Field(..., ge=0.0, le=1.0, description="Fraction completed, 0.0 when empty")
    completion_percentage_string: str = Field(..., description="Whole-percent rendering, e.g. '33%'")

    @classmethod
    def from_statistics(cls, stats: TodoStatistics) -> "StatisticsOut":
        return cls.model_validate(stats)


class BulkResult(BaseModel):
    affected: int = Field(..., ge=0, description="Number of todos targeted by the bulk operation")


# PUBLIC_INTERFACE
class Credentials(BaseModel):
    """Email/password pair. Format checks happen in the auth service."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"email": "jane@example.com", "password": "s3cret!"}}
    )

    email: str = Field(..., description="Account email address")
    password: str = Field(..., description="Account password")


# PUBLIC_INTERFACE
class SignUpRequest(Credentials):
    """Credentials plus an optional confirmation that must match the password."""

    password_confirmation: Optional[str] = Field(default=None, description="Repeat of the password")

    @model_validator(mode="after")
    def check_confirmation(self) -> "SignUpRequest":
        if self.password_confirmation is not None:
            result = validate_password_match(self.password, self.password_confirmation)
            if not result:
                raise ValueError(result.error_message)
        return self


class PasswordResetRequest(BaseModel):
    email: str = Field(..., description="Email address of the account to reset")


class ReauthenticateRequest(BaseModel):
    password: str = Field(..., description="Current password of the signed-in account")


class DisplayNameUpdate(BaseModel):
    display_name: Optional[str] = Field(default=None, description="New display name; null or blank clears it")


# PUBLIC_INTERFACE
class UserOut(BaseModel):
    """
    Schema returned by the API for the signed-in user.
    """

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": "3f2a9c1d0e8b4a7f9c6d5e4b3a2f1e0d",
                "email": "jane@example.com",
                "display_name": "Jane Doe",
                "is_anonymous": False,
                "display_text": "Jane Doe",
                "short_name": "Jane",
                "initials": "JD",
                "created_at": "2025-01-25T10:15:30.123456+00:00",
            }
        },
    )

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_anonymous: bool
    display_text: str
    short_name: str
    initials: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls.model_validate(user)


# PUBLIC_INTERFACE
class SessionOut(BaseModel):
    """
    Returned by sign-in, sign-up and anonymous sign-in. Send ``access_token``
    as ``Authorization: Bearer <token>`` on every later request.
    """

    access_token: str = Field(..., description="Opaque session token")
    token_type: str = Field(default="bearer", description="Always 'bearer'")
    user: UserOut
