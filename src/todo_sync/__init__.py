"""
todo_sync: per-user todo lists kept in a document store, with email/password
and anonymous sign-in and live snapshot subscriptions.

The FastAPI application lives in ``todo_sync.main`` and is not imported here.
"""
from .auth import AuthService
from .errors import (
    AppError,
    AuthError,
    DataAccessError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    ReauthenticationRequired,
    TodoLimitExceeded,
    UnknownError,
    ValidationError,
)
from .models import Todo, TodoStatistics, User
from .operations import complete_all_todos, delete_all_todos, get_todo_statistics
from .repositories import DocumentTodoRepository, TodoRepository
from .settings import Settings, get_settings
from .streams import Subscription
from .validation import (
    ValidationResult,
    validate_email,
    validate_password,
    validate_password_match,
    validate_todo_title,
)

__all__ = [
    "AppError",
    "AuthError",
    "AuthService",
    "DataAccessError",
    "DocumentTodoRepository",
    "NetworkError",
    "NotFoundError",
    "PermissionDeniedError",
    "ReauthenticationRequired",
    "Settings",
    "Subscription",
    "Todo",
    "TodoLimitExceeded",
    "TodoRepository",
    "TodoStatistics",
    "UnknownError",
    "User",
    "ValidationError",
    "ValidationResult",
    "complete_all_todos",
    "delete_all_todos",
    "get_settings",
    "get_todo_statistics",
    "validate_email",
    "validate_password",
    "validate_password_match",
    "validate_todo_title",
]
