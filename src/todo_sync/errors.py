from __future__ import annotations

from typing import Any, Dict, Optional


# PUBLIC_INTERFACE
class AppError(Exception):
    """
    Base class for every error surfaced by the service layer.

    Attributes:
    - message: the underlying message (provider/store text or validation text)
    - context: extra debugging data; logged, never shown to users

    Every error has two renderings: ``description`` is technical and meant for
    logs, ``user_message`` is safe to display and never exposes backend
    internals.
    """

    kind: str = "unknown"
    prefix: str = "Error"
    default_user_message: Optional[str] = None
    recovery_suggestion: str = "If this problem continues, please restart the app or contact support."

    def __init__(self, message: str = "An unexpected error occurred", context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    @property
    def description(self) -> str:
        return f"{self.prefix}: {self.message}"

    @property
    def user_message(self) -> str:
        if self.default_user_message is None:
            return self.message
        return self.default_user_message

    def to_dict(self) -> Dict[str, Any]:
        """Serializable payload for API responses (technical details excluded)."""
        return {
            "error": type(self).__name__,
            "message": self.user_message,
            "detail": self.recovery_suggestion,
        }

    def __str__(self) -> str:
        return self.description


# PUBLIC_INTERFACE
class ValidationError(AppError):
    """Bad user input. Raised before any remote call is attempted."""

    kind = "validation"
    prefix = "Validation Error"
    recovery_suggestion = "Please correct the highlighted fields and try again."


# PUBLIC_INTERFACE
class AuthError(AppError):
    """Identity-provider failure: bad credentials, email in use, rate limiting, ..."""

    kind = "auth"
    prefix = "Authentication Error"
    recovery_suggestion = "Please verify your email and password, or try signing in with a different method."

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.code = code


# PUBLIC_INTERFACE
class ReauthenticationRequired(AuthError):
    """The session is too old for a sensitive operation; sign in again first."""

    recovery_suggestion = "Please sign in again and retry."

    def __init__(self, message: str = "Please sign in again to continue.", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="requires-recent-login", context=context)


# PUBLIC_INTERFACE
class DataAccessError(AppError):
    """Backing-store failure. Users always see the same generic message."""

    kind = "data_access"
    prefix = "Database Error"
    default_user_message = "Unable to save your data. Please try again."
    recovery_suggestion = "Check your internet connection and try again. If the problem persists, contact support."


# PUBLIC_INTERFACE
class NotFoundError(DataAccessError):
    """The addressed document does not exist under the given owner."""

    kind = "not_found"


# PUBLIC_INTERFACE
class TodoLimitExceeded(DataAccessError):
    """The owner already has the maximum number of todos; nothing was written."""

    kind = "limit_exceeded"
    default_user_message = None
    recovery_suggestion = "Delete some todos and try again."

    def __init__(self, limit: int, context: Optional[Dict[str, Any]] = None):
        super().__init__(f"You can have at most {limit} todos", context)
        self.limit = limit


# PUBLIC_INTERFACE
class PermissionDeniedError(DataAccessError):
    """The backing store refused the operation."""

    kind = "permission_denied"


# PUBLIC_INTERFACE
class NetworkError(DataAccessError):
    """Transient connectivity failure talking to a backend."""

    kind = "network"
    prefix = "Network Error"
    default_user_message = "Please check your internet connection and try again."
    recovery_suggestion = "Ensure you have a stable internet connection and try again."


# PUBLIC_INTERFACE
class UnknownError(AppError):
    """Fallback for failures that fit no other category."""

    kind = "unknown"
    default_user_message = "Something went wrong. Please try again."


# PUBLIC_INTERFACE
def as_app_error(exc: BaseException) -> AppError:
    """Return ``exc`` unchanged when it is an AppError, else wrap it in UnknownError."""
    if isinstance(exc, AppError):
        return exc
    return UnknownError(str(exc) or type(exc).__name__, context={"type": type(exc).__name__})
