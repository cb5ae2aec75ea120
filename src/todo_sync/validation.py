"""
Input validation.

All functions are pure and return a ValidationResult instead of raising;
callers decide whether a failure becomes a ValidationError.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .errors import ValidationError

MIN_PASSWORD_LENGTH = 6
MAX_TODO_TITLE_LENGTH = 200

EMAIL_PATTERN = re.compile(r"[A-Z0-9a-z._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,64}", re.IGNORECASE)


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class ValidationResult:
    """Either a success or a failure carrying a human-readable message."""

    is_valid: bool
    error_message: Optional[str] = None

    @classmethod
    def success(cls) -> "ValidationResult":
        return _SUCCESS

    @classmethod
    def failure(cls, message: str) -> "ValidationResult":
        return cls(is_valid=False, error_message=message)

    def raise_for_failure(self, fallback: str = "Invalid input") -> None:
        """Raise ValidationError if this result is a failure."""
        if not self.is_valid:
            raise ValidationError(self.error_message or fallback)

    def __bool__(self) -> bool:
        return self.is_valid


_SUCCESS = ValidationResult(is_valid=True)


def trimmed(value: str) -> str:
    return value.strip()


# PUBLIC_INTERFACE
def validate_email(email: str) -> ValidationResult:
    """Fail when blank after trimming or when the trimmed value is not an email address."""
    value = trimmed(email)
    if not value:
        return ValidationResult.failure("Email address is required")
    if EMAIL_PATTERN.fullmatch(value) is None:
        return ValidationResult.failure("Please enter a valid email address")
    return ValidationResult.success()


# PUBLIC_INTERFACE
def validate_password(password: str, min_length: int = MIN_PASSWORD_LENGTH) -> ValidationResult:
    """Fail when empty or shorter than ``min_length`` characters."""
    if not password:
        return ValidationResult.failure("Password is required")
    if len(password) < min_length:
        return ValidationResult.failure(f"Password must be at least {min_length} characters")
    return ValidationResult.success()


# PUBLIC_INTERFACE
def validate_password_match(password: str, confirmation: str) -> ValidationResult:
    if password != confirmation:
        return ValidationResult.failure("Passwords do not match")
    return ValidationResult.success()


# PUBLIC_INTERFACE
def validate_todo_title(title: str, max_length: int = MAX_TODO_TITLE_LENGTH) -> ValidationResult:
    """
    Validate a todo title after trimming surrounding whitespace.

    The stored title is always the trimmed value; see ``trimmed``.
    """
    value = trimmed(title)
    if not value:
        return ValidationResult.failure("Title cannot be empty")
    if len(value) > max_length:
        return ValidationResult.failure(f"Title must be {max_length} characters or less")
    return ValidationResult.success()


# PUBLIC_INTERFACE
def validate_required(value: str, field_name: str = "This field") -> ValidationResult:
    if not trimmed(value):
        return ValidationResult.failure(f"{field_name} is required")
    return ValidationResult.success()


# PUBLIC_INTERFACE
def validate_length(
    value: str,
    min_length: int,
    max_length: int,
    field_name: str = "This field",
) -> ValidationResult:
    """Inclusive length check on the raw (untrimmed) value."""
    count = len(value)
    if count < min_length:
        return ValidationResult.failure(f"{field_name} must be at least {min_length} characters")
    if count > max_length:
        return ValidationResult.failure(f"{field_name} must be {max_length} characters or less")
    return ValidationResult.success()
