import pytest

from todo_sync.errors import ValidationError
from todo_sync.validation import (
    ValidationResult,
    validate_email,
    validate_length,
    validate_password,
    validate_password_match,
    validate_required,
    validate_todo_title,
)


class TestEmail:
    @pytest.mark.parametrize(
        "email", ["user@example.com", "a@b.co", "  jane.doe+todo@example.com  ", "X_Y%z@sub.domain.org"]
    )
    def test_valid(self, email):
        assert validate_email(email).is_valid

    @pytest.mark.parametrize("email", ["", "   "])
    def test_blank_is_required(self, email):
        result = validate_email(email)
        assert not result.is_valid
        assert result.error_message == "Email address is required"

    @pytest.mark.parametrize("email", ["plainaddress", "bad@", "a@b", "a@b.c", "a b@c.com", "@example.com"])
    def test_invalid_format(self, email):
        assert validate_email(email).error_message == "Please enter a valid email address"


class TestPassword:
    def test_empty(self):
        assert validate_password("").error_message == "Password is required"

    def test_too_short(self):
        assert validate_password("12345").error_message == "Password must be at least 6 characters"

    def test_minimum_length_passes(self):
        assert validate_password("123456").is_valid

    def test_custom_minimum(self):
        assert validate_password("12345678", min_length=10).error_message == "Password must be at least 10 characters"

    def test_match_is_exact(self):
        assert validate_password_match("Secret1", "Secret1").is_valid
        assert validate_password_match("Secret1", "secret1").error_message == "Passwords do not match"


class TestTitle:
    def test_blank(self):
        assert validate_todo_title("   ").error_message == "Title cannot be empty"

    def test_length_counts_trimmed_value(self):
        assert validate_todo_title("  " + "x" * 200 + "  ").is_valid
        assert validate_todo_title("x" * 201).error_message == "Title must be 200 characters or less"


class TestHelpers:
    def test_required(self):
        assert validate_required("  ", "Name").error_message == "Name is required"
        assert validate_required("Bob", "Name").is_valid

    def test_length_bounds_inclusive(self):
        assert validate_length("abc", 3, 5).is_valid
        assert validate_length("abcde", 3, 5).is_valid
        assert validate_length("ab", 3, 5, "Code").error_message == "Code must be at least 3 characters"
        assert validate_length("abcdef", 3, 5, "Code").error_message == "Code must be 5 characters or less"

    def test_result_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            ValidationResult.failure("Title cannot be empty").raise_for_failure()
        assert exc_info.value.user_message == "Title cannot be empty"
        ValidationResult.success().raise_for_failure()

    def test_result_truthiness(self):
        assert ValidationResult.success()
        assert not ValidationResult.failure("nope")
