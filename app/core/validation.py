"""Input validation utilities for registration and voting payloads."""

import re


class PasswordValidator:
    """Validate password length."""

    MIN_LENGTH = 6
    MAX_LENGTH = 128

    @classmethod
    def validate(cls, password: str) -> tuple[bool, str | None]:
        """
        Validate password length.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if len(password) < cls.MIN_LENGTH:
            return False, f"Password must be at least {cls.MIN_LENGTH} characters long"

        if len(password) > cls.MAX_LENGTH:
            return False, f"Password must not exceed {cls.MAX_LENGTH} characters"

        return True, None


class UsernameValidator:
    """Validate username format and constraints."""

    MIN_LENGTH = 3
    MAX_LENGTH = 50

    # Allow alphanumeric, underscore, hyphen, and period
    VALID_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")

    @classmethod
    def validate(cls, username: str) -> tuple[bool, str | None]:
        """
        Validate username format.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if len(username) < cls.MIN_LENGTH:
            return False, f"Username must be at least {cls.MIN_LENGTH} characters long"

        if len(username) > cls.MAX_LENGTH:
            return False, f"Username must not exceed {cls.MAX_LENGTH} characters"

        if not cls.VALID_PATTERN.match(username):
            return (
                False,
                "Username can only contain letters, numbers, dots, hyphens, and underscores",
            )

        return True, None


class EmailValidator:
    """Validate email address shape."""

    # local@domain.tld, no whitespace
    VALID_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

    @classmethod
    def validate(cls, email: str) -> tuple[bool, str | None]:
        if not cls.VALID_PATTERN.match(email):
            return False, "Invalid email format"
        return True, None


def sanitize_string(value: str | None, max_length: int = 1000) -> str:
    """
    Sanitize string input by removing potentially dangerous content.

    Args:
        value: String to sanitize
        max_length: Maximum allowed length

    Returns:
        Sanitized string
    """
    if not value:
        return ""

    value = value[:max_length]
    value = value.replace("\x00", "")
    return value.strip()
