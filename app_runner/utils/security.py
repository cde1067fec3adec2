"""
Security Utilities
==================

Secure handling of device cloud credentials.
Ensures access keys never end up in logs or error messages.

Usage:
    from app_runner.utils.security import SecureString, mask_sensitive

    access_key = SecureString("my-access-key")
    print(access_key)  # Outputs: ********
    access_key.get_secret()  # Returns actual value

    masked = mask_sensitive("user@example.com")  # use***@example.com
"""

import re
import secrets
from typing import Any


class SecureString:
    """
    A string wrapper that prevents accidental exposure of sensitive values.

    The actual value is never revealed in string representations,
    log lines or error messages.
    """

    __slots__ = ("_secret_value", "_length")

    def __init__(self, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("SecureString value must be a string")
        self._secret_value = value
        self._length = len(value)

    def get_secret(self) -> str:
        """
        Get the actual secret value.

        Warning:
            Only use this when you actually need the value.
            Never log or print the result.
        """
        return self._secret_value

    def __str__(self) -> str:
        """Return masked representation."""
        return "*" * min(self._length, 8)

    def __repr__(self) -> str:
        """Return masked representation for debugging."""
        return f"SecureString('{self}')"

    def __len__(self) -> int:
        return self._length

    def __bool__(self) -> bool:
        return self._length > 0

    def __eq__(self, other: Any) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        if isinstance(other, SecureString):
            return secrets.compare_digest(self._secret_value, other._secret_value)
        if isinstance(other, str):
            return secrets.compare_digest(self._secret_value, other)
        return False

    def __hash__(self) -> int:
        return hash(self._secret_value)


def mask_sensitive(value: str, visible_chars: int = 3) -> str:
    """
    Mask a sensitive string, showing only first few characters.

    Args:
        value: The string to mask.
        visible_chars: Number of characters to show at start.

    Returns:
        Masked string with asterisks.

    Examples:
        >>> mask_sensitive("password123")
        'pas********'
        >>> mask_sensitive("user@example.com")
        'use***@example.com'
    """
    if not value:
        return ""

    # For emails, preserve domain
    if "@" in value:
        local, domain = value.split("@", 1)
        if len(local) <= visible_chars:
            return f"{local[0]}***@{domain}"
        return f"{local[:visible_chars]}***@{domain}"

    if len(value) <= visible_chars:
        return "*" * len(value)
    return f"{value[:visible_chars]}{'*' * 8}"


_SENSITIVE_KEY_PATTERN = re.compile(
    r"password|secret|token|api[_-]?key|access[_-]?key|auth|credential",
    re.IGNORECASE,
)


def sanitize_for_logging(data: dict[str, Any]) -> dict[str, Any]:
    """
    Sanitize a dictionary (e.g. Appium capabilities) for safe logging.

    Masks common sensitive fields like passwords, tokens, and keys.

    Args:
        data: Dictionary that may contain sensitive data.

    Returns:
        New dictionary with sensitive values masked.
    """
    result = {}
    for key, value in data.items():
        if _SENSITIVE_KEY_PATTERN.search(key):
            if isinstance(value, str):
                result[key] = mask_sensitive(value)
            else:
                result[key] = "********"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value)
        elif isinstance(value, SecureString):
            result[key] = str(value)
        else:
            result[key] = value
    return result
