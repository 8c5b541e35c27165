"""Input validation helpers shared by the repositories.

Validation runs before any network call so a rejected input never costs
a round trip.
"""

import re
from typing import Any

from .protocols import UnauthorizedError, ValidationError

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_string(
    value: Any, field_name: str, max_length: int = 1000, required: bool = True
) -> str:
    """Sanitize and validate string inputs.

    Args:
        value: The value to sanitize.
        field_name: Name of the field for error messages.
        max_length: Maximum allowed string length.
        required: If True, empty strings are rejected.

    Returns:
        Sanitized string.

    Raises:
        ValidationError: If validation fails.
    """
    if value is None and not required:
        return ""

    if not isinstance(value, str):
        raise ValidationError([f"{field_name} must be a string, got {type(value).__name__}"])

    if required and not value.strip():
        raise ValidationError([f"{field_name} cannot be empty"])

    if len(value) > max_length:
        raise ValidationError(
            [f"{field_name} too long (max {max_length} characters, got {len(value)})"]
        )

    # Remove null bytes and control characters except newlines and tabs
    return _CONTROL_CHARS.sub("", value)


def require_viewer(viewer_id: Any, action: str) -> str:
    """Return ``viewer_id`` or raise UnauthorizedError when nobody is signed in."""
    if not viewer_id:
        raise UnauthorizedError(f"You must be signed in to {action}")
    return viewer_id


def escape_like(query: str) -> str:
    """Escape SQL LIKE special characters so user input matches literally."""
    # Escape backslash first, then %, then _
    return re.sub(r"([%_\\])", r"\\\1", query)
