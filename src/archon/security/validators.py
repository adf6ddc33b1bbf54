"""
Input Validators - Generic validation for input at system boundaries.

Parse at the boundary: validate and type-check all external input
before it enters the system. Agent configs, queries, and API payloads
all pass through here before they reach the manager or an executor.
"""

import logging
import re

from ..errors import ValidationError

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_-]*$")

__all__ = [
    "ValidationError",
    "validate_not_empty",
    "validate_identifier",
    "validate_in_choices",
    "validate_range",
]


def validate_not_empty(value: str | None, field_name: str = "input") -> str:
    """Validate that a string is not empty or whitespace-only."""
    if not value or not value.strip():
        raise ValidationError(f"{field_name} cannot be empty", field=field_name)
    return value.strip()


def validate_identifier(value: str, field_name: str = "identifier") -> str:
    """Validate that a string is a safe identifier (alphanumeric, underscore, hyphen)."""
    if not value or not IDENTIFIER_PATTERN.match(value):
        raise ValidationError(
            f"{field_name} must start with a letter and contain only "
            f"letters, numbers, underscores, and hyphens",
            field=field_name,
        )
    return value


def validate_in_choices(value: str, choices: list[str], field_name: str = "value") -> str:
    """Validate that a value is one of the allowed choices."""
    if value not in choices:
        raise ValidationError(
            f"{field_name} must be one of: {', '.join(choices)}", field=field_name
        )
    return value


def validate_range(
    value: float | int,
    minimum: float | int,
    maximum: float | int,
    field_name: str = "value",
) -> float | int:
    """Validate that a number lies within [minimum, maximum] (inclusive)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} must be a number", field=field_name)
    if value < minimum or value > maximum:
        raise ValidationError(
            f"{field_name} must be between {minimum} and {maximum} (got {value})",
            field=field_name,
        )
    return value

