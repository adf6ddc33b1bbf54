"""Security utilities -- prompt sanitisation and input validation at the boundaries."""
from .prompt_guard import detect_injection_attempt, sanitize_for_prompt
from .validators import (
    ValidationError,
    validate_identifier,
    validate_in_choices,
    validate_not_empty,
    validate_range,
)
