"""
Input validation helpers shared by the services and the CLI.
"""
import re
from typing import Optional

from .exceptions import ValidationError

SLUG_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_.-]{0,99}$')
MIN_PASSWORD_LENGTH = 8


def validate_slug(value: Optional[str], field: str = "name") -> str:
    """Lowercase identifier used for role, group, tool and permission names."""
    value = (value or "").strip()
    if not SLUG_PATTERN.match(value):
        raise ValidationError(
            f"{field} must be lowercase letters, digits, '.', '_' or '-' (max 100 chars)"
        )
    return value


def validate_required(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required")
    return value


def normalize_email(email: Optional[str]) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("A valid email address is required")
    return email


def validate_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


def validate_duration(duration_minutes: Optional[int]) -> Optional[int]:
    """None means permanent; anything else must be a positive number of minutes."""
    if duration_minutes is None:
        return None
    if duration_minutes <= 0:
        raise ValidationError("duration_minutes must be a positive number of minutes")
    return duration_minutes
