"""validation.py — Input shape checks run before anything reaches a repository."""
from __future__ import annotations

import re
from typing import Any, Dict, Optional

from compass_events.config import EVENT_STATUSES, ROLES
from compass_events.errors import ValidationError
from compass_events.repositories import parse_event_date

__all__ = [
    "optional_text",
    "reject_unknown",
    "require_text",
    "validate_email",
    "validate_event_date",
    "validate_event_name",
    "validate_event_status",
    "validate_password",
    "validate_phone",
    "validate_role",
]

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PASSWORD_RE = re.compile(r"^(?=.*[A-Za-z])(?=.*\d)[A-Za-z\d]{8,}$")
_PHONE_RE = re.compile(r"^\(?\d{2}\)?\s?\d{4,5}-?\d{4}$")

_EVENT_NAME_MIN_LENGTH = 3


def reject_unknown(data: Dict[str, Any], allowed: tuple) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ValidationError(f"Unexpected fields: {', '.join(unknown)}")


def require_text(data: Dict[str, Any], field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required.")
    return value.strip()


def optional_text(data: Dict[str, Any], field: str) -> Optional[str]:
    """None when absent. Present values must be non-empty strings."""
    if data.get(field) is None:
        return None
    return require_text(data, field)


def validate_email(value: str) -> str:
    if not _EMAIL_RE.match(value):
        raise ValidationError("email must be a valid email address.")
    return value


def validate_password(value: str) -> str:
    if not _PASSWORD_RE.match(value):
        raise ValidationError("Password must be at least 8 characters and include both letters and numbers")
    return value


def validate_phone(value: str) -> str:
    if not _PHONE_RE.match(value):
        raise ValidationError("Phone must be in the format (XX) XXXX-XXXX or (XX) XXXXX-XXXX")
    return value


def validate_role(value: Any) -> str:
    role = value.strip().lower() if isinstance(value, str) else value
    if role not in ROLES:
        raise ValidationError(f"Invalid role: {value}")
    return role


def validate_event_name(value: str) -> str:
    if len(value) < _EVENT_NAME_MIN_LENGTH:
        raise ValidationError(f"name must be at least {_EVENT_NAME_MIN_LENGTH} characters.")
    return value


def validate_event_date(value: str) -> str:
    """Must parse as ISO-8601. The input string is what gets stored and compared."""
    parse_event_date(value)
    return value


def validate_event_status(value: Any) -> str:
    if value not in EVENT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(EVENT_STATUSES))}")
    return value
