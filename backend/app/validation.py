"""
Input checks shared by the domain modules.

All of them run before the store is touched and raise ``ValidationError``
keyed by the offending field.
"""
import re
import uuid
from datetime import date
from typing import Optional
from urllib.parse import urlparse

from .errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")


def ensure_uuid(value, field: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError({field: "must be a valid UUID"})


def clean_text(value: Optional[str], field: str, min_len: int, max_len: int) -> str:
    text = (value or "").strip()
    if len(text) < min_len:
        raise ValidationError({field: f"must be at least {min_len} characters"})
    if len(text) > max_len:
        raise ValidationError({field: f"must be at most {max_len} characters"})
    return text


def ensure_url(value: str, field: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError({field: "must be a well-formed http(s) URL"})
    return value


def ensure_email(value: str, field: str) -> str:
    if not EMAIL_PATTERN.match(value):
        raise ValidationError({field: "must be a valid email address"})
    return value


def ensure_date(value, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError({field: "must be an ISO date (YYYY-MM-DD)"})


def ensure_choice(value, choices, field: str) -> str:
    raw = getattr(value, "value", value)
    allowed = [getattr(c, "value", c) for c in choices]
    if raw not in allowed:
        raise ValidationError({field: "must be one of: " + ", ".join(allowed)})
    return raw
