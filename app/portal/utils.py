from __future__ import annotations

import re
from typing import Any

from app.portal.constants import ORGANISATION_SLUG_MAX
from app.portal.errors import ValidationError

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def slugify(value: str) -> str:
    s = (value or "").strip().lower()
    s = re.sub(r"['\"]", "", s)
    s = re.sub(r"[^a-z0-9]+", "-", s)
    s = s.strip("-")
    return s[:ORGANISATION_SLUG_MAX]


def clean_str(value: Any) -> str:
    return str(value if value is not None else "").strip()


def optional_str(value: Any) -> str | None:
    """Strip; empty strings become None."""
    return clean_str(value) or None


def parse_optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer.", field=field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer.", field=field) from None


def parse_bool(value: Any, field: str, default: bool) -> bool:
    """JSON booleans, or the strings "true"/"false"; anything else is rejected."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValidationError(f"{field} must be true or false.", field=field)
