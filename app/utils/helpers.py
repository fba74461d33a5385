"""Shared parsing helpers for services and blueprints.

parse_datetime:  ISO-8601 → aware UTC datetime, raises ValueError on bad input
optional_text:   JSON string field → stripped str or None, raises ValidationError
"""
from datetime import date, datetime, timezone

from app.core.exceptions import ValidationError


def optional_text(value, field):
    """Return ``value`` stripped, or None when missing or blank.

    Raises:
        ValidationError: ``value`` is present but not a string.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: type(value).__name__})
    return value.strip() or None


def parse_datetime(value):
    """Parse an ISO-8601 date or datetime into an aware UTC datetime.

    Accepts datetime/date objects, ``YYYY-MM-DD`` and
    ``YYYY-MM-DDTHH:MM[:SS][.ffffff][Z|±HH:MM]``. Naive values are taken as
    UTC. Empty input returns None.

    Raises:
        ValueError: unparseable input.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid datetime '{value}'. Use ISO-8601.") from exc
    else:
        raise ValueError(f"Invalid datetime '{value}'. Use ISO-8601.")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
