"""
Hold-period policy.

Every earning is locked for ``HOLD_PERIOD_DAYS`` calendar days after it
accrues. Adding a ``timedelta`` to an aware datetime is wall-clock
arithmetic in Python, so the time of day survives month ends, year ends
and daylight-saving changes in the datetime's own zone.
"""

from datetime import datetime, timezone
from typing import Union

from .constants import HOLD_PERIOD
from .errors import InvalidInputError

Instant = Union[datetime, str]


def ensure_instant(value: Instant, field: str = "date") -> datetime:
    """Coerce a datetime or ISO-8601 string into an aware datetime.

    Naive datetimes are read as UTC.
    """
    if value is None:
        raise InvalidInputError(f"{field} is required")

    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidInputError(f"{field} is not a valid date: {value!r}")

    if not isinstance(value, datetime):
        raise InvalidInputError(f"{field} must be a datetime, got {type(value).__name__}")

    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def calculate_available_date(earning_created_at: Instant) -> datetime:
    created_at = ensure_instant(earning_created_at, "created_at")
    return created_at + HOLD_PERIOD


def is_available_for_withdrawal(earning_created_at: Instant, now: Instant) -> bool:
    """True once the hold period has fully elapsed (inclusive boundary)."""
    current = ensure_instant(now, "now")
    return current >= calculate_available_date(earning_created_at)
