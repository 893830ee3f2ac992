"""Shared utilities for the service layer."""

from datetime import UTC, date, datetime
from uuid import uuid4

# Cosmos commission rates are 18-decimal fixed point.
COMMISSION_PRECISION: int = 10**18


def new_id() -> str:
    return str(uuid4())


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def ensure_utc(value: datetime | date) -> datetime:
    """Coerce a date or datetime to an aware UTC datetime. Naive values are UTC."""
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def month_start(year: int, month: int) -> datetime:
    """First instant of a month; ``month`` may overflow (13 -> January next year)."""
    years, month_index = divmod(month - 1, 12)
    return datetime(year + years, month_index + 1, 1, tzinfo=UTC)


def months_spanned(start: datetime, end: datetime) -> int:
    """Number of calendar months touched by ``[start, end]``, counting both ends."""
    return (end.year - start.year) * 12 + (end.month - start.month) + 1


def month_label(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def to_rfc3339(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(raw: str) -> datetime:
    """Parse an RFC3339 timestamp, including nanosecond fractions and ``Z``."""
    text: str = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    if "." in text:
        head, _, tail = text.partition(".")
        digits: str = ""
        rest: str = tail
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    return ensure_utc(datetime.fromisoformat(text))
