"""Injectable time sources.

Services take a ``Clock`` instead of calling ``datetime.now`` so tests can
pin time and replay samples deterministically.
"""

from collections.abc import Callable
from datetime import UTC, datetime


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (stores may hand back naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp coming from a stored document."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc_aware(value)
    return ensure_utc_aware(datetime.fromisoformat(value))


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a timestamp for storage."""
    if value is None:
        return None
    aware = ensure_utc_aware(value)
    return aware.isoformat() if aware else None
