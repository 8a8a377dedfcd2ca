"""Timestamp parsing and local-day helpers."""

from datetime import date, datetime, time, timezone, tzinfo
from zoneinfo import ZoneInfo


def parse_timestamp(value: str | datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    A trailing ``Z`` is accepted. Naive values are read as wall-clock time
    in ``tz``.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt


def parse_date(value: str | date) -> date:
    """Parse a YYYY-MM-DD date (a full timestamp is truncated to its date)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


def to_iso(dt: datetime | None) -> str | None:
    """Render a datetime as ISO-8601 with a ``Z`` suffix for UTC."""
    if dt is None:
        return None
    text = dt.isoformat()
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def minutes_between(start: datetime, end: datetime) -> float:
    """Minutes from start to end (negative if end precedes start)."""
    return (end - start).total_seconds() / 60


def resolve_timezone(name: str | None) -> tzinfo:
    """Resolve a configured IANA timezone name, falling back to the system zone."""
    if name:
        return ZoneInfo(name)
    return datetime.now().astimezone().tzinfo


def local_midnight(now: datetime, tz: tzinfo) -> datetime:
    """Start of the local day containing ``now``."""
    local = now.astimezone(tz)
    return datetime.combine(local.date(), time.min, tzinfo=tz)


def local_date(dt: datetime, tz: tzinfo) -> date:
    return dt.astimezone(tz).date()

