"""Time helpers. All persisted timestamps are naive UTC datetimes."""

from datetime import datetime, timezone


def utcnow():
    """Current UTC time as a naive datetime, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch(value):
    """Convert a naive UTC datetime to integer epoch seconds."""
    if value is None:
        return None
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def from_epoch(seconds):
    """Convert epoch seconds (int, float or numeric string) to a naive UTC datetime."""
    if seconds is None or seconds == '':
        return None
    return datetime.fromtimestamp(float(seconds), tz=timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() if value else None
