"""Time helpers for consistent UTC timestamps across services."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC datetime with timezone attached."""

    return datetime.now(timezone.utc)


def ms_to_iso(timestamp_ms: int) -> str:
    """Render an epoch-milliseconds timestamp as an ISO-8601 UTC string."""

    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc).isoformat()


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 timestamp from a datastore row, assuming UTC when naive."""

    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_countdown(seconds: float | None) -> str:
    """Render remaining seconds as m:ss for status displays."""

    if seconds is None:
        return "-"
    total = max(0, int(seconds))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"
