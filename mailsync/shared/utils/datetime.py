"""UTC helpers. Every timestamp stored or compared by the service is aware UTC."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize to aware UTC; naive values are taken as UTC.

    SQLite hands back naive datetimes even for timezone=True columns, so
    row mappers call this on every timestamp they read.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def from_timestamp_ms_utc(timestamp_ms: int) -> datetime:
    """Gmail internalDate (epoch milliseconds) to a datetime."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC)


def parse_iso8601_utc(value: str | None) -> datetime | None:
    # Graph returns e.g. "2024-05-01T10:00:00Z"; older interpreters reject the Z.
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
