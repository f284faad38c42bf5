"""Date/time helpers. All timestamps are stored in UTC."""
from datetime import datetime, date, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes for timezone-aware columns; those are
    stored in UTC, so tagging them is enough.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def today() -> date:
    return date.today()


def parse_iso_date(value, field_name='date'):
    """Parse 'YYYY-MM-DD' (or pass a date through). Raises ValueError."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').date()
    except ValueError:
        raise ValueError(f'Invalid {field_name}. Use YYYY-MM-DD')


def parse_iso_datetime(value):
    """Parse an ISO 8601 timestamp into aware UTC. Raises ValueError."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value).strip()))
