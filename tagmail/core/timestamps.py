"""
Timestamp helpers. Everything is stored as ISO-8601 text in UTC.
"""

from datetime import datetime, timezone


def utcnow():
    return datetime.now(timezone.utc)


def to_iso(value):
    """Render a datetime as an ISO string with a trailing Z"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_timestamp(value):
    """
    Parse an ISO timestamp (with or without 'Z', or a bare date) into an
    aware UTC datetime. Returns None for empty values, raises ValueError
    for garbage.
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z') or text.endswith('z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def today_iso():
    return utcnow().date().isoformat()
