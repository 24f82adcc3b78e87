# utils/dates.py
from datetime import date, datetime, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value):
    """Parse an ISO timestamp into an aware datetime, or None if it is missing or malformed."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or '').strip()
        if not text:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def safe_iso(value=None):
    """Normalize a timestamp to ISO format; missing or unparsable input becomes now."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return utc_now_iso()
    return parsed.isoformat()


def timestamp_sort_key(value):
    # Missing timestamps sort as the earliest possible instant
    return parse_timestamp(value) or _EPOCH


def parse_date_key(value):
    """Reduce a date, datetime or ISO string to a local YYYY-MM-DD key, or None if it cannot be parsed."""
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        return value.isoformat()
    else:
        text = str(value or '').strip()
        if len(text) == 10:
            try:
                return date.fromisoformat(text).isoformat()
            except ValueError:
                return None
        moment = parse_timestamp(text)
        if moment is None:
            return None

    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date().isoformat()


def local_date_key(value=None):
    """Like parse_date_key, but a missing value means today."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return date.today().isoformat()
    return parse_date_key(value)
