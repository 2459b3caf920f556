"""Time utilities for upstream update timestamps and crawl cursors.

MangaDex reports ``updatedAt`` as ISO 8601 with an offset
(``2024-01-01T00:00:00+00:00``) but only accepts ``updatedAtSince`` filters in
the naive ``YYYY-MM-DDTHH:MM:SS`` form, interpreted as UTC. Cursors are kept as
aware UTC datetimes internally and converted at the edges.
"""

from datetime import datetime, timedelta, timezone

CURSOR_STEP = timedelta(seconds=1)
CURSOR_SENTINEL = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO 8601 value into an aware UTC datetime.

    Naive values are treated as UTC. ``datetime`` inputs are normalized the
    same way. Returns ``None`` if the input cannot be parsed.
    """

    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def bump_cursor(value: datetime) -> datetime:
    """Move a cursor one step past ``value`` so a tied record is not re-included forever."""
    return value.replace(microsecond=0) + CURSOR_STEP


def format_upstream_since(value: datetime | None) -> str:
    """Format a cursor for the ``updatedAtSince`` filter (naive UTC, second precision)."""
    effective = parse_timestamp(value) or CURSOR_SENTINEL
    return effective.strftime('%Y-%m-%dT%H:%M:%S')


def isoformat_z(value) -> str | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    if parsed.microsecond:
        return parsed.strftime('%Y-%m-%dT%H:%M:%S.%fZ')
    return parsed.strftime('%Y-%m-%dT%H:%M:%SZ')
