from datetime import datetime, timezone

from utils.time import (
    CURSOR_SENTINEL,
    bump_cursor,
    format_upstream_since,
    isoformat_z,
    parse_timestamp,
)


def test_parse_timestamp_handles_zulu_suffix():
    parsed = parse_timestamp("2024-01-01T00:00:00Z")

    assert parsed == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert parsed.tzinfo is not None


def test_parse_timestamp_treats_naive_input_as_utc():
    parsed = parse_timestamp("2024-01-01T09:30:00")

    assert parsed == datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc)


def test_parse_timestamp_converts_offsets_to_utc():
    parsed = parse_timestamp("2024-01-01T09:00:00+09:00")

    assert parsed == datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def test_parse_timestamp_rejects_garbage():
    assert parse_timestamp("not a date") is None
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None


def test_bump_cursor_adds_one_second_and_drops_fraction():
    bumped = bump_cursor(datetime(2024, 1, 1, 0, 0, 0, 750000, tzinfo=timezone.utc))

    assert bumped == datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc)


def test_format_upstream_since_uses_sentinel_for_missing_cursor():
    assert format_upstream_since(None) == "1970-01-01T00:00:00"
    assert CURSOR_SENTINEL.year == 1970


def test_format_upstream_since_is_naive_utc_seconds():
    value = datetime(2024, 3, 5, 6, 7, 8, 999, tzinfo=timezone.utc)

    assert format_upstream_since(value) == "2024-03-05T06:07:08"


def test_isoformat_z():
    assert isoformat_z(datetime(2024, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == "2024-01-01T00:00:01Z"
    assert isoformat_z(None) is None
