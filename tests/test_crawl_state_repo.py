from datetime import datetime, timezone

import pytest

from repositories import crawl_state_repo
from services.crawl_state import MODE_UPDATED_AT, CrawlState
from services.errors import CrawlStateConflictError, CrawlStateError, CrawlStateMissingError


class FakeCursor:
    def __init__(self, row):
        self.row = row
        self.executed = []
        self.closed = False

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        return self.row

    def close(self):
        self.closed = True


def patch_cursor(monkeypatch, row):
    cursor = FakeCursor(row)
    monkeypatch.setattr(crawl_state_repo, "get_cursor", lambda conn: cursor)
    return cursor


def state_row(**overrides):
    row = {
        "id": "titles_delta",
        "mode": "updatedat",
        "cursor_offset": 0,
        "cursor_updated_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "cursor_last_id": "abc",
        "page_limit": 100,
        "total": None,
        "processed_count": 42,
        "updated_at": datetime(2024, 1, 2, tzinfo=timezone.utc),
        "version": 7,
    }
    row.update(overrides)
    return row


def test_load_crawl_state_maps_row(monkeypatch):
    cursor = patch_cursor(monkeypatch, state_row())

    state = crawl_state_repo.load_crawl_state(object(), "titles_delta")

    assert state.mode == MODE_UPDATED_AT
    assert state.cursor_last_id == "abc"
    assert state.processed_count == 42
    assert state.version == 7
    assert cursor.executed[0][1] == ("titles_delta",)
    assert cursor.closed is True


def test_load_crawl_state_missing_row_raises(monkeypatch):
    patch_cursor(monkeypatch, None)

    with pytest.raises(CrawlStateMissingError) as excinfo:
        crawl_state_repo.load_crawl_state(object(), "nope")

    assert excinfo.value.http_status == 404
    assert "nope" in excinfo.value.message


def test_load_crawl_state_rejects_unknown_mode(monkeypatch):
    patch_cursor(monkeypatch, state_row(mode="sideways"))

    with pytest.raises(CrawlStateError):
        crawl_state_repo.load_crawl_state(object(), "titles_delta")


def test_save_crawl_state_is_version_checked(monkeypatch):
    heartbeat = datetime(2024, 5, 1, tzinfo=timezone.utc)
    cursor = patch_cursor(monkeypatch, {"updated_at": heartbeat, "version": 8})
    state = CrawlState(id="titles_delta", mode=MODE_UPDATED_AT, cursor_last_id="z", version=7)

    saved = crawl_state_repo.save_crawl_state(object(), state, expected_version=7)

    query, params = cursor.executed[0]
    assert "WHERE id = %s AND version = %s" in query
    assert "version = version + 1" in query
    assert "updated_at = NOW()" in query
    assert params[-2:] == ("titles_delta", 7)
    assert saved.version == 8
    assert saved.updated_at == heartbeat


def test_save_crawl_state_conflict(monkeypatch):
    patch_cursor(monkeypatch, None)
    state = CrawlState(id="main", version=3)

    with pytest.raises(CrawlStateConflictError) as excinfo:
        crawl_state_repo.save_crawl_state(object(), state, expected_version=3)

    assert excinfo.value.http_status == 409
