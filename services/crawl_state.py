"""Crawl state for one upstream feed and the transitions between its two modes.

``offset`` mode walks the catalog with ``offset``/``limit``. MangaDex refuses
requests where ``offset + limit`` exceeds the pagination window, so once a
sweep gets there the feed switches to ``updatedat`` mode, which pages forward
from a ``(updated_at, external_id)`` cursor and never needs an offset again.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

import config
from utils.time import CURSOR_SENTINEL, CURSOR_STEP, bump_cursor, isoformat_z

MODE_OFFSET = 'offset'
MODE_UPDATED_AT = 'updatedat'
MODES = (MODE_OFFSET, MODE_UPDATED_AT)


@dataclass
class CrawlState:
    id: str
    mode: str = MODE_OFFSET
    cursor_offset: int = 0
    cursor_updated_at: Optional[datetime] = None
    cursor_last_id: Optional[str] = None
    page_limit: int = config.SYNC_DEFAULT_PAGE_LIMIT
    total: Optional[int] = None
    processed_count: int = 0
    updated_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_cursor_mode(self) -> bool:
        return self.mode == MODE_UPDATED_AT

    def cursor_snapshot(self) -> dict:
        """JSON-friendly view of the authoritative cursor, for responses and logs."""
        if self.is_cursor_mode:
            return {
                'mode': self.mode,
                'updated_at': isoformat_z(self.cursor_updated_at),
                'last_id': self.cursor_last_id,
            }
        return {'mode': self.mode, 'offset': self.cursor_offset, 'total': self.total}


def effective_page_limit(state: CrawlState) -> int:
    limit = state.page_limit or config.SYNC_DEFAULT_PAGE_LIMIT
    return max(1, min(int(limit), config.SYNC_MAX_PAGE_LIMIT))


def needs_mode_switch(state: CrawlState, window_cap: int = config.MANGADEX_WINDOW_CAP) -> bool:
    if state.mode != MODE_OFFSET:
        return False
    return state.cursor_offset + effective_page_limit(state) > window_cap


def switch_to_cursor_mode(state: CrawlState) -> CrawlState:
    return replace(
        state,
        mode=MODE_UPDATED_AT,
        cursor_offset=0,
        cursor_updated_at=state.cursor_updated_at or CURSOR_SENTINEL,
    )


def is_already_processed(
    updated_at: Optional[datetime],
    external_id: str,
    cursor_updated_at: Optional[datetime],
    cursor_last_id: Optional[str],
) -> bool:
    """True when a record sits at or behind the cursor and has been handled before.

    The stored cursor is already bumped one step past the last processed
    record, so the id tie-break applies at ``cursor_updated_at - CURSOR_STEP``.
    Anything newer than that, including a record at the bumped time itself,
    has not been seen yet.
    """
    if updated_at is None or cursor_updated_at is None:
        return False
    processed_at = cursor_updated_at - CURSOR_STEP
    if updated_at < processed_at:
        return True
    if updated_at == processed_at and cursor_last_id is not None:
        return external_id <= cursor_last_id
    return False


def advance_cursor(state: CrawlState, updated_at: datetime, external_id: str) -> CrawlState:
    """Move the cursor past ``updated_at``; it never moves backwards."""
    candidate = bump_cursor(updated_at)
    current = state.cursor_updated_at
    if current is not None and candidate < current:
        return state
    return replace(state, cursor_updated_at=candidate, cursor_last_id=external_id)
