"""Drive one bounded crawl invocation over a paginated feed.

``run_crawl`` owns pagination, budgets, the mode switch and cursor movement.
Fetching pages and processing records are injected, so the loop runs the same
against MangaDex and against in-memory fakes. Nothing here touches the
database; the caller persists ``CrawlResult.state`` once the run succeeds.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

import config
from services.crawl_state import (
    MODE_OFFSET,
    CrawlState,
    advance_cursor,
    effective_page_limit,
    is_already_processed,
    needs_mode_switch,
    switch_to_cursor_mode,
)

LOGGER = logging.getLogger(__name__)

ACTION_SKIPPED = 'skipped'

STOP_MODE_SWITCH = 'mode_switch'
STOP_WINDOW_CAP = 'window_cap'
STOP_MAX_PAGES = 'max_pages'
STOP_HARD_CAP = 'hard_cap'
STOP_CAUGHT_UP = 'caught_up_to_cursor'
STOP_SHORT_PAGE = 'short_page'
STOP_SWEEP_COMPLETE = 'sweep_complete'


@dataclass
class PageRequest:
    mode: str
    limit: int
    offset: int = 0
    updated_at_since: Optional[datetime] = None


@dataclass
class FeedRecord:
    external_id: str
    updated_at: Optional[datetime]
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FeedPage:
    records: List[FeedRecord]
    total: Optional[int]
    limit: int
    offset: int = 0


@dataclass
class CrawlResult:
    state_before: CrawlState
    state: CrawlState
    pages: int = 0
    processed: int = 0
    refreshed: int = 0
    skipped: int = 0
    outcomes: List[Dict[str, Any]] = field(default_factory=list)
    switched_mode: bool = False
    finished: bool = False
    stopped_reason: Optional[str] = None


FetchPage = Callable[[PageRequest], Awaitable[FeedPage]]
ProcessRecord = Callable[[FeedRecord], Awaitable[Dict[str, Any]]]


def _skip_outcome(record: FeedRecord, reason: str) -> Dict[str, Any]:
    return {'external_id': record.external_id, 'action': ACTION_SKIPPED, 'reason': reason}


def build_page_request(state: CrawlState, limit: int) -> PageRequest:
    if state.is_cursor_mode:
        return PageRequest(mode=state.mode, limit=limit, offset=0, updated_at_since=state.cursor_updated_at)
    return PageRequest(mode=state.mode, limit=limit, offset=state.cursor_offset)


async def run_crawl(
    state: CrawlState,
    *,
    fetch_page: FetchPage,
    process_record: ProcessRecord,
    max_pages: int = config.SYNC_MAX_PAGES_DEFAULT,
    hard_cap: int = config.SYNC_HARD_CAP_DEFAULT,
    force: bool = False,
    window_cap: int = config.MANGADEX_WINDOW_CAP,
) -> CrawlResult:
    if needs_mode_switch(state, window_cap):
        switched = switch_to_cursor_mode(state)
        LOGGER.info(
            "Crawl state %s reached the %s record window at offset %s; switching to updatedAt cursor mode",
            state.id,
            window_cap,
            state.cursor_offset,
        )
        return CrawlResult(
            state_before=state,
            state=switched,
            switched_mode=True,
            stopped_reason=STOP_MODE_SWITCH,
        )

    result = CrawlResult(state_before=state, state=state)
    limit = effective_page_limit(state)
    current = state
    stop_cursor_at = state.cursor_updated_at
    stop_cursor_id = state.cursor_last_id

    while result.stopped_reason is None:
        if result.pages >= max_pages:
            result.stopped_reason = STOP_MAX_PAGES
            break
        if result.processed >= hard_cap:
            result.stopped_reason = STOP_HARD_CAP
            break
        # the switch itself happens on the next invocation
        if current.mode == MODE_OFFSET and current.cursor_offset + limit > window_cap:
            result.stopped_reason = STOP_WINDOW_CAP
            break

        request = build_page_request(current, limit)
        page = await fetch_page(request)
        result.pages += 1

        consumed = 0
        for record in page.records:
            if result.processed >= hard_cap:
                result.stopped_reason = STOP_HARD_CAP
                break

            if current.is_cursor_mode and not force:
                if record.updated_at is None:
                    consumed += 1
                    result.skipped += 1
                    result.outcomes.append(_skip_outcome(record, 'missing_updated_at'))
                    continue
                if is_already_processed(record.updated_at, record.external_id, stop_cursor_at, stop_cursor_id):
                    result.skipped += 1
                    result.outcomes.append(_skip_outcome(record, 'already_processed'))
                    result.stopped_reason = STOP_CAUGHT_UP
                    break

            outcome = await process_record(record)
            consumed += 1
            result.processed += 1
            result.outcomes.append(outcome)
            if outcome.get('action') == ACTION_SKIPPED:
                result.skipped += 1
            else:
                result.refreshed += 1

            if current.is_cursor_mode and record.updated_at is not None:
                current = advance_cursor(current, record.updated_at, record.external_id)

        if current.mode == MODE_OFFSET:
            total = page.total if page.total is not None else current.total
            page_offset = current.cursor_offset
            if result.stopped_reason == STOP_HARD_CAP:
                current = replace(current, cursor_offset=page_offset + consumed, total=total)
                break
            exhausted = len(page.records) < limit or (total is not None and page_offset + limit >= total)
            if exhausted:
                current = replace(current, cursor_offset=0, total=total)
                result.finished = True
                result.stopped_reason = STOP_SWEEP_COMPLETE
                break
            current = replace(current, cursor_offset=page_offset + limit, total=total)
        elif result.stopped_reason is None and len(page.records) < limit:
            result.finished = True
            result.stopped_reason = STOP_SHORT_PAGE

    result.state = replace(current, processed_count=current.processed_count + result.processed)
    LOGGER.info(
        "Crawl %s (%s): pages=%s processed=%s refreshed=%s skipped=%s finished=%s stopped=%s",
        state.id,
        state.mode,
        result.pages,
        result.processed,
        result.refreshed,
        result.skipped,
        result.finished,
        result.stopped_reason,
    )
    return result
