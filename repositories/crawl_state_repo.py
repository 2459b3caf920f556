"""Repository for mangadex_crawl_state rows."""

from database import get_cursor
from services.crawl_state import MODES, CrawlState
from services.errors import CrawlStateConflictError, CrawlStateError, CrawlStateMissingError

_COLUMNS = (
    'id',
    'mode',
    'cursor_offset',
    'cursor_updated_at',
    'cursor_last_id',
    'page_limit',
    'total',
    'processed_count',
    'updated_at',
    'version',
)


def _row_to_state(row) -> CrawlState:
    mode = row['mode']
    if mode not in MODES:
        raise CrawlStateError(f'mangadex_crawl_state id="{row["id"]}" has unknown mode {mode!r}')
    return CrawlState(
        id=row['id'],
        mode=mode,
        cursor_offset=int(row['cursor_offset'] or 0),
        cursor_updated_at=row['cursor_updated_at'],
        cursor_last_id=row['cursor_last_id'],
        page_limit=int(row['page_limit'] or 0),
        total=row['total'],
        processed_count=int(row['processed_count'] or 0),
        updated_at=row['updated_at'],
        version=int(row['version'] or 0),
    )


def load_crawl_state(conn, state_id) -> CrawlState:
    cursor = get_cursor(conn)
    cursor.execute(
        f"SELECT {', '.join(_COLUMNS)} FROM mangadex_crawl_state WHERE id = %s",
        (state_id,),
    )
    row = cursor.fetchone()
    cursor.close()
    if row is None:
        raise CrawlStateMissingError(state_id)
    return _row_to_state(row)


def save_crawl_state(conn, state: CrawlState, *, expected_version) -> CrawlState:
    """
    Persist ``state`` if nobody else wrote the row since it was loaded.

    The heartbeat (``updated_at``) is always refreshed and ``version`` is
    bumped. Raises CrawlStateConflictError when the stored version moved.
    The caller owns the transaction.
    """
    cursor = get_cursor(conn)
    cursor.execute(
        """
        UPDATE mangadex_crawl_state
        SET mode = %s,
            cursor_offset = %s,
            cursor_updated_at = %s,
            cursor_last_id = %s,
            page_limit = %s,
            total = %s,
            processed_count = %s,
            updated_at = NOW(),
            version = version + 1
        WHERE id = %s AND version = %s
        RETURNING updated_at, version
        """,
        (
            state.mode,
            state.cursor_offset,
            state.cursor_updated_at,
            state.cursor_last_id,
            state.page_limit,
            state.total,
            state.processed_count,
            state.id,
            expected_version,
        ),
    )
    row = cursor.fetchone()
    cursor.close()
    if row is None:
        raise CrawlStateConflictError(state.id, expected_version)

    state.updated_at = row['updated_at']
    state.version = int(row['version'])
    return state
