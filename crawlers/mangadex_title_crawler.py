import config
from crawlers.base_crawler import CatalogFeedCrawler
from repositories.manga_repo import find_external_link, get_manga
from services.crawl_engine import PageRequest
from services.crawl_state import MODE_OFFSET, MODE_UPDATED_AT
from services.delta_pipeline import ACTION_INSERT, ACTION_UPDATE, pick_comparable


class MangaDexTitleCrawler(CatalogFeedCrawler):
    """Title metadata feed: every listed manga goes through the delta pipeline."""

    feed_name = 'titles'
    default_state_id = config.TITLE_FEED_STATE_ID
    note = (
        "MangaDex /manga listing. Offset mode sweeps by createdAt until the 10k pagination "
        "window, then the state switches to updatedAt cursor mode (order[updatedAt]=asc from "
        "cursor_updated_at). finished=true in cursor mode only means the last page was short; "
        "the feed keeps changing, so call again later."
    )

    async def fetch_page(self, request):
        return await self.api.list_manga_page(request)

    async def process_record(self, record):
        return await self.pipeline.process(record.raw, record.updated_at)

    async def progress(self, state_id=None):
        """Compare the state's cursor with upstream totals using ids-only listings."""
        state_id = state_id or self.default_state_id
        state = self._load_state(state_id)

        overall = await self.api.list_manga_ids_page(PageRequest(mode=MODE_OFFSET, limit=1, offset=0))
        payload = {
            'success': True,
            'state_id': state_id,
            'mode': state.mode,
            'cursor': state.cursor_snapshot(),
            'processed_count': state.processed_count,
            'upstream_total': overall.total,
        }
        if state.is_cursor_mode:
            pending = await self.api.list_manga_ids_page(
                PageRequest(mode=MODE_UPDATED_AT, limit=1, updated_at_since=state.cursor_updated_at)
            )
            payload['pending_since_cursor'] = pending.total
        elif overall.total:
            payload['sweep_percent'] = round(min(state.cursor_offset, overall.total) * 100.0 / overall.total, 2)
        return payload


def lookup_external_id(conn, md_id, *, source=config.MANGADEX_SOURCE):
    """Debug view of what the pipeline would do with one MangaDex id."""
    manga_id = find_external_link(conn, source, md_id)
    manga = get_manga(conn, manga_id) if manga_id else None
    return {
        'success': True,
        'md_id': md_id,
        'linked': manga_id is not None,
        'manga_id': str(manga_id) if manga_id else None,
        'slug': manga['slug'] if manga else None,
        'would_action': ACTION_UPDATE if manga else ACTION_INSERT,
        'current': pick_comparable(manga),
    }
