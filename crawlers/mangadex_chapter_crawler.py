import logging

import config
from crawlers.base_crawler import CatalogFeedCrawler
from repositories.recent_chapters_repo import upsert_recent_chapter
from services.crawl_engine import ACTION_SKIPPED
from utils.text import clean_text
from utils.time import parse_timestamp

LOGGER = logging.getLogger(__name__)


def _relationship(chapter, rel_type):
    for rel in chapter.get('relationships') or []:
        if isinstance(rel, dict) and rel.get('type') == rel_type and rel.get('id'):
            return rel
    return None


def parent_manga_id(chapter):
    rel = _relationship(chapter, 'manga')
    return str(rel['id']) if rel else None


def build_chapter_row(chapter, *, manga_id=None):
    attributes = chapter.get('attributes') or {}
    group = _relationship(chapter, 'scanlation_group') or {}
    return {
        'mangadex_chapter_id': str(chapter['id']),
        'manga_id': manga_id,
        'mangadex_manga_id': parent_manga_id(chapter),
        'chapter': clean_text(attributes.get('chapter')) or None,
        'volume': clean_text(attributes.get('volume')) or None,
        'title': clean_text(attributes.get('title')) or None,
        'translated_language': attributes.get('translatedLanguage'),
        'readable_at': parse_timestamp(attributes.get('readableAt')),
        'published_at': parse_timestamp(attributes.get('publishAt')),
        'mangadex_updated_at': parse_timestamp(attributes.get('updatedAt')),
        'group_id': group.get('id'),
        'group_name': clean_text((group.get('attributes') or {}).get('name')) or None,
        'raw_json': chapter,
    }


class MangaDexChapterCrawler(CatalogFeedCrawler):
    """
    Chapter activity feed.

    Records are chapters, but what gets synchronized is the parent manga, so
    each chapter's manga id is resolved and the full manga record is fetched
    separately. A parent is refreshed at most once per invocation.
    """

    feed_name = 'chapters'
    default_state_id = config.CHAPTER_FEED_STATE_ID
    note = (
        "MangaDex /chapter activity ordered by updatedAt ascending. Each chapter's parent manga "
        "is fetched in full and refreshed once per call; further chapters of the same manga are "
        "recorded as skipped (duplicate_in_run). Chapters are stored in mangadex_recent_chapters."
    )

    def start_invocation(self, state_id):
        super().start_invocation(state_id)
        self.seen_manga_ids = {}

    async def fetch_page(self, request):
        return await self.api.list_chapter_page(request)

    def _store_chapter(self, chapter, manga_id):
        try:
            upsert_recent_chapter(self.conn, build_chapter_row(chapter, manga_id=manga_id))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    async def process_record(self, record):
        chapter = record.raw
        parent_id = parent_manga_id(chapter)

        if parent_id is None:
            self._store_chapter(chapter, None)
            return {'external_id': record.external_id, 'action': ACTION_SKIPPED, 'reason': 'no_parent_manga'}

        if parent_id in self.seen_manga_ids:
            self._store_chapter(chapter, self.seen_manga_ids[parent_id])
            LOGGER.info("Chapter %s: manga %s already refreshed in this run", record.external_id, parent_id)
            return {
                'external_id': record.external_id,
                'mangadex_manga_id': parent_id,
                'action': ACTION_SKIPPED,
                'reason': 'duplicate_in_run',
            }

        raw_manga = await self.api.get_manga(parent_id)
        updated_at = parse_timestamp((raw_manga.get('attributes') or {}).get('updatedAt'))
        outcome = await self.pipeline.process(raw_manga, updated_at)
        self.seen_manga_ids[parent_id] = outcome['manga_id']
        self._store_chapter(chapter, outcome['manga_id'])

        outcome['chapter_id'] = record.external_id
        return outcome
