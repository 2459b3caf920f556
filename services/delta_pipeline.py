"""Upsert one upstream manga record and audit what changed.

Each call to :meth:`MangaDeltaPipeline.process` is one unit of work that is
committed when every step succeeds. A failure rolls back that record only;
earlier records stay committed, which is safe because the upsert is
idempotent and a rerun simply reprocesses them.
"""

import logging
from typing import Any, Dict, Optional

import config
from repositories.art_jobs_repo import enqueue_art_job
from repositories.delta_log_repo import insert_delta_log
from repositories.manga_repo import (
    find_external_link,
    get_manga,
    update_cover_url,
    upsert_manga_from_mangadex,
)
from services.mangadex_normalizer import normalize_manga
from utils.time import isoformat_z

LOGGER = logging.getLogger(__name__)

ACTION_INSERT = 'insert'
ACTION_UPDATE = 'update'

COMPARABLE_FIELDS = (
    'title',
    'title_english',
    'title_native',
    'title_preferred',
    'description',
    'status',
    'publication_year',
    'genres',
    'cover_image_url',
    'external_id',
    'source',
)


def pick_comparable(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    projection = {}
    for field_name in COMPARABLE_FIELDS:
        value = row.get(field_name)
        if field_name == 'genres':
            value = list(value or [])
        projection[field_name] = value
    return projection


def _comparable_value(value):
    if isinstance(value, (list, tuple)):
        return sorted((str(item) for item in value), key=str.casefold)
    return value


def diff_projections(before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Field-level ``{field: {from, to}}`` map; list order is ignored."""
    before = before or {}
    after = after or {}
    changes = {}
    for field_name in sorted(set(before) | set(after)):
        old = before.get(field_name)
        new = after.get(field_name)
        if _comparable_value(old) != _comparable_value(new):
            changes[field_name] = {'from': old, 'to': new}
    return changes


class MangaDeltaPipeline:
    def __init__(self, conn, *, state_id, cover_fetcher=None, source=config.MANGADEX_SOURCE):
        self.conn = conn
        self.state_id = state_id
        self.cover_fetcher = cover_fetcher
        self.source = source

    async def process(self, raw_manga, upstream_updated_at=None) -> Dict[str, Any]:
        try:
            outcome = await self._process(raw_manga, upstream_updated_at)
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        return outcome

    async def _process(self, raw_manga, upstream_updated_at):
        normalized = normalize_manga(raw_manga)

        linked_id = find_external_link(self.conn, self.source, normalized.external_id)
        before_row = get_manga(self.conn, linked_id) if linked_id else None
        action = ACTION_UPDATE if before_row else ACTION_INSERT
        before = pick_comparable(before_row)

        manga_id = upsert_manga_from_mangadex(self.conn, normalized)
        after_row = get_manga(self.conn, manga_id)
        after = pick_comparable(after_row)
        changed_fields = diff_projections(before, after)

        insert_delta_log(
            self.conn,
            state_id=self.state_id,
            mangadex_id=normalized.external_id,
            manga_id=manga_id,
            mangadex_updated_at=upstream_updated_at,
            action=action,
            changed_fields=changed_fields,
            before_row=before,
            after_row=after,
        )

        cover_url = after_row.get('cover_image_url') if after_row else None
        cover_cached = False
        if not cover_url and normalized.cover_candidates and self.cover_fetcher is not None:
            cached = await self.cover_fetcher.cache_cover(after_row['slug'], normalized.cover_candidates)
            update_cover_url(self.conn, manga_id, cached.public_url)
            cover_url = cached.public_url
            cover_cached = True

        enqueue_art_job(self.conn, manga_id)

        if changed_fields:
            LOGGER.info(
                "%s %s (%s): %s",
                action,
                normalized.external_id,
                after_row.get('slug') if after_row else normalized.slug,
                ', '.join(sorted(changed_fields)),
            )

        return {
            'external_id': normalized.external_id,
            'manga_id': str(manga_id),
            'slug': after_row.get('slug') if after_row else normalized.slug,
            'title': normalized.title,
            'action': action,
            'changed_fields': sorted(changed_fields),
            'cover_cached': cover_cached,
            'cover_image_url': cover_url,
            'mangadex_updated_at': isoformat_z(upstream_updated_at),
        }
