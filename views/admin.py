# views/admin.py

import asyncio

from flask import Blueprint, current_app, jsonify, request

import config
from crawlers.base_crawler import open_http_session
from crawlers.mangadex_chapter_crawler import MangaDexChapterCrawler
from crawlers.mangadex_title_crawler import MangaDexTitleCrawler, lookup_external_id
from database import get_db
from repositories.delta_log_repo import list_recent_delta_logs
from services.cover_cache import CoverCacheFetcher, ObjectStorage, recache_manga_cover
from services.errors import SyncError
from utils.auth import admin_secret_required, cron_token_required
from utils.time import isoformat_z


admin_bp = Blueprint('admin', __name__)

FEEDS = {
    MangaDexTitleCrawler.feed_name: MangaDexTitleCrawler,
    MangaDexChapterCrawler.feed_name: MangaDexChapterCrawler,
}

TRUE_VALUES = {'1', 'true', 'yes', 'on'}


def _error_response(status_code: int, code: str, message: str):
    return jsonify({'success': False, 'error': {'code': code, 'message': message}}), status_code


def _param(name):
    value = request.args.get(name)
    if value is None and request.method == 'POST':
        body = request.get_json(silent=True) or {}
        value = body.get(name)
    return value


def _text_param(name):
    value = _param(name)
    if value is None:
        return ''
    return str(value).strip()


def _flag(name):
    value = _param(name)
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in TRUE_VALUES


def _bounded_int(name, default, minimum, maximum):
    raw = _param(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(f'{name} must be an integer')
    return max(minimum, min(value, maximum))


def _handle_sync_error(e: SyncError):
    current_app.logger.exception("MangaDex sync failed: %s", e.message)
    return _error_response(e.http_status, e.code, e.message)


async def run_feed_invocation(crawler_cls, conn, *, state_id, peek, max_pages, hard_cap, force):
    async with open_http_session() as session:
        crawler = crawler_cls.from_session(conn, session)
        if peek:
            return await crawler.peek(state_id)
        return await crawler.run_invocation(state_id, max_pages=max_pages, hard_cap=hard_cap, force=force)


async def run_progress(conn, state_id):
    async with open_http_session() as session:
        crawler = MangaDexTitleCrawler.from_session(conn, session)
        return await crawler.progress(state_id)


async def run_cover_recache(conn, manga_id):
    async with open_http_session() as session:
        fetcher = CoverCacheFetcher(session, ObjectStorage())
        return await recache_manga_cover(conn, manga_id, fetcher)


def _run_feed(crawler_cls):
    try:
        max_pages = _bounded_int('max_pages', config.SYNC_MAX_PAGES_DEFAULT, 1, config.SYNC_MAX_PAGES_LIMIT)
        hard_cap = _bounded_int('hard_cap', config.SYNC_HARD_CAP_DEFAULT, 1, config.SYNC_HARD_CAP_LIMIT)
    except ValueError as e:
        return _error_response(400, 'INVALID_REQUEST', str(e))

    state_id = _text_param('state_id') or crawler_cls.default_state_id
    conn = get_db()

    md_id = _text_param('md_id')
    if md_id:
        try:
            return jsonify(lookup_external_id(conn, md_id))
        except Exception as e:
            current_app.logger.exception("MangaDex id lookup failed for %s", md_id)
            return _error_response(500, 'INTERNAL_ERROR', str(e))

    try:
        payload = asyncio.run(
            run_feed_invocation(
                crawler_cls,
                conn,
                state_id=state_id,
                peek=_flag('peek'),
                max_pages=max_pages,
                hard_cap=hard_cap,
                force=_flag('force'),
            )
        )
    except SyncError as e:
        return _handle_sync_error(e)
    except Exception as e:
        current_app.logger.exception("MangaDex %s sync crashed", crawler_cls.feed_name)
        return _error_response(500, 'INTERNAL_ERROR', str(e))

    return jsonify(payload)


@admin_bp.route('/api/admin/mangadex/crawl', methods=['GET', 'POST'])
@admin_secret_required
def crawl_mangadex_titles():
    return _run_feed(MangaDexTitleCrawler)


@admin_bp.route('/api/admin/mangadex/chapter-activity', methods=['GET', 'POST'])
@admin_secret_required
def crawl_mangadex_chapter_activity():
    return _run_feed(MangaDexChapterCrawler)


@admin_bp.route('/api/admin/mangadex/progress', methods=['GET'])
@admin_secret_required
def mangadex_progress():
    state_id = _text_param('state_id') or config.TITLE_FEED_STATE_ID
    try:
        payload = asyncio.run(run_progress(get_db(), state_id))
    except SyncError as e:
        return _handle_sync_error(e)
    except Exception as e:
        current_app.logger.exception("MangaDex progress lookup failed")
        return _error_response(500, 'INTERNAL_ERROR', str(e))
    return jsonify(payload)


@admin_bp.route('/api/admin/mangadex/last-updates', methods=['GET'])
@admin_secret_required
def mangadex_last_updates():
    state_id = _text_param('state_id') or config.TITLE_DELTA_STATE_ID
    try:
        limit = _bounded_int('limit', 50, 1, 200)
        minutes = _bounded_int('minutes', None, 1, 60 * 24 * 30)
    except ValueError as e:
        return _error_response(400, 'INVALID_REQUEST', str(e))

    try:
        rows = list_recent_delta_logs(get_db(), state_id=state_id, limit=limit, minutes=minutes)
    except Exception as e:
        current_app.logger.exception("MangaDex last-updates lookup failed for %s", state_id)
        return _error_response(500, 'INTERNAL_ERROR', str(e))
    items = [
        {
            'id': row['id'],
            'mangadex_id': row['mangadex_id'],
            'manga_id': str(row['manga_id']) if row['manga_id'] else None,
            'slug': row.get('slug'),
            'title': row.get('title'),
            'action': row['action'],
            'changed_fields': row['changed_fields'] or {},
            'mangadex_updated_at': isoformat_z(row['mangadex_updated_at']),
            'logged_at': isoformat_z(row['logged_at']),
        }
        for row in rows
    ]
    return jsonify({'success': True, 'state_id': state_id, 'count': len(items), 'items': items})


@admin_bp.route('/api/admin/mangadex/cache-cover', methods=['POST'])
@admin_secret_required
def mangadex_cache_cover():
    manga_id = _text_param('manga_id')
    if not manga_id:
        return _error_response(400, 'INVALID_REQUEST', 'manga_id is required')

    conn = get_db()
    try:
        payload = asyncio.run(run_cover_recache(conn, manga_id))
        conn.commit()
    except SyncError as e:
        conn.rollback()
        return _handle_sync_error(e)
    except Exception as e:
        conn.rollback()
        current_app.logger.exception("Cover re-cache failed for %s", manga_id)
        return _error_response(500, 'INTERNAL_ERROR', str(e))

    return jsonify({'success': True, **payload})


@admin_bp.route('/api/cron/mangadex/<feed>', methods=['GET', 'POST'])
@cron_token_required
def cron_mangadex_feed(feed):
    crawler_cls = FEEDS.get(feed)
    if crawler_cls is None:
        return _error_response(404, 'UNKNOWN_FEED', f'Unknown feed "{feed}"')
    return _run_feed(crawler_cls)
