# database.py

from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from flask import g

import config


SCHEMA_STATEMENTS = [
    'CREATE EXTENSION IF NOT EXISTS "pgcrypto"',
    """
    CREATE TABLE IF NOT EXISTS mangadex_crawl_state (
        id TEXT PRIMARY KEY,
        mode TEXT NOT NULL DEFAULT 'offset',
        cursor_offset INTEGER NOT NULL DEFAULT 0,
        cursor_updated_at TIMESTAMPTZ,
        cursor_last_id TEXT,
        page_limit INTEGER NOT NULL DEFAULT 100,
        total INTEGER,
        processed_count BIGINT NOT NULL DEFAULT 0,
        version BIGINT NOT NULL DEFAULT 0,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT mangadex_crawl_state_mode_check CHECK (mode IN ('offset', 'updatedat'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS manga (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        slug TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        title_english TEXT,
        title_native TEXT,
        title_preferred TEXT,
        description TEXT,
        status TEXT,
        publication_year INTEGER,
        genres TEXT[] NOT NULL DEFAULT '{}',
        cover_image_url TEXT,
        source TEXT NOT NULL,
        external_id TEXT NOT NULL,
        snapshot JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (source, external_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS manga_external_ids (
        id BIGSERIAL PRIMARY KEY,
        manga_id UUID NOT NULL REFERENCES manga(id) ON DELETE CASCADE,
        source TEXT NOT NULL,
        external_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (source, external_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mangadex_delta_log (
        id BIGSERIAL PRIMARY KEY,
        state_id TEXT NOT NULL,
        mangadex_id TEXT NOT NULL,
        manga_id UUID,
        mangadex_updated_at TIMESTAMPTZ,
        action TEXT NOT NULL CHECK (action IN ('insert', 'update')),
        changed_fields JSONB NOT NULL DEFAULT '{}'::jsonb,
        before_row JSONB,
        after_row JSONB,
        logged_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_mangadex_delta_log_state_logged ON mangadex_delta_log (state_id, logged_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS manga_art_jobs (
        id BIGSERIAL PRIMARY KEY,
        manga_id UUID NOT NULL UNIQUE REFERENCES manga(id) ON DELETE CASCADE,
        status TEXT NOT NULL DEFAULT 'pending',
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mangadex_recent_chapters (
        id BIGSERIAL PRIMARY KEY,
        mangadex_chapter_id TEXT NOT NULL UNIQUE,
        manga_id UUID,
        mangadex_manga_id TEXT,
        chapter TEXT,
        volume TEXT,
        title TEXT,
        translated_language TEXT,
        readable_at TIMESTAMPTZ,
        published_at TIMESTAMPTZ,
        mangadex_updated_at TIMESTAMPTZ,
        group_id TEXT,
        group_name TEXT,
        raw_json JSONB,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_run_reports (
        id BIGSERIAL PRIMARY KEY,
        feed_name TEXT NOT NULL,
        status TEXT NOT NULL,
        report_data JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
]

# Crawl state rows are provisioned here, never by the sync jobs themselves.
DEFAULT_CRAWL_STATES = [
    (config.TITLE_FEED_STATE_ID, 'offset'),
    (config.TITLE_DELTA_STATE_ID, 'updatedat'),
    (config.CHAPTER_FEED_STATE_ID, 'updatedat'),
]


def _connection_kwargs():
    # cursor timestamps are compared as UTC
    if config.DATABASE_URL:
        return {'dsn': config.DATABASE_URL, 'options': '-c timezone=UTC'}
    return {
        'options': '-c timezone=UTC',
        'dbname': config.DB_NAME,
        'user': config.DB_USER,
        'password': config.DB_PASSWORD,
        'host': config.DB_HOST,
        'port': config.DB_PORT,
    }


def create_standalone_connection():
    """Open a connection outside of the Flask application context."""
    return psycopg2.connect(**_connection_kwargs())


def get_db():
    """Return the request-scoped connection, opening it on first use."""
    if 'db' not in g:
        g.db = create_standalone_connection()
    return g.db


def close_db(exception=None):
    db = g.pop('db', None)
    if db is not None:
        db.close()


def get_cursor(conn):
    return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)


@contextmanager
def managed_cursor(conn):
    cursor = get_cursor(conn)
    try:
        yield cursor
    finally:
        cursor.close()


def setup_database(conn):
    with managed_cursor(conn) as cursor:
        for statement in SCHEMA_STATEMENTS:
            cursor.execute(statement)
        for state_id, mode in DEFAULT_CRAWL_STATES:
            cursor.execute(
                """
                INSERT INTO mangadex_crawl_state (id, mode, cursor_offset, page_limit)
                VALUES (%s, %s, 0, %s)
                ON CONFLICT (id) DO NOTHING
                """,
                (state_id, mode, config.SYNC_DEFAULT_PAGE_LIMIT),
            )
    conn.commit()


def setup_database_standalone():
    conn = create_standalone_connection()
    try:
        setup_database(conn)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
