"""Repository for mangadex_recent_chapters."""

from psycopg2.extras import Json

from database import get_cursor


def upsert_recent_chapter(conn, chapter):
    """Insert or refresh one chapter activity row keyed by its MangaDex chapter id."""
    cursor = get_cursor(conn)
    cursor.execute(
        """
        INSERT INTO mangadex_recent_chapters (
            mangadex_chapter_id,
            manga_id,
            mangadex_manga_id,
            chapter,
            volume,
            title,
            translated_language,
            readable_at,
            published_at,
            mangadex_updated_at,
            group_id,
            group_name,
            raw_json
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (mangadex_chapter_id) DO UPDATE SET
            manga_id = COALESCE(EXCLUDED.manga_id, mangadex_recent_chapters.manga_id),
            mangadex_manga_id = EXCLUDED.mangadex_manga_id,
            chapter = EXCLUDED.chapter,
            volume = EXCLUDED.volume,
            title = EXCLUDED.title,
            translated_language = EXCLUDED.translated_language,
            readable_at = EXCLUDED.readable_at,
            published_at = EXCLUDED.published_at,
            mangadex_updated_at = EXCLUDED.mangadex_updated_at,
            group_id = EXCLUDED.group_id,
            group_name = EXCLUDED.group_name,
            raw_json = EXCLUDED.raw_json,
            updated_at = NOW()
        """,
        (
            chapter['mangadex_chapter_id'],
            chapter.get('manga_id'),
            chapter.get('mangadex_manga_id'),
            chapter.get('chapter'),
            chapter.get('volume'),
            chapter.get('title'),
            chapter.get('translated_language'),
            chapter.get('readable_at'),
            chapter.get('published_at'),
            chapter.get('mangadex_updated_at'),
            chapter.get('group_id'),
            chapter.get('group_name'),
            Json(chapter.get('raw_json') or {}),
        ),
    )
    cursor.close()
