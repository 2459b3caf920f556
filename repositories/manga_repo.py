"""Repository for canonical manga rows and their external id links."""

from psycopg2.extras import Json

from database import get_cursor

MANGA_COLUMNS = (
    'id',
    'slug',
    'title',
    'title_english',
    'title_native',
    'title_preferred',
    'description',
    'status',
    'publication_year',
    'genres',
    'cover_image_url',
    'source',
    'external_id',
    'snapshot',
    'created_at',
    'updated_at',
)


def find_external_link(conn, source, external_id):
    """Return the linked manga id for ``(source, external_id)`` or None."""
    cursor = get_cursor(conn)
    cursor.execute(
        "SELECT manga_id FROM manga_external_ids WHERE source = %s AND external_id = %s",
        (source, external_id),
    )
    row = cursor.fetchone()
    cursor.close()
    return row['manga_id'] if row else None


def get_manga(conn, manga_id):
    cursor = get_cursor(conn)
    cursor.execute(
        f"SELECT {', '.join(MANGA_COLUMNS)} FROM manga WHERE id = %s",
        (manga_id,),
    )
    row = cursor.fetchone()
    cursor.close()
    return dict(row) if row else None


def resolve_unique_slug(conn, slug, *, source, external_id):
    """
    Keep ``slug`` unless another record owns it.

    A different owner gets the deterministic ``{slug}-{external_id[:8]}``
    variant so repeated runs land on the same slug. If that is taken too, the
    full external id is used, which is unique per source.
    """
    short_id = external_id[:8].lower()
    candidates = [slug, f"{slug}-{short_id}", f"{slug}-{external_id.lower()}"]
    cursor = get_cursor(conn)
    try:
        for candidate in candidates[:-1]:
            cursor.execute(
                "SELECT source, external_id FROM manga WHERE slug = %s",
                (candidate,),
            )
            row = cursor.fetchone()
            if row is None or (row['source'] == source and row['external_id'] == external_id):
                return candidate
    finally:
        cursor.close()
    return candidates[-1]


def upsert_manga_from_mangadex(conn, normalized):
    """
    Insert or refresh the canonical row for a normalized MangaDex record.

    Returns the local manga id. ``slug`` and ``cover_image_url`` are written on
    insert only; later refreshes leave them alone so URLs and cached covers
    stay put.
    """
    slug = resolve_unique_slug(
        conn, normalized.slug, source=normalized.source, external_id=normalized.external_id
    )
    cursor = get_cursor(conn)
    cursor.execute(
        """
        INSERT INTO manga (
            slug,
            title,
            title_english,
            title_native,
            title_preferred,
            description,
            status,
            publication_year,
            genres,
            cover_image_url,
            source,
            external_id,
            snapshot
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, NULL, %s, %s, %s)
        ON CONFLICT (source, external_id) DO UPDATE SET
            title = EXCLUDED.title,
            title_english = EXCLUDED.title_english,
            title_native = EXCLUDED.title_native,
            title_preferred = EXCLUDED.title_preferred,
            description = EXCLUDED.description,
            status = EXCLUDED.status,
            publication_year = EXCLUDED.publication_year,
            genres = EXCLUDED.genres,
            snapshot = EXCLUDED.snapshot,
            updated_at = NOW()
        RETURNING id
        """,
        (
            slug,
            normalized.title,
            normalized.title_english,
            normalized.title_native,
            normalized.title_preferred,
            normalized.description,
            normalized.status,
            normalized.publication_year,
            list(normalized.merged_genres),
            normalized.source,
            normalized.external_id,
            Json(normalized.snapshot),
        ),
    )
    manga_id = cursor.fetchone()['id']
    cursor.execute(
        """
        INSERT INTO manga_external_ids (manga_id, source, external_id)
        VALUES (%s, %s, %s)
        ON CONFLICT (source, external_id) DO NOTHING
        """,
        (manga_id, normalized.source, normalized.external_id),
    )
    cursor.close()
    return manga_id


def update_cover_url(conn, manga_id, cover_image_url):
    cursor = get_cursor(conn)
    cursor.execute(
        "UPDATE manga SET cover_image_url = %s, updated_at = NOW() WHERE id = %s",
        (cover_image_url, manga_id),
    )
    updated = cursor.rowcount
    cursor.close()
    return updated > 0
