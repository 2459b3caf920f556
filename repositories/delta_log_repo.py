"""Repository for the append-only mangadex_delta_log table."""

from psycopg2.extras import Json

from database import get_cursor


def insert_delta_log(
    conn,
    *,
    state_id,
    mangadex_id,
    manga_id,
    mangadex_updated_at,
    action,
    changed_fields,
    before_row,
    after_row,
):
    cursor = get_cursor(conn)
    cursor.execute(
        """
        INSERT INTO mangadex_delta_log (
            state_id,
            mangadex_id,
            manga_id,
            mangadex_updated_at,
            action,
            changed_fields,
            before_row,
            after_row
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            state_id,
            mangadex_id,
            manga_id,
            mangadex_updated_at,
            action,
            Json(changed_fields or {}),
            Json(before_row) if before_row is not None else None,
            Json(after_row) if after_row is not None else None,
        ),
    )
    row = cursor.fetchone()
    cursor.close()
    return row['id'] if row else None


def list_recent_delta_logs(conn, *, state_id, limit, minutes=None):
    """Newest entries first, optionally limited to the last ``minutes``."""
    sql = """
        SELECT l.id, l.state_id, l.mangadex_id, l.manga_id, l.mangadex_updated_at,
               l.action, l.changed_fields, l.logged_at, m.slug, m.title
        FROM mangadex_delta_log l
        LEFT JOIN manga m ON m.id = l.manga_id
        WHERE l.state_id = %s
    """
    params = [state_id]
    if minutes is not None:
        sql += " AND l.logged_at >= NOW() - (%s * INTERVAL '1 minute')"
        params.append(minutes)
    sql += " ORDER BY l.logged_at DESC, l.id DESC LIMIT %s"
    params.append(limit)

    cursor = get_cursor(conn)
    cursor.execute(sql, tuple(params))
    rows = cursor.fetchall()
    cursor.close()
    return [dict(row) for row in rows]
