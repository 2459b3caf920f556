"""Repository for manga_art_jobs."""

from database import get_cursor

ART_JOB_PENDING = 'pending'


def enqueue_art_job(conn, manga_id):
    """Mark the record's art job pending, creating the row on first use."""
    cursor = get_cursor(conn)
    cursor.execute(
        """
        INSERT INTO manga_art_jobs (manga_id, status)
        VALUES (%s, %s)
        ON CONFLICT (manga_id) DO UPDATE SET
            status = EXCLUDED.status,
            updated_at = NOW()
        """,
        (manga_id, ART_JOB_PENDING),
    )
    cursor.close()
