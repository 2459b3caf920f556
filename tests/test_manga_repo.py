from repositories import manga_repo
from services.mangadex_normalizer import normalize_manga


class FakeCursor:
    def __init__(self, fetchone_results=()):
        self.fetchone_results = list(fetchone_results)
        self.executed = []

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        return self.fetchone_results.pop(0) if self.fetchone_results else None

    def close(self):
        pass


def normalized_record():
    return normalize_manga({"id": "0123456789abcdef", "attributes": {"title": {"en": "Dungeon Meshi"}}})


def test_upsert_never_rewrites_slug_or_cover(monkeypatch):
    slug_cursor = FakeCursor([None])
    write_cursor = FakeCursor([{"id": "local-1"}])
    cursors = [slug_cursor, write_cursor]
    monkeypatch.setattr(manga_repo, "get_cursor", lambda conn: cursors.pop(0))

    manga_id = manga_repo.upsert_manga_from_mangadex(object(), normalized_record())

    assert manga_id == "local-1"
    upsert_sql, params = write_cursor.executed[0]
    update_clause = upsert_sql.split("DO UPDATE SET", 1)[1]
    assert "ON CONFLICT (source, external_id)" in upsert_sql
    assert "slug =" not in update_clause
    assert "cover_image_url =" not in update_clause
    assert params[0] == "dungeon-meshi"

    link_sql, link_params = write_cursor.executed[1]
    assert "INSERT INTO manga_external_ids" in link_sql
    assert "DO NOTHING" in link_sql
    assert link_params == ("local-1", "mangadex", "0123456789abcdef")


def test_slug_collision_gets_deterministic_suffix(monkeypatch):
    cursor = FakeCursor([{"source": "mangadex", "external_id": "someone-else"}])
    monkeypatch.setattr(manga_repo, "get_cursor", lambda conn: cursor)

    slug = manga_repo.resolve_unique_slug(object(), "dungeon-meshi", source="mangadex", external_id="0123456789abcdef")

    assert slug == "dungeon-meshi-01234567"


def test_slug_kept_when_owned_by_same_record(monkeypatch):
    cursor = FakeCursor([{"source": "mangadex", "external_id": "0123456789abcdef"}])
    monkeypatch.setattr(manga_repo, "get_cursor", lambda conn: cursor)

    slug = manga_repo.resolve_unique_slug(object(), "dungeon-meshi", source="mangadex", external_id="0123456789abcdef")

    assert slug == "dungeon-meshi"


def test_taken_suffix_falls_back_to_full_external_id(monkeypatch):
    cursor = FakeCursor(
        [
            {"source": "mangadex", "external_id": "someone-else"},
            {"source": "mangadex", "external_id": "01234567-other"},
        ]
    )
    monkeypatch.setattr(manga_repo, "get_cursor", lambda conn: cursor)

    slug = manga_repo.resolve_unique_slug(object(), "dungeon-meshi", source="mangadex", external_id="0123456789abcdef")

    assert slug == "dungeon-meshi-0123456789abcdef"
    assert [params for _, params in cursor.executed] == [("dungeon-meshi",), ("dungeon-meshi-01234567",)]
