import asyncio
import copy
import uuid

import pytest

import services.delta_pipeline as pipeline_module
from services.cover_cache import CachedCover
from services.delta_pipeline import MangaDeltaPipeline, diff_projections, pick_comparable
from services.errors import CoverCacheError


RAW_MANGA = {
    "id": "md-1",
    "attributes": {
        "title": {"en": "Blue Period"},
        "description": {"en": "Art school."},
        "status": "ongoing",
        "year": 2017,
        "tags": [
            {"attributes": {"group": "theme", "name": {"en": "School Life"}}},
            {"attributes": {"group": "genre", "name": {"en": "Drama"}}},
        ],
    },
    "relationships": [{"id": "c1", "type": "cover_art", "attributes": {"fileName": "cover.png", "locale": "ja"}}],
}


class FakeConnection:
    def __init__(self):
        self.commit_calls = 0
        self.rollback_calls = 0

    def commit(self):
        self.commit_calls += 1

    def rollback(self):
        self.rollback_calls += 1


class FakeStore:
    """In-memory stand-in for the manga, link, delta log and art job tables."""

    def __init__(self):
        self.links = {}
        self.manga = {}
        self.delta_logs = []
        self.art_jobs = {}
        self.upserts = 0

    def find_external_link(self, conn, source, external_id):
        return self.links.get((source, external_id))

    def get_manga(self, conn, manga_id):
        row = self.manga.get(manga_id)
        return copy.deepcopy(row) if row else None

    def upsert_manga_from_mangadex(self, conn, normalized):
        self.upserts += 1
        key = (normalized.source, normalized.external_id)
        fields = {
            "title": normalized.title,
            "title_english": normalized.title_english,
            "title_native": normalized.title_native,
            "title_preferred": normalized.title_preferred,
            "description": normalized.description,
            "status": normalized.status,
            "publication_year": normalized.publication_year,
            "genres": list(normalized.merged_genres),
            "snapshot": normalized.snapshot,
        }
        manga_id = self.links.get(key)
        if manga_id is None:
            manga_id = str(uuid.uuid4())
            self.manga[manga_id] = {
                "id": manga_id,
                "slug": normalized.slug,
                "cover_image_url": None,
                "source": normalized.source,
                "external_id": normalized.external_id,
                **fields,
            }
            self.links[key] = manga_id
        else:
            self.manga[manga_id].update(fields)
        return manga_id

    def update_cover_url(self, conn, manga_id, url):
        self.manga[manga_id]["cover_image_url"] = url
        return True

    def insert_delta_log(self, conn, **entry):
        self.delta_logs.append(entry)
        return len(self.delta_logs)

    def enqueue_art_job(self, conn, manga_id):
        self.art_jobs[manga_id] = "pending"


class FakeCoverFetcher:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def cache_cover(self, slug, candidates):
        self.calls.append((slug, list(candidates)))
        if self.error:
            raise self.error
        key = f"{slug}/cover.png"
        return CachedCover(public_url=f"https://cdn.test/{key}", source_url=candidates[0], storage_key=key)


@pytest.fixture
def store(monkeypatch):
    fake = FakeStore()
    for name in (
        "find_external_link",
        "get_manga",
        "upsert_manga_from_mangadex",
        "update_cover_url",
        "insert_delta_log",
        "enqueue_art_job",
    ):
        monkeypatch.setattr(pipeline_module, name, getattr(fake, name))
    return fake


def test_first_sight_inserts_logs_caches_cover_and_enqueues(store):
    conn = FakeConnection()
    fetcher = FakeCoverFetcher()
    pipeline = MangaDeltaPipeline(conn, state_id="main", cover_fetcher=fetcher)

    outcome = asyncio.run(pipeline.process(RAW_MANGA))

    assert outcome["action"] == "insert"
    assert outcome["slug"] == "blue-period"
    assert outcome["cover_cached"] is True
    assert outcome["cover_image_url"] == "https://cdn.test/blue-period/cover.png"
    assert len(store.delta_logs) == 1
    log = store.delta_logs[0]
    assert log["action"] == "insert"
    assert log["before_row"] is None
    assert log["changed_fields"]["title"] == {"from": None, "to": "Blue Period"}
    assert log["after_row"]["genres"] == ["Drama", "School Life"]
    assert store.art_jobs == {outcome["manga_id"]: "pending"}
    assert len(fetcher.calls) == 1
    assert conn.commit_calls == 1


def test_reprocessing_identical_record_is_idempotent(store):
    conn = FakeConnection()
    fetcher = FakeCoverFetcher()
    pipeline = MangaDeltaPipeline(conn, state_id="main", cover_fetcher=fetcher)

    first = asyncio.run(pipeline.process(RAW_MANGA))
    stored_after_first = store.get_manga(conn, first["manga_id"])
    second = asyncio.run(pipeline.process(RAW_MANGA))

    assert second["action"] == "update"
    assert second["manga_id"] == first["manga_id"]
    assert second["changed_fields"] == []
    assert len(store.manga) == 1
    assert store.get_manga(conn, first["manga_id"]) == stored_after_first
    # the empty diff is still logged
    assert len(store.delta_logs) == 2
    assert store.delta_logs[1]["changed_fields"] == {}
    assert len(fetcher.calls) == 1


def test_update_records_field_changes(store):
    conn = FakeConnection()
    pipeline = MangaDeltaPipeline(conn, state_id="titles_delta", cover_fetcher=FakeCoverFetcher())
    asyncio.run(pipeline.process(RAW_MANGA))

    changed = copy.deepcopy(RAW_MANGA)
    changed["attributes"]["status"] = "completed"
    outcome = asyncio.run(pipeline.process(changed))

    assert outcome["changed_fields"] == ["status"]
    assert store.delta_logs[-1]["changed_fields"] == {"status": {"from": "ongoing", "to": "completed"}}


def test_cover_failure_rolls_back_and_propagates(store):
    conn = FakeConnection()
    fetcher = FakeCoverFetcher(error=CoverCacheError("all failed", last_url="https://x/3", last_status=404))
    pipeline = MangaDeltaPipeline(conn, state_id="main", cover_fetcher=fetcher)

    with pytest.raises(CoverCacheError):
        asyncio.run(pipeline.process(RAW_MANGA))

    assert conn.rollback_calls == 1
    assert conn.commit_calls == 0


def test_no_cover_candidates_skips_cover_cache(store):
    raw = copy.deepcopy(RAW_MANGA)
    raw["relationships"] = []
    fetcher = FakeCoverFetcher()
    pipeline = MangaDeltaPipeline(FakeConnection(), state_id="main", cover_fetcher=fetcher)

    outcome = asyncio.run(pipeline.process(raw))

    assert outcome["cover_cached"] is False
    assert fetcher.calls == []
    assert store.art_jobs


def test_diff_compares_arrays_order_insensitively():
    before = {"genres": ["Drama", "Action"], "title": "A"}
    after = {"genres": ["Action", "Drama"], "title": "A"}

    assert diff_projections(before, after) == {}


def test_diff_uses_union_of_keys():
    assert diff_projections({"title": "A"}, {"status": "ongoing"}) == {
        "status": {"from": None, "to": "ongoing"},
        "title": {"from": "A", "to": None},
    }


def test_pick_comparable_excludes_snapshot():
    projection = pick_comparable({"title": "A", "snapshot": {"x": 1}, "genres": None})

    assert "snapshot" not in projection
    assert projection["genres"] == []
    assert pick_comparable(None) is None
