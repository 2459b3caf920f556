import asyncio

import aiohttp
import pytest

from services.cover_cache import CoverCacheFetcher, ObjectStorage, infer_extension, recache_manga_cover
import services.cover_cache as cover_cache_module
from services.errors import CoverCacheError, MangaNotFoundError


class FakeResponse:
    def __init__(self, status, body=b""):
        self.status = status
        self.body = body

    async def read(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    def __init__(self, responses):
        self.responses = dict(responses)
        self.requested = []

    def get(self, url, headers=None):
        self.requested.append(url)
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response


class FakeS3Client:
    def __init__(self):
        self.puts = []

    def put_object(self, **kwargs):
        self.puts.append(kwargs)


def make_storage():
    return ObjectStorage(
        bucket="covers",
        endpoint_url=None,
        region_name=None,
        public_base_url="https://cdn.test/covers",
        client=FakeS3Client(),
    )


def test_all_candidates_failing_raises_and_writes_nothing():
    urls = ["https://u.test/a.jpg", "https://u.test/a.jpg.512.jpg", "https://u.test/a.jpg.256.jpg"]
    session = FakeSession({url: FakeResponse(404) for url in urls})
    storage = make_storage()
    fetcher = CoverCacheFetcher(session, storage)

    with pytest.raises(CoverCacheError) as excinfo:
        asyncio.run(fetcher.cache_cover("blue-period", urls))

    assert excinfo.value.last_url == urls[-1]
    assert excinfo.value.last_status == 404
    assert urls[-1] in excinfo.value.message
    assert session.requested == urls
    assert storage.client.puts == []


def test_falls_back_to_next_candidate_and_stores_deterministic_key():
    urls = ["https://u.test/a.png", "https://u.test/a.png.512.jpg"]
    session = FakeSession(
        {
            urls[0]: aiohttp.ClientConnectionError("reset"),
            urls[1]: FakeResponse(200, b"\xff\xd8jpeg"),
        }
    )
    storage = make_storage()

    cached = asyncio.run(CoverCacheFetcher(session, storage).cache_cover("blue-period", urls))

    assert cached.source_url == urls[1]
    assert cached.storage_key == "blue-period/cover.jpg"
    assert cached.public_url == "https://cdn.test/covers/blue-period/cover.jpg"
    put = storage.client.puts[0]
    assert put["Bucket"] == "covers"
    assert put["Key"] == "blue-period/cover.jpg"
    assert put["ContentType"] == "image/jpeg"
    assert put["Body"] == b"\xff\xd8jpeg"


def test_infer_extension():
    assert infer_extension("https://u.test/x/cover.PNG?width=10") == ("png", "image/png")
    assert infer_extension("https://u.test/x/cover.webp") == ("webp", "image/webp")
    assert infer_extension("https://u.test/x/cover") == ("jpg", "image/jpeg")


def test_public_url_without_public_base():
    storage = ObjectStorage(
        bucket="covers", endpoint_url="https://s3.local/", region_name=None, public_base_url=None, client=FakeS3Client()
    )

    assert storage.public_url("a/cover.jpg") == "https://s3.local/covers/a/cover.jpg"


def test_recache_skips_covers_already_hosted(monkeypatch):
    monkeypatch.setattr(
        cover_cache_module,
        "get_manga",
        lambda conn, manga_id: {"id": manga_id, "slug": "x", "cover_image_url": "https://cdn.test/covers/x/cover.jpg"},
    )
    fetcher = CoverCacheFetcher(FakeSession({}), make_storage())

    result = asyncio.run(recache_manga_cover(object(), "m1", fetcher))

    assert result["cached"] is False
    assert result["reason"] == "already_cached"


def test_recache_rehosts_remote_cover(monkeypatch):
    updates = []
    monkeypatch.setattr(
        cover_cache_module,
        "get_manga",
        lambda conn, manga_id: {"id": manga_id, "slug": "x", "cover_image_url": "https://remote.test/x.gif"},
    )
    monkeypatch.setattr(cover_cache_module, "update_cover_url", lambda conn, manga_id, url: updates.append((manga_id, url)))
    session = FakeSession({"https://remote.test/x.gif": FakeResponse(200, b"GIF89a")})
    fetcher = CoverCacheFetcher(session, make_storage())

    result = asyncio.run(recache_manga_cover(object(), "m1", fetcher))

    assert result["cached"] is True
    assert updates == [("m1", "https://cdn.test/covers/x/cover.gif")]


def test_recache_missing_manga(monkeypatch):
    monkeypatch.setattr(cover_cache_module, "get_manga", lambda conn, manga_id: None)
    fetcher = CoverCacheFetcher(FakeSession({}), make_storage())

    with pytest.raises(MangaNotFoundError):
        asyncio.run(recache_manga_cover(object(), "m1", fetcher))
