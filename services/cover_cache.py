"""Re-host cover images in S3-compatible object storage.

MangaDex cover URLs are hotlink-hostile and occasionally missing at one size
while present at another, so covers are copied into our own bucket from the
first candidate that downloads successfully.
"""

import logging
import posixpath
from dataclasses import dataclass
from typing import Optional, Sequence
from urllib.parse import urlparse

import aiohttp
import boto3
from botocore.config import Config as BotoConfig

import config
from repositories.manga_repo import get_manga, update_cover_url
from services.errors import CoverCacheError, MangaNotFoundError

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {
    '.png': ('png', 'image/png'),
    '.webp': ('webp', 'image/webp'),
    '.gif': ('gif', 'image/gif'),
    '.jpg': ('jpg', 'image/jpeg'),
    '.jpeg': ('jpg', 'image/jpeg'),
}
DEFAULT_EXTENSION = ('jpg', 'image/jpeg')


@dataclass
class CachedCover:
    public_url: str
    source_url: str
    storage_key: str


def infer_extension(url):
    """Return ``(extension, content_type)`` from the URL path, defaulting to jpg."""
    suffix = posixpath.splitext(urlparse(url).path)[1].lower()
    return IMAGE_EXTENSIONS.get(suffix, DEFAULT_EXTENSION)


def cover_storage_key(slug, extension):
    return f"{slug}/cover.{extension}"


class ObjectStorage:
    """Thin wrapper over a boto3 S3 client for a single bucket."""

    def __init__(
        self,
        *,
        bucket=config.COVER_STORAGE_BUCKET,
        endpoint_url=config.COVER_STORAGE_ENDPOINT_URL,
        region_name=config.COVER_STORAGE_REGION,
        public_base_url=config.COVER_STORAGE_PUBLIC_BASE_URL,
        client=None,
    ):
        self.bucket = bucket
        self.endpoint_url = endpoint_url.rstrip('/') if endpoint_url else None
        self.region_name = region_name
        self.public_base_url = public_base_url.rstrip('/') if public_base_url else None
        self.client = client or boto3.client(
            's3',
            endpoint_url=self.endpoint_url,
            region_name=self.region_name,
            config=BotoConfig(retries={'max_attempts': 3, 'mode': 'standard'}),
        )

    def put_object(self, key, body, content_type):
        # put_object overwrites an existing key
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
            CacheControl='public, max-age=31536000',
        )

    def public_url(self, key):
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    def is_hosted(self, url):
        if not url:
            return False
        prefix = self.public_url('')
        return url.startswith(prefix)


class CoverCacheFetcher:
    def __init__(self, session: aiohttp.ClientSession, storage: ObjectStorage, *, headers=None):
        self.session = session
        self.storage = storage
        self.headers = dict(headers if headers is not None else config.CRAWLER_HEADERS)
        self.headers['Accept'] = 'image/*'

    async def _download(self, url):
        async with self.session.get(url, headers=self.headers) as response:
            if not 200 <= response.status < 300:
                return response.status, None
            return response.status, await response.read()

    async def cache_cover(self, slug, candidates: Sequence[str]) -> CachedCover:
        last_url: Optional[str] = None
        last_status = None
        for url in candidates:
            last_url = url
            try:
                status, body = await self._download(url)
            except aiohttp.ClientError as exc:
                LOGGER.warning("Cover download failed for %s: %s", url, exc)
                last_status = type(exc).__name__
                continue

            if body is None:
                LOGGER.info("Cover candidate %s returned HTTP %s", url, status)
                last_status = status
                continue
            if not body:
                last_status = 'empty body'
                continue

            extension, content_type = infer_extension(url)
            key = cover_storage_key(slug, extension)
            self.storage.put_object(key, body, content_type)
            public_url = self.storage.public_url(key)
            LOGGER.info("Cached cover for %s from %s", slug, url)
            return CachedCover(public_url=public_url, source_url=url, storage_key=key)

        if last_url is None:
            raise CoverCacheError(f'no cover candidates for "{slug}"')
        raise CoverCacheError(
            f'all {len(candidates)} cover candidates failed for "{slug}"; last {last_url} ({last_status})',
            last_url=last_url,
            last_status=last_status,
        )


async def recache_manga_cover(conn, manga_id, fetcher: CoverCacheFetcher):
    """Copy a record's current remote cover into storage and point the row at it."""
    manga = get_manga(conn, manga_id)
    if manga is None:
        raise MangaNotFoundError(manga_id)

    current_url = manga.get('cover_image_url')
    if not current_url:
        return {'manga_id': str(manga_id), 'cached': False, 'reason': 'no_cover'}
    if fetcher.storage.is_hosted(current_url):
        return {'manga_id': str(manga_id), 'cached': False, 'reason': 'already_cached', 'cover_image_url': current_url}

    cached = await fetcher.cache_cover(manga['slug'], [current_url])
    update_cover_url(conn, manga_id, cached.public_url)
    return {
        'manga_id': str(manga_id),
        'cached': True,
        'cover_image_url': cached.public_url,
        'source_url': cached.source_url,
    }
