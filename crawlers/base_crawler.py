#crawlers/base_crawler.py
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager

import aiohttp

import config
from repositories.crawl_state_repo import load_crawl_state, save_crawl_state
from services.backoff_client import BackoffFetchClient
from services.cover_cache import CoverCacheFetcher, ObjectStorage
from services.crawl_engine import build_page_request, run_crawl
from services.crawl_state import effective_page_limit
from services.delta_pipeline import MangaDeltaPipeline
from services.mangadex_api import MangaDexApi


@asynccontextmanager
async def open_http_session():
    timeout = aiohttp.ClientTimeout(
        total=config.CRAWLER_HTTP_TOTAL_TIMEOUT_SECONDS,
        connect=config.CRAWLER_HTTP_CONNECT_TIMEOUT_SECONDS,
        sock_read=config.CRAWLER_HTTP_SOCK_READ_TIMEOUT_SECONDS,
    )
    connector = aiohttp.TCPConnector(limit=config.CRAWLER_HTTP_CONCURRENCY_LIMIT, ttl_dns_cache=300)
    async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
        yield session


def build_sync_payload(result, *, forced, note):
    return {
        'success': True,
        'state_id': result.state.id,
        'mode': result.state.mode,
        'switched_mode': result.switched_mode,
        'cursor_before': result.state_before.cursor_snapshot(),
        'cursor_after': result.state.cursor_snapshot(),
        'pages': result.pages,
        'processed': result.processed,
        'refreshed': result.refreshed,
        'skipped': result.skipped,
        'finished': result.finished,
        'stopped_reason': result.stopped_reason,
        'forced': bool(forced),
        'sample': result.outcomes[: config.SYNC_SAMPLE_SIZE],
        'note': note,
    }


class CatalogFeedCrawler(ABC):
    """
    Base class for MangaDex feed jobs.

    Subclasses decide how a page is fetched and what happens to each record;
    ``run_invocation`` owns the crawl state round trip:
    1) load the state row and end that read transaction
    2) run the bounded crawl (network I/O, one committed unit per record)
    3) persist the advanced state with a version check
    """

    feed_name = None
    default_state_id = None
    note = ''

    def __init__(self, conn, api: MangaDexApi, *, cover_fetcher=None):
        self.conn = conn
        self.api = api
        self.cover_fetcher = cover_fetcher
        self.pipeline = None

    @classmethod
    def from_session(cls, conn, session, *, storage=None):
        api = MangaDexApi(BackoffFetchClient(session))
        cover_fetcher = CoverCacheFetcher(session, storage or ObjectStorage())
        return cls(conn, api, cover_fetcher=cover_fetcher)

    @abstractmethod
    async def fetch_page(self, request):
        """Fetch one page for ``request`` and return a FeedPage."""
        raise NotImplementedError

    @abstractmethod
    async def process_record(self, record):
        """Handle one FeedRecord and return its outcome dict."""
        raise NotImplementedError

    def start_invocation(self, state_id):
        self.pipeline = MangaDeltaPipeline(self.conn, state_id=state_id, cover_fetcher=self.cover_fetcher)

    def _load_state(self, state_id):
        state = load_crawl_state(self.conn, state_id)
        # Do not hold the read transaction open across upstream requests.
        self.conn.rollback()
        return state

    async def run_invocation(
        self,
        state_id=None,
        *,
        max_pages=config.SYNC_MAX_PAGES_DEFAULT,
        hard_cap=config.SYNC_HARD_CAP_DEFAULT,
        force=False,
    ):
        state_id = state_id or self.default_state_id
        state = self._load_state(state_id)
        expected_version = state.version
        self.start_invocation(state_id)

        result = await run_crawl(
            state,
            fetch_page=self.fetch_page,
            process_record=self.process_record,
            max_pages=max_pages,
            hard_cap=hard_cap,
            force=force,
        )

        try:
            save_crawl_state(self.conn, result.state, expected_version=expected_version)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

        return build_sync_payload(result, forced=force, note=self.note)

    async def peek(self, state_id=None):
        """Return the first page the next invocation would see, without processing it."""
        state_id = state_id or self.default_state_id
        state = self._load_state(state_id)
        request = build_page_request(state, effective_page_limit(state))
        page = await self.fetch_page(request)
        return {
            'success': True,
            'peek': True,
            'state_id': state_id,
            'mode': state.mode,
            'cursor': state.cursor_snapshot(),
            'total': page.total,
            'count': len(page.records),
            'records': [record.raw for record in page.records],
            'note': self.note,
        }
