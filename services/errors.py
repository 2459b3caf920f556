"""Exception types raised by the catalog sync engine."""


class SyncError(Exception):
    code = 'SYNC_ERROR'
    http_status = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class UpstreamError(SyncError):
    code = 'UPSTREAM_ERROR'
    http_status = 502


class UpstreamHTTPError(UpstreamError):
    code = 'UPSTREAM_HTTP_ERROR'

    def __init__(self, message, *, status, url, retry_after=None, body=None):
        super().__init__(message)
        self.status = status
        self.url = url
        self.retry_after = retry_after
        self.body = body

    @property
    def retryable(self):
        return self.status == 429 or 500 <= self.status <= 599


class UpstreamRateLimitedError(UpstreamError):
    """Rate limit reported inside an otherwise successful response body."""

    code = 'UPSTREAM_RATE_LIMITED'

    def __init__(self, message, *, url):
        super().__init__(message)
        self.url = url


class UpstreamResponseError(UpstreamError):
    code = 'UPSTREAM_BAD_RESPONSE'


class UpstreamRetryExhaustedError(UpstreamError):
    code = 'UPSTREAM_RETRY_EXHAUSTED'

    def __init__(self, message, *, url, attempts, last_error=None):
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class CoverCacheError(SyncError):
    code = 'COVER_CACHE_FAILED'

    def __init__(self, message, *, last_url=None, last_status=None):
        super().__init__(message)
        self.last_url = last_url
        self.last_status = last_status


class CrawlStateError(SyncError):
    code = 'CRAWL_STATE_ERROR'


class CrawlStateMissingError(CrawlStateError):
    code = 'CRAWL_STATE_MISSING'
    http_status = 404

    def __init__(self, state_id):
        super().__init__(
            f'mangadex_crawl_state row id="{state_id}" is missing; provision it with init_db.py first'
        )
        self.state_id = state_id


class CrawlStateConflictError(CrawlStateError):
    code = 'CRAWL_STATE_CONFLICT'
    http_status = 409

    def __init__(self, state_id, expected_version):
        super().__init__(
            f'mangadex_crawl_state id="{state_id}" changed during the run '
            f'(expected version {expected_version}); another invocation may be running'
        )
        self.state_id = state_id
        self.expected_version = expected_version


class MangaNotFoundError(SyncError):
    code = 'MANGA_NOT_FOUND'
    http_status = 404

    def __init__(self, manga_id):
        super().__init__(f'manga id="{manga_id}" does not exist')
        self.manga_id = manga_id
