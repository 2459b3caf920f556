# config.py
import json
import os

# --- Crawler ---
CRAWLER_HEADERS = {
    'User-Agent': os.getenv('MANGADEX_USER_AGENT', 'shelf-catalog-sync/1.0'),
    'Accept': 'application/json',
}

# --- HTTP Client Defaults ---
CRAWLER_HTTP_TOTAL_TIMEOUT_SECONDS = int(os.getenv('CRAWLER_HTTP_TOTAL_TIMEOUT_SECONDS', 60))
CRAWLER_HTTP_CONNECT_TIMEOUT_SECONDS = int(os.getenv('CRAWLER_HTTP_CONNECT_TIMEOUT_SECONDS', 15))
CRAWLER_HTTP_SOCK_READ_TIMEOUT_SECONDS = int(os.getenv('CRAWLER_HTTP_SOCK_READ_TIMEOUT_SECONDS', 45))
CRAWLER_HTTP_CONCURRENCY_LIMIT = int(os.getenv('CRAWLER_HTTP_CONCURRENCY_LIMIT', 4))

# --- Backoff ---
BACKOFF_MAX_ATTEMPTS = int(os.getenv('BACKOFF_MAX_ATTEMPTS', 8))
BACKOFF_BASE_SECONDS = float(os.getenv('BACKOFF_BASE_SECONDS', 0.5))
BACKOFF_MAX_SECONDS = float(os.getenv('BACKOFF_MAX_SECONDS', 15))
BACKOFF_JITTER_MAX_SECONDS = float(os.getenv('BACKOFF_JITTER_MAX_SECONDS', 0.2))

# --- MangaDex API ---
MANGADEX_API_URL = os.getenv('MANGADEX_API_URL', 'https://api.mangadex.org').rstrip('/')
MANGADEX_UPLOADS_URL = os.getenv('MANGADEX_UPLOADS_URL', 'https://uploads.mangadex.org').rstrip('/')
# offset + limit may never exceed this on list endpoints
MANGADEX_WINDOW_CAP = int(os.getenv('MANGADEX_WINDOW_CAP', 10000))
MANGADEX_CONTENT_RATINGS = [
    rating.strip()
    for rating in os.getenv('MANGADEX_CONTENT_RATINGS', 'safe,suggestive').split(',')
    if rating.strip()
]
MANGADEX_SOURCE = 'mangadex'

# --- Sync Controls ---
SYNC_DEFAULT_PAGE_LIMIT = int(os.getenv('SYNC_DEFAULT_PAGE_LIMIT', 100))
SYNC_MAX_PAGE_LIMIT = 100
SYNC_MAX_PAGES_DEFAULT = int(os.getenv('SYNC_MAX_PAGES_DEFAULT', 5))
SYNC_MAX_PAGES_LIMIT = int(os.getenv('SYNC_MAX_PAGES_LIMIT', 50))
SYNC_HARD_CAP_DEFAULT = int(os.getenv('SYNC_HARD_CAP_DEFAULT', 500))
SYNC_HARD_CAP_LIMIT = int(os.getenv('SYNC_HARD_CAP_LIMIT', 5000))
SYNC_SAMPLE_SIZE = int(os.getenv('SYNC_SAMPLE_SIZE', 25))

TITLE_FEED_STATE_ID = os.getenv('TITLE_FEED_STATE_ID', 'main')
TITLE_DELTA_STATE_ID = 'titles_delta'
CHAPTER_FEED_STATE_ID = os.getenv('CHAPTER_FEED_STATE_ID', 'recent_chapters')

# --- Cover Storage (S3 compatible) ---
COVER_STORAGE_BUCKET = os.getenv('COVER_STORAGE_BUCKET', 'manga-covers')
COVER_STORAGE_ENDPOINT_URL = os.getenv('COVER_STORAGE_ENDPOINT_URL') or None
COVER_STORAGE_REGION = os.getenv('COVER_STORAGE_REGION') or None
COVER_STORAGE_PUBLIC_BASE_URL = (os.getenv('COVER_STORAGE_PUBLIC_BASE_URL') or '').rstrip('/') or None

# --- Database ---
DATABASE_URL = os.getenv('DATABASE_URL')
DB_NAME = os.getenv('DB_NAME')
DB_USER = os.getenv('DB_USER')
DB_PASSWORD = os.getenv('DB_PASSWORD')
DB_HOST = os.getenv('DB_HOST')
DB_PORT = os.getenv('DB_PORT', '5432')


# --- CORS ---
def _parse_origins(raw):
    if raw is None:
        return None
    stripped = raw.strip()
    if not stripped:
        return None
    if stripped.startswith('['):
        try:
            parsed = json.loads(stripped)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            origins = [str(origin).strip() for origin in parsed if str(origin).strip()]
            return origins or None
    origins = [origin.strip() for origin in stripped.split(',') if origin.strip()]
    return origins or None


CORS_ALLOW_ORIGINS = _parse_origins(os.getenv('CORS_ALLOW_ORIGINS'))
CORS_SUPPORTS_CREDENTIALS = os.getenv('CORS_SUPPORTS_CREDENTIALS', '0').strip().lower() in {'1', 'true', 'yes', 'on'}
