"""MangaDex list/detail requests on top of :class:`BackoffFetchClient`."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import config
from services.backoff_client import BackoffFetchClient
from services.crawl_engine import FeedPage, FeedRecord, PageRequest
from services.errors import UpstreamResponseError
from services.crawl_state import MODE_UPDATED_AT
from utils.time import format_upstream_since, parse_timestamp

LOGGER = logging.getLogger(__name__)

MANGA_INCLUDES = ('author', 'artist', 'cover_art')
CHAPTER_INCLUDES = ('manga', 'scanlation_group')

Params = List[Tuple[str, Any]]


def _record_from_entity(entity: Dict[str, Any]) -> Optional[FeedRecord]:
    if not isinstance(entity, dict) or not entity.get('id'):
        return None
    attributes = entity.get('attributes') or {}
    return FeedRecord(
        external_id=str(entity['id']),
        updated_at=parse_timestamp(attributes.get('updatedAt')),
        raw=entity,
    )


def _page_from_payload(payload: Any, request: PageRequest) -> FeedPage:
    if not isinstance(payload, dict) or not isinstance(payload.get('data'), list):
        raise UpstreamResponseError('MangaDex list response has no data array')

    records = []
    for entity in payload['data']:
        record = _record_from_entity(entity)
        if record is None:
            LOGGER.warning("Ignoring MangaDex list entry without an id: %r", entity)
            continue
        records.append(record)

    total = payload.get('total')
    return FeedPage(
        records=records,
        total=int(total) if isinstance(total, int) else None,
        limit=int(payload.get('limit') or request.limit),
        offset=int(payload.get('offset') or request.offset or 0),
    )


class MangaDexApi:
    def __init__(self, client: BackoffFetchClient, *, base_url: str = config.MANGADEX_API_URL):
        self.client = client
        self.base_url = base_url.rstrip('/')

    def _list_params(self, request: PageRequest, *, includes=()) -> Params:
        params: Params = [('limit', request.limit)]
        if request.mode == MODE_UPDATED_AT:
            params += [
                ('offset', 0),
                ('order[updatedAt]', 'asc'),
                ('updatedAtSince', format_upstream_since(request.updated_at_since)),
            ]
        else:
            # createdAt never changes, so offsets stay stable across calls
            params += [('offset', request.offset), ('order[createdAt]', 'asc')]
        params += [('contentRating[]', rating) for rating in config.MANGADEX_CONTENT_RATINGS]
        params += [('includes[]', include) for include in includes]
        return params

    async def list_manga_page(self, request: PageRequest) -> FeedPage:
        payload = await self.client.get_json(
            f"{self.base_url}/manga",
            params=self._list_params(request, includes=MANGA_INCLUDES),
        )
        return _page_from_payload(payload, request)

    async def list_manga_ids_page(self, request: PageRequest) -> FeedPage:
        """Cheap listing: only ids and ``updatedAt`` are read, relationships are not expanded."""
        payload = await self.client.get_json(f"{self.base_url}/manga", params=self._list_params(request))
        page = _page_from_payload(payload, request)
        for record in page.records:
            record.raw = {'id': record.external_id, 'updatedAt': record.raw.get('attributes', {}).get('updatedAt')}
        return page

    async def get_manga(self, manga_id: str) -> Dict[str, Any]:
        params = [('includes[]', include) for include in MANGA_INCLUDES]
        payload = await self.client.get_json(f"{self.base_url}/manga/{manga_id}", params=params)
        data = payload.get('data') if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get('id'):
            raise UpstreamResponseError(f'MangaDex returned no manga for id {manga_id}')
        return data

    async def list_chapter_page(self, request: PageRequest) -> FeedPage:
        payload = await self.client.get_json(
            f"{self.base_url}/chapter",
            params=self._list_params(request, includes=CHAPTER_INCLUDES),
        )
        return _page_from_payload(payload, request)
