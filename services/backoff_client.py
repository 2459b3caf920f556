"""HTTP/GraphQL JSON client that retries rate-limited and transient failures.

The client performs no business logic: it issues one logical request, waits
between attempts when the upstream throttles or fails temporarily, and either
returns the decoded JSON payload or raises a typed :mod:`services.errors`
exception.
"""

import asyncio
import json
import logging
import random
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

import config
from services.errors import (
    UpstreamHTTPError,
    UpstreamRateLimitedError,
    UpstreamResponseError,
    UpstreamRetryExhaustedError,
)

LOGGER = logging.getLogger(__name__)

RATE_LIMIT_MARKERS = ('too many requests', 'rate limit', 'ratelimit')


def parse_retry_after(value: Any) -> Optional[float]:
    """Parse a ``retry-after`` header expressed in seconds."""
    if value is None:
        return None
    try:
        seconds = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if seconds < 0:
        return None
    return seconds


def is_rate_limit_error_list(errors: Any) -> bool:
    if not isinstance(errors, list):
        return False
    for error in errors:
        if not isinstance(error, dict):
            continue
        if str(error.get('status') or '') == '429':
            return True
        text = ' '.join(
            str(error.get(key) or '') for key in ('message', 'title', 'detail')
        ).lower()
        if any(marker in text for marker in RATE_LIMIT_MARKERS):
            return True
    return False


def _first_error_message(errors: Any) -> str:
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict):
            return str(first.get('message') or first.get('detail') or first.get('title') or first)
        return str(first)
    return 'upstream returned errors'


def is_retryable_exception(exc: BaseException) -> bool:
    if isinstance(exc, UpstreamHTTPError):
        return exc.retryable
    if isinstance(exc, UpstreamRateLimitedError):
        return True
    return isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError))


class wait_retry_after_or_exponential(wait_base):
    """Honour ``retry-after`` when the upstream sent one, else back off exponentially.

    Either way a small random jitter is added and the result is capped.
    """

    def __init__(
        self,
        *,
        base: float = config.BACKOFF_BASE_SECONDS,
        maximum: float = config.BACKOFF_MAX_SECONDS,
        jitter: float = config.BACKOFF_JITTER_MAX_SECONDS,
        rng: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.base = base
        self.maximum = maximum
        self.jitter = jitter
        self.rng = rng

    def __call__(self, retry_state) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, 'retry_after', None)
        if retry_after is not None:
            delay = float(retry_after)
        else:
            delay = self.base * (2 ** (retry_state.attempt_number - 1))
        return min(self.maximum, delay + self.rng(0, self.jitter))


class BackoffFetchClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        max_attempts: int = config.BACKOFF_MAX_ATTEMPTS,
        wait: Optional[wait_base] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.session = session
        self.max_attempts = max(1, int(max_attempts))
        self.wait = wait or wait_retry_after_or_exponential()
        self.sleep = sleep
        self.headers = dict(headers if headers is not None else config.CRAWLER_HEADERS)

    @staticmethod
    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception()
        LOGGER.warning(
            "Upstream request failed (attempt %s): %s; waiting %.2fs",
            retry_state.attempt_number,
            exc,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        params: Any = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        retrying = AsyncRetrying(
            sleep=self.sleep,
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception(is_retryable_exception),
            before_sleep=self._log_retry,
            reraise=False,
        )

        payload = None
        try:
            async for attempt in retrying:
                with attempt:
                    payload = await self._request_once(
                        method, url, params=params, json_body=json_body, headers=headers
                    )
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            raise UpstreamRetryExhaustedError(
                f"{method} {url} gave up after {self.max_attempts} attempts: {last_error}",
                url=url,
                attempts=self.max_attempts,
                last_error=last_error,
            ) from last_error
        return payload

    async def get_json(self, url: str, *, params: Any = None) -> Any:
        return await self.request_json('GET', url, params=params)

    async def post_graphql(self, url: str, query: str, variables: Optional[Dict[str, Any]] = None) -> Any:
        payload = await self.request_json(
            'POST',
            url,
            json_body={'query': query, 'variables': variables or {}},
            headers={'Content-Type': 'application/json'},
        )
        return payload.get('data') if isinstance(payload, dict) else payload

    async def _request_once(self, method, url, *, params, json_body, headers) -> Any:
        merged_headers = {**self.headers, **(headers or {})}
        async with self.session.request(
            method,
            url,
            params=params,
            json=json_body,
            headers=merged_headers,
        ) as response:
            status = response.status
            text = await response.text()
            if status >= 400:
                raise UpstreamHTTPError(
                    f"{method} {url} failed: HTTP {status}",
                    status=status,
                    url=url,
                    retry_after=parse_retry_after(response.headers.get('retry-after')),
                    body=text[:500],
                )

        try:
            payload = json.loads(text)
        except ValueError as exc:
            raise UpstreamResponseError(f"{method} {url} returned malformed JSON: {exc}") from exc

        errors = payload.get('errors') if isinstance(payload, dict) else None
        if errors:
            if is_rate_limit_error_list(errors):
                raise UpstreamRateLimitedError(
                    f"{method} {url} rate limited: {_first_error_message(errors)}", url=url
                )
            raise UpstreamResponseError(f"{method} {url} returned errors: {_first_error_message(errors)}")
        return payload
