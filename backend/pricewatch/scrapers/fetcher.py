"""HTTP page fetcher with browser-like headers, block detection and retries.

Each call to :meth:`Fetcher.fetch` owns a :class:`RetryContext`, so
concurrent fetches of the same URL never share retry state.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from pricewatch.config import DEFAULT_USER_AGENT
from pricewatch.core.exceptions import (
    BlockedError,
    FetchError,
    HTTPStatusFetchError,
    InvalidURLError,
    TransientFetchError,
)
from pricewatch.scrapers.utils.url import extract_domain, is_valid_url
from pricewatch.scrapers.utils.user_agents import build_headers

logger = structlog.get_logger(__name__)

# Case-insensitive substrings that mark an anti-bot or captcha page
BLOCK_INDICATORS = (
    "captcha",
    "blocked",
    "access denied",
    "too many requests",
    "rate limit",
    "robot",
    "bot detection",
    "cloudflare",
    "please verify",
    "security check",
)

SleepFunc = Callable[[float], Awaitable[None]]


def find_block_indicator(body: str) -> Optional[str]:
    """Return the first block indicator found in a page body, if any."""
    lowered = body.lower()
    for indicator in BLOCK_INDICATORS:
        if indicator in lowered:
            return indicator
    return None


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


@dataclass
class RetryContext:
    """Retry bookkeeping for a single fetch."""

    url: str
    max_retries: int
    retries: int = 0
    delays: List[float] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class FetchResponse:
    """Successful page fetch."""

    url: str
    status_code: int
    text: str
    elapsed_ms: int
    retries: int = 0

    @property
    def content_length(self) -> int:
        return len(self.text)


class Fetcher:
    """Fetches product pages over httpx.

    Transport errors, timeouts, 5xx and 429 responses are retried with
    exponential backoff (1 s, 2 s, 4 s, ...) up to ``max_retries`` times.
    Other 4xx responses and blocked pages fail immediately.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        timeout_ms: int = 10000,
        max_redirects: int = 5,
        max_retries: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """Initialize fetcher.

        Args:
            client: Shared AsyncClient; one is created (and owned) when None
            user_agent: Fixed User-Agent, or None to rotate per request
            timeout_ms: Per-request timeout
            max_redirects: Redirects followed before giving up
            max_retries: Retries after the first attempt
            backoff_base_seconds: Delay before the first retry, doubled each time
            sleep: Awaitable sleep used between retries
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_ms / 1000),
            follow_redirects=True,
            max_redirects=max_redirects,
        )
        self.user_agent = user_agent
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self._sleep = sleep
        self.logger = logger.bind(service="fetcher")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def fetch(self, url: str, domain: Optional[str] = None) -> FetchResponse:
        """GET a page, retrying transient failures.

        Args:
            url: Absolute http(s) URL
            domain: Bare domain used for header tweaks; derived from url if None

        Returns:
            FetchResponse for a 2xx/3xx, non-blocked page

        Raises:
            InvalidURLError: url is not http(s)
            FetchError: the last failure once retries are exhausted, or the
                first non-retryable one
        """
        if not is_valid_url(url):
            raise InvalidURLError(url)

        domain = domain or extract_domain(url)
        context = RetryContext(url=url, max_retries=self.max_retries)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_base_seconds, exp_base=2),
            retry=retry_if_exception(is_retryable),
            before_sleep=lambda state: self._before_sleep(context, state),
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                response = await self._request_once(url, domain)
        response.retries = context.retries
        return response

    def _before_sleep(self, context: RetryContext, state: RetryCallState) -> None:
        delay = state.next_action.sleep if state.next_action else 0.0
        error = state.outcome.exception() if state.outcome else None
        context.retries += 1
        context.delays.append(delay)
        context.errors.append(str(error))
        self.logger.warning(
            "fetch_retry_scheduled",
            url=context.url,
            retry=context.retries,
            max_retries=context.max_retries,
            delay_seconds=delay,
            error=str(error),
        )

    async def _request_once(self, url: str, domain: str) -> FetchResponse:
        headers = build_headers(domain, self.user_agent)
        started = time.monotonic()

        try:
            response = await self.client.get(url, headers=headers)
        except httpx.TooManyRedirects as exc:
            raise FetchError(url, f"Too many redirects: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TransientFetchError(url, f"Request timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientFetchError(url, f"Network error: {exc!r}") from exc
        except httpx.InvalidURL as exc:
            raise InvalidURLError(url) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)

        if response.status_code >= 400:
            raise HTTPStatusFetchError(url, response.status_code)

        body = response.text
        indicator = find_block_indicator(body)
        if indicator:
            raise BlockedError(url, indicator)

        return FetchResponse(
            url=str(response.url),
            status_code=response.status_code,
            text=body,
            elapsed_ms=elapsed_ms,
        )
