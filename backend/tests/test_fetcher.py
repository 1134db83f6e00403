"""Tests for the HTTP fetcher: headers, status handling, block detection and retries."""

import httpx
import pytest

from pricewatch.core.exceptions import (
    BlockedError,
    FetchError,
    HTTPStatusFetchError,
    InvalidURLError,
    TransientFetchError,
)
from pricewatch.scrapers.fetcher import Fetcher, find_block_indicator, is_retryable
from conftest import html_response

PRODUCT_URL = "https://www.loja.example.com/produto/123"
PRODUCT_PAGE = '<html><body><h1>Produto</h1><span class="price">R$ 10,00</span></body></html>'


def make_fetcher(handler, sleep, **kwargs) -> Fetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True, max_redirects=2)
    return Fetcher(client=client, sleep=sleep, **kwargs)


# ============================================================================
# TESTS: HELPERS
# ============================================================================

class TestHelpers:
    """Tests for block detection and retry classification."""

    def test_block_indicator_case_insensitive(self):
        assert find_block_indicator("<title>Attention Required! | Cloudflare</title>") == "cloudflare"
        assert find_block_indicator("<p>Digite o CAPTCHA</p>") == "captcha"
        assert find_block_indicator(PRODUCT_PAGE) is None

    def test_retry_classification(self):
        assert is_retryable(TransientFetchError(PRODUCT_URL, "reset"))
        assert is_retryable(HTTPStatusFetchError(PRODUCT_URL, 503))
        assert is_retryable(HTTPStatusFetchError(PRODUCT_URL, 429))
        assert not is_retryable(HTTPStatusFetchError(PRODUCT_URL, 404))
        assert not is_retryable(BlockedError(PRODUCT_URL, "captcha"))
        assert not is_retryable(ValueError("other"))


# ============================================================================
# TESTS: FETCH
# ============================================================================

class TestFetch:
    """Tests for Fetcher.fetch."""

    async def test_success_sends_browser_headers(self, sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return html_response(PRODUCT_PAGE)

        async with make_fetcher(handler, sleep, user_agent="TestAgent/1.0") as fetcher:
            response = await fetcher.fetch(PRODUCT_URL)

        assert response.status_code == 200
        assert response.text == PRODUCT_PAGE
        assert response.content_length == len(PRODUCT_PAGE)
        assert response.retries == 0
        assert seen[0].headers["User-Agent"] == "TestAgent/1.0"
        assert "pt-BR" in seen[0].headers["Accept-Language"]
        assert sleep.delays == []

    async def test_amazon_headers(self, sleep):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return html_response(PRODUCT_PAGE)

        async with make_fetcher(handler, sleep) as fetcher:
            await fetcher.fetch("https://www.amazon.com.br/dp/B000TEST")

        assert seen[0].headers["Accept"] == "text/html,application/xhtml+xml"
        assert seen[0].headers["Accept-Charset"] == "utf-8"

    async def test_invalid_url_makes_no_request(self, sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return html_response(PRODUCT_PAGE)

        async with make_fetcher(handler, sleep) as fetcher:
            with pytest.raises(InvalidURLError):
                await fetcher.fetch("ftp://loja.example.com/produto")

        assert calls == []

    async def test_client_error_is_not_retried(self, sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return html_response("not found", status_code=404)

        async with make_fetcher(handler, sleep) as fetcher:
            with pytest.raises(HTTPStatusFetchError) as exc_info:
                await fetcher.fetch(PRODUCT_URL)

        assert exc_info.value.status_code == 404
        assert len(calls) == 1
        assert sleep.delays == []

    async def test_blocked_page_is_not_retried(self, sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return html_response("<html><body>Please solve the captcha to continue</body></html>")

        async with make_fetcher(handler, sleep) as fetcher:
            with pytest.raises(BlockedError) as exc_info:
                await fetcher.fetch(PRODUCT_URL)

        assert exc_info.value.indicator == "captcha"
        assert len(calls) == 1

    async def test_server_errors_retried_with_exponential_backoff(self, sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) <= 3:
                return html_response("unavailable", status_code=503)
            return html_response(PRODUCT_PAGE)

        async with make_fetcher(handler, sleep, max_retries=3) as fetcher:
            response = await fetcher.fetch(PRODUCT_URL)

        assert response.status_code == 200
        assert response.retries == 3
        assert len(calls) == 4
        assert sleep.delays == [1, 2, 4]

    async def test_retries_exhausted(self, sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return html_response("unavailable", status_code=502)

        async with make_fetcher(handler, sleep, max_retries=3) as fetcher:
            with pytest.raises(HTTPStatusFetchError):
                await fetcher.fetch(PRODUCT_URL)

        assert len(calls) == 4
        assert sleep.delays == [1, 2, 4]

    async def test_network_errors_are_transient(self, sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            if len(calls) == 2:
                raise httpx.ReadTimeout("timed out", request=request)
            return html_response(PRODUCT_PAGE)

        async with make_fetcher(handler, sleep, max_retries=3) as fetcher:
            response = await fetcher.fetch(PRODUCT_URL)

        assert response.retries == 2
        assert sleep.delays == [1, 2]

    async def test_retry_state_is_per_call(self, sleep):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return html_response("busy", status_code=429)
            return html_response(PRODUCT_PAGE)

        async with make_fetcher(handler, sleep, max_retries=3) as fetcher:
            first = await fetcher.fetch(PRODUCT_URL)
            second = await fetcher.fetch(PRODUCT_URL)

        assert first.retries == 1
        assert second.retries == 0

    async def test_too_many_redirects(self, sleep):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": PRODUCT_URL})

        async with make_fetcher(handler, sleep) as fetcher:
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch(PRODUCT_URL)

        assert "redirect" in exc_info.value.message.lower()
        assert sleep.delays == []
