"""Tests for the listing scraper."""

from decimal import Decimal

import httpx
import pytest

from dealwatch.ingest import scraper as scraper_module
from dealwatch.ingest.base import JsRenderer
from dealwatch.ingest.scraper import ListingScraper
from tests.conftest import page

URL = "https://shop.example.com/item/42"

PRICED_PAGE = page('<div id="buybox"><span class="amount">$149.99</span> In stock</div>')
EMPTY_PAGE = page('<div id="app">Loading...</div>')
CHALLENGE_PAGE = page(
    '<h1 id="header-text">Verifying your browser</h1>',
    title="Vercel Security Checkpoint",
)


class FakeRenderer(JsRenderer):
    def __init__(self, html=None):
        self.html = html
        self.calls = []

    async def render(self, url, timeout_ms, cancel_event=None):
        self.calls.append((url, timeout_ms))
        return self.html


def make_scraper(handler, renderer=None, **kwargs) -> ListingScraper:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("open_browser_on_challenge", False)
    kwargs.setdefault("enable_js_fallback", renderer is not None)
    return ListingScraper(renderer=renderer, client=client, **kwargs)


def html_handler(body, status_code=200, requests=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, text=body, headers={"Content-Type": "text/html"})
    return handler


@pytest.mark.asyncio
async def test_scrape_extracts_price_and_stock():
    scraper = make_scraper(html_handler(PRICED_PAGE))

    result = await scraper.scrape(URL, [".amount"])

    assert result is not None
    assert result.price == Decimal("149.99")
    assert result.currency == "USD"
    assert result.in_stock is True
    assert result.blocked_by_challenge is False
    assert result.signals["price_found"] == "149.99"
    assert int(result.signals["length"]) > 0
    assert result.signals["js_rendered"] == "false"
    await scraper.close()


@pytest.mark.asyncio
async def test_empty_selectors_return_none_without_fetching():
    requests = []
    scraper = make_scraper(html_handler(PRICED_PAGE, requests=requests))

    assert await scraper.scrape(URL, []) is None
    assert await scraper.scrape(URL, None) is None
    assert requests == []


@pytest.mark.asyncio
async def test_challenge_page_yields_blocked_result():
    scraper = make_scraper(html_handler(CHALLENGE_PAGE, status_code=403))

    result = await scraper.scrape(URL, [".amount"])

    assert result.blocked_by_challenge is True
    assert result.price is None
    assert result.currency is None
    assert result.in_stock is None
    assert result.sold is None
    assert result.signals == {"blocked": "bot_protection"}


@pytest.mark.asyncio
async def test_no_price_leaves_currency_unset():
    scraper = make_scraper(html_handler(EMPTY_PAGE))

    result = await scraper.scrape(URL, [".amount"])

    assert result is not None
    assert result.price is None
    assert result.currency is None
    assert result.signals["price_found"] == ""


@pytest.mark.asyncio
async def test_js_fallback_uses_elevated_timeout():
    renderer = FakeRenderer(html=PRICED_PAGE)
    scraper = make_scraper(html_handler(EMPTY_PAGE), renderer=renderer, js_timeout_ms=5000)

    result = await scraper.scrape(URL, [".amount"])

    assert renderer.calls == [(URL, ListingScraper.JS_ELEVATED_TIMEOUT_MS)]
    assert result.price == Decimal("149.99")
    assert result.in_stock is True
    assert result.signals["js_rendered"] == "true"


@pytest.mark.asyncio
async def test_js_fallback_keeps_configured_timeout_above_floor():
    renderer = FakeRenderer(html=PRICED_PAGE)
    scraper = make_scraper(html_handler(EMPTY_PAGE), renderer=renderer, js_timeout_ms=20000)

    await scraper.scrape(URL, [".amount"])

    assert renderer.calls == [(URL, 20000)]


@pytest.mark.asyncio
async def test_js_fallback_challenge_is_blocked():
    renderer = FakeRenderer(html=CHALLENGE_PAGE)
    scraper = make_scraper(html_handler(EMPTY_PAGE), renderer=renderer)

    result = await scraper.scrape(URL, [".amount"])

    assert result.blocked_by_challenge is True
    assert result.price is None


@pytest.mark.asyncio
async def test_js_fallback_not_used_when_price_found():
    renderer = FakeRenderer(html=PRICED_PAGE)
    scraper = make_scraper(html_handler(PRICED_PAGE), renderer=renderer)

    await scraper.scrape(URL, [".amount"])

    assert renderer.calls == []


@pytest.mark.asyncio
async def test_js_fallback_disabled():
    renderer = FakeRenderer(html=PRICED_PAGE)
    scraper = make_scraper(html_handler(EMPTY_PAGE), renderer=renderer, enable_js_fallback=False)

    result = await scraper.scrape(URL, [".amount"])

    assert renderer.calls == []
    assert result.price is None


@pytest.mark.asyncio
async def test_renderer_returning_nothing_keeps_static_result():
    renderer = FakeRenderer(html=None)
    scraper = make_scraper(html_handler(EMPTY_PAGE), renderer=renderer)

    result = await scraper.scrape(URL, [".amount"])

    assert result is not None
    assert result.price is None
    assert result.signals["js_rendered"] == "false"


@pytest.mark.asyncio
async def test_http_error_returns_none():
    scraper = make_scraper(html_handler("<html><body>Server error</body></html>", status_code=500))

    assert await scraper.scrape(URL, [".amount"]) is None


@pytest.mark.asyncio
async def test_network_error_returns_none():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    scraper = make_scraper(handler)

    assert await scraper.scrape(URL, [".amount"]) is None


@pytest.mark.asyncio
async def test_manual_review_skipped_off_desktop(monkeypatch):
    opened = []
    monkeypatch.setattr(scraper_module, "_looks_like_desktop", lambda: False)
    monkeypatch.setattr(scraper_module.webbrowser, "open", lambda url: opened.append(url))
    scraper = make_scraper(html_handler(CHALLENGE_PAGE), open_browser_on_challenge=True)

    result = await scraper.scrape(URL, [".amount"])

    assert result.blocked_by_challenge is True
    assert opened == []


def test_looks_like_desktop_false_in_container(monkeypatch):
    monkeypatch.setenv("KUBERNETES_SERVICE_HOST", "10.0.0.1")

    assert scraper_module._looks_like_desktop() is False
