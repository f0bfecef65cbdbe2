"""Listing scraper: fetch, challenge detection, extraction and JS fallback."""

import asyncio
import logging
import os
import random
import sys
import time
import webbrowser
from pathlib import Path
from typing import Optional

import httpx
from selectolax.lexbor import LexborHTMLParser

from dealwatch import metrics
from dealwatch.config import settings
from dealwatch.ingest.base import HtmlScraper, JsRenderer, ScrapeResult
from dealwatch.ingest.challenge import is_challenge_page, page_text
from dealwatch.ingest.extractor import ExtractionResult, extract_price_signals

logger = logging.getLogger(__name__)

# User agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
]

# Environment variables set on cloud workers and containers
NON_DESKTOP_ENV_VARS = ("WEBSITE_INSTANCE_ID", "KUBERNETES_SERVICE_HOST", "RUNNING_IN_CONTAINER")


class ListingScraper(HtmlScraper):
    """
    Scrapes a single listing page with a store-profile selector set.

    Fails closed: any unexpected error is logged and returns None, never
    raises to the caller.
    """

    # JS rendering is slower; configured timeouts below the floor are raised
    JS_TIMEOUT_FLOOR_MS = 8000
    JS_ELEVATED_TIMEOUT_MS = 15000

    def __init__(
        self,
        renderer: Optional[JsRenderer] = None,
        enable_js_fallback: Optional[bool] = None,
        js_timeout_ms: Optional[int] = None,
        open_browser_on_challenge: Optional[bool] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the scraper.

        Args:
            renderer: Optional JS renderer used when the static page has no price
            enable_js_fallback: Whether the renderer may be used (defaults to config)
            js_timeout_ms: Configured JS render timeout in milliseconds
            open_browser_on_challenge: Open challenge URLs for manual review
            timeout: HTTP timeout in seconds
            client: Optional pre-built HTTP client (tests inject a mock transport)
        """
        self.renderer = renderer
        self.enable_js_fallback = (
            settings.js_fallback_enabled if enable_js_fallback is None else enable_js_fallback
        )
        self.js_timeout_ms = settings.js_timeout_ms if js_timeout_ms is None else js_timeout_ms
        self.open_browser_on_challenge = (
            settings.open_browser_on_challenge
            if open_browser_on_challenge is None
            else open_browser_on_challenge
        )
        self.timeout = settings.request_timeout_seconds if timeout is None else timeout
        self._client = client

    @property
    def js_fallback_available(self) -> bool:
        return self.enable_js_fallback and self.renderer is not None

    @property
    def effective_js_timeout_ms(self) -> int:
        if self.js_timeout_ms < self.JS_TIMEOUT_FLOOR_MS:
            return self.JS_ELEVATED_TIMEOUT_MS
        return self.js_timeout_ms

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={
                    "User-Agent": random.choice(USER_AGENTS),
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.5",
                    "Connection": "keep-alive",
                    "Upgrade-Insecure-Requests": "1",
                },
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def scrape(
        self,
        url: str,
        selectors: Optional[list[str]],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[ScrapeResult]:
        if not selectors:
            logger.info(f"Skipping scrape for {url}: no price selectors supplied")
            metrics.record_scrape("skipped")
            return None

        started = time.monotonic()
        try:
            client = await self._get_client()
            response = await client.get(url)
            parser = LexborHTMLParser(response.text)

            # Challenge pages are often served with 403/503
            if is_challenge_page(parser):
                return self._blocked(url, started)
            response.raise_for_status()

            text = page_text(parser)
            extraction = extract_price_signals(parser, selectors, text)
            js_rendered = False

            if not extraction.candidates and self.js_fallback_available:
                rendered = await self._render(url, cancel_event)
                if rendered:
                    rendered_parser = LexborHTMLParser(rendered)
                    if is_challenge_page(rendered_parser):
                        logger.warning(f"JS-rendered scrape still blocked (bot protection) for {url}")
                        return self._blocked(url, started)
                    extraction = extract_price_signals(rendered_parser, selectors)
                    js_rendered = True

            result = self._build_result(extraction, js_rendered)
            logger.info(
                f"Scraped {url}: price={result.price} {result.currency or ''} "
                f"in_stock={result.in_stock} candidates={len(extraction.candidates)}"
            )
            metrics.record_scrape("ok", time.monotonic() - started)
            return result

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Scrape failed {url}: {e}")
            metrics.record_scrape("failed", time.monotonic() - started)
            return None

    async def _render(self, url: str, cancel_event: Optional[asyncio.Event]) -> Optional[str]:
        timeout_ms = self.effective_js_timeout_ms
        if timeout_ms != self.js_timeout_ms:
            logger.info(
                f"Using elevated JS timeout: {timeout_ms}ms (configured {self.js_timeout_ms}ms)"
            )
        logger.info(f"Running JS-rendered fallback (profile selectors only) for {url}")
        rendered = await self.renderer.render(url, timeout_ms, cancel_event)
        metrics.record_js_fallback(bool(rendered))
        return rendered

    @staticmethod
    def _build_result(extraction: ExtractionResult, js_rendered: bool) -> ScrapeResult:
        price = extraction.price
        return ScrapeResult(
            price=price,
            currency=(extraction.currency or "USD") if price is not None else None,
            in_stock=extraction.in_stock,
            sold=extraction.sold,
            signals={
                "price_found": str(price) if price is not None else "",
                "length": str(extraction.text_length),
                "candidates": str(len(extraction.candidates)),
                "js_rendered": "true" if js_rendered else "false",
            },
        )

    def _blocked(self, url: str, started: float) -> ScrapeResult:
        logger.warning(f"Scrape blocked (bot protection) for {url}")
        metrics.record_scrape("blocked", time.monotonic() - started)
        self._surface_for_review(url)
        return ScrapeResult.blocked()

    def _surface_for_review(self, url: str) -> None:
        """Open a challenge URL in the desktop browser, best effort and non-blocking."""
        if not self.open_browser_on_challenge:
            return
        if not _looks_like_desktop():
            logger.info(
                f"open_browser_on_challenge enabled, but environment looks non-desktop; "
                f"skipping browser launch for {url}"
            )
            return
        try:
            loop = asyncio.get_running_loop()
            loop.run_in_executor(None, _open_in_browser, url)
        except Exception as e:
            logger.warning(f"Failed to schedule browser launch for {url}: {e}")


def _looks_like_desktop() -> bool:
    if any(os.environ.get(name) for name in NON_DESKTOP_ENV_VARS):
        return False
    if Path("/.dockerenv").exists():
        return False
    if sys.platform.startswith("linux") and not (
        os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY")
    ):
        return False
    return sys.stdin is not None and sys.stdin.isatty()


def _open_in_browser(url: str) -> None:
    try:
        logger.info(f"Opening URL in default browser for manual review: {url}")
        webbrowser.open(url)
    except Exception as e:
        logger.warning(f"Failed to open browser for manual review: {url}: {e}")
