"""Headless browser renderer for JavaScript-rendered listing pages."""

import asyncio
import logging
import sys
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from dealwatch.config import settings
from dealwatch.ingest.base import JsRenderer

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

STEALTH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-infobars",
    "--disable-extensions",
]

# Best-effort wait target before capturing markup
PRICE_WAIT_SELECTOR = (
    "[data-testid='price-top'] span, span[class*='price'], span[class*='text_sale'], "
    "span[id*='price'], div[class*='price']"
)

MISSING_BROWSER_MARKERS = (
    "executable doesn't exist",
    "please run the following command to download new browsers",
    "playwright install",
)


class PlaywrightRenderer(JsRenderer):
    """Renders a page in headless Chromium and returns its final markup.

    A fresh browser is launched per render; renders are rare fallbacks. After
    a missing-browser failure the renderer disables itself, attempting a
    one-time browser install first when auto-install is enabled.
    """

    def __init__(self, auto_install: Optional[bool] = None):
        self.auto_install = settings.playwright_auto_install if auto_install is None else auto_install
        self._disabled = False
        self._install_attempted = False
        self._install_lock = asyncio.Lock()

    @property
    def disabled(self) -> bool:
        return self._disabled

    async def render(
        self,
        url: str,
        timeout_ms: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[str]:
        if self._disabled:
            return None
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Render skipped for {url}: cancellation requested")
            return None

        try:
            return await self._render(url, timeout_ms)
        except PlaywrightError as e:
            if _looks_like_missing_browser(e):
                if await self._try_install():
                    try:
                        return await self._render(url, timeout_ms)
                    except Exception as retry_error:
                        logger.error(f"Playwright render failed after install for {url}: {retry_error}")
                        return None
                logger.error(
                    "Playwright browsers missing; JS rendering disabled. "
                    "Run: playwright install chromium"
                )
                self._disabled = True
                return None
            logger.error(f"Playwright render failed for {url}: {e}")
            return None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Playwright render failed for {url}: {e}")
            return None

    async def _render(self, url: str, timeout_ms: int) -> str:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True, args=STEALTH_ARGS)
            try:
                context = await browser.new_context(
                    user_agent=USER_AGENT,
                    ignore_https_errors=True,
                    viewport={"width": 1920, "height": 1080},
                    locale="en-US",
                )
                await context.add_init_script(
                    "Object.defineProperty(navigator, 'webdriver', { get: () => undefined })"
                )
                page = await context.new_page()
                page.set_default_timeout(timeout_ms)

                await page.goto(url, wait_until="load", timeout=timeout_ms)

                wait_ms = min(timeout_ms, 10000)
                try:
                    await page.wait_for_load_state("domcontentloaded", timeout=wait_ms)
                except PlaywrightTimeoutError:
                    pass
                try:
                    await page.wait_for_selector(PRICE_WAIT_SELECTOR, timeout=wait_ms)
                except PlaywrightTimeoutError:
                    logger.debug(f"No price-like element appeared on {url}; capturing markup anyway")

                return await page.content()
            finally:
                await browser.close()

    async def _try_install(self) -> bool:
        """Install Chromium once per process. Returns True if the install succeeded."""
        if not self.auto_install:
            return False
        async with self._install_lock:
            if self._install_attempted:
                return False
            self._install_attempted = True
            logger.warning("Playwright browsers missing; attempting one-time install")
            try:
                process = await asyncio.create_subprocess_exec(
                    sys.executable, "-m", "playwright", "install", "chromium",
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
                _, stderr = await process.communicate()
            except Exception as e:
                logger.error(f"Playwright browser install failed: {e}")
                self._disabled = True
                return False

            if process.returncode != 0:
                logger.error(
                    f"Playwright browser install failed (exit {process.returncode}): "
                    f"{stderr.decode(errors='replace')[:500]}"
                )
                self._disabled = True
                return False
            return True


def _looks_like_missing_browser(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in MISSING_BROWSER_MARKERS)
