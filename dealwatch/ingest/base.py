"""Scrape result types and the scraper/renderer interfaces."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional


@dataclass
class PriceCandidate:
    """A price found on a page before selection."""

    amount: Decimal
    currency: Optional[str]
    struck: bool = False
    promotional: bool = False


@dataclass
class ScrapeResult:
    """Consolidated outcome of scraping one listing page.

    When ``blocked_by_challenge`` is set, every extraction field is None: the
    page was an anti-automation interstitial, not a real page without a price.
    """

    price: Optional[Decimal] = None
    currency: Optional[str] = None
    in_stock: Optional[bool] = None
    sold: Optional[bool] = None
    blocked_by_challenge: bool = False
    signals: dict[str, str] = field(default_factory=dict)

    @classmethod
    def blocked(cls) -> "ScrapeResult":
        return cls(blocked_by_challenge=True, signals={"blocked": "bot_protection"})


class JsRenderer(ABC):
    """Executes a page in a real browser engine and returns the rendered markup."""

    @abstractmethod
    async def render(
        self,
        url: str,
        timeout_ms: int,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[str]:
        """
        Render a page.

        Must not raise: any rendering error, timeout or navigation failure
        returns None.
        """


class HtmlScraper(ABC):
    """Scrapes price and availability from a listing URL."""

    @abstractmethod
    async def scrape(
        self,
        url: str,
        selectors: Optional[list[str]],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[ScrapeResult]:
        """
        Scrape a listing.

        Returns None when no result could be produced (no selectors, fetch or
        parse failure). Callers treat None as "try again later".
        """
