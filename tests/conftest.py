"""Shared fakes for orchestrator and task tests."""

import asyncio
import copy
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest

from dealwatch.db.base import (
    DealRepository,
    DealStatus,
    NewDealListing,
    Product,
    Store,
    TrackedDeal,
)
from dealwatch.ingest.base import HtmlScraper, ScrapeResult
from dealwatch.stores.base import NewListing, StoreClient, StoreProductData, StoreType

NOW = datetime(2026, 10, 19, 12, 0, 0)


class InMemoryDealRepository(DealRepository):
    """Dict-backed repository that hands out copies, like a real store would."""

    def __init__(self):
        self.deals: dict[int, TrackedDeal] = {}
        self.stores: dict[int, Store] = {}
        self.products: dict[int, Product] = {}
        self.price_history: list[tuple[int, Decimal, Optional[str], datetime]] = []
        self.stop_words: list[str] = []
        self.fail_due_deals = False
        self.fail_updates_for: set[int] = set()
        self.fail_best_deal = False
        self.best_deal_updates: list[int] = []
        self._next_id = 1000

    def add_deal(self, deal: TrackedDeal) -> TrackedDeal:
        self.deals[deal.id] = deal
        return deal

    async def get_due_deals(self, batch_size, now):
        if self.fail_due_deals:
            raise ConnectionError("database unavailable")
        due = [
            d for d in self.deals.values()
            if d.status in (DealStatus.ACTIVE, DealStatus.OUT_OF_STOCK)
            and (d.next_check_at is None or d.next_check_at <= now)
        ]
        due.sort(key=lambda d: (d.next_check_at is not None, d.next_check_at or now, d.id))
        return [copy.deepcopy(d) for d in due[:batch_size]]

    async def get_deal_by_id(self, deal_id):
        deal = self.deals.get(deal_id)
        return copy.deepcopy(deal) if deal else None

    async def get_store_by_id(self, store_id):
        return self.stores.get(store_id)

    async def get_store_by_type(self, store_type):
        for store in self.stores.values():
            if store.store_type == store_type:
                return store
        return None

    async def get_active_products(self):
        return [p for p in self.products.values() if p.active]

    async def get_product_by_id(self, product_id):
        return self.products.get(product_id)

    async def get_expired_active_deals(self, now):
        return [
            copy.deepcopy(d) for d in self.deals.values()
            if d.status in (DealStatus.ACTIVE, DealStatus.OUT_OF_STOCK)
            and d.expires_at is not None
            and d.expires_at < now
        ]

    async def expire_deal(self, deal_id, now):
        deal = self.deals[deal_id]
        deal.status = DealStatus.EXPIRED
        deal.updated_at = now

    async def update_deal(self, deal, price_changed_at=None):
        if deal.id in self.fail_updates_for:
            raise ConnectionError("write failed")
        self.deals[deal.id] = copy.deepcopy(deal)
        if price_changed_at is not None:
            self.price_history.append((deal.id, deal.price, deal.currency, price_changed_at))

    async def record_check_error(self, deal_id, next_check_at):
        deal = self.deals[deal_id]
        deal.error_count += 1
        deal.next_check_at = next_check_at
        return deal.error_count

    async def mark_stale(self, deal_id):
        self.deals[deal_id].status = DealStatus.STALE

    async def exists_listing(self, store_item_id=None, url=None):
        return any(
            (store_item_id and d.store_item_id == store_item_id) or (url and d.url == url)
            for d in self.deals.values()
        )

    async def create_listing(self, listing: NewDealListing, created_at):
        self._next_id += 1
        deal = TrackedDeal(
            id=self._next_id,
            url=listing.url,
            price=listing.price,
            currency=listing.currency,
            store_id=listing.store_id,
            product_id=listing.product_id,
            store_item_id=listing.store_item_id,
            title=listing.title,
            discount_percent=listing.discount_percent,
            next_check_at=listing.next_check_at,
            updated_at=created_at,
        )
        self.deals[deal.id] = deal
        return copy.deepcopy(deal)

    async def update_product_best_deal(self, product_id):
        self.best_deal_updates.append(product_id)
        if self.fail_best_deal:
            raise ConnectionError("best deal update failed")
        candidates = [
            d for d in self.deals.values()
            if d.product_id == product_id and d.status == DealStatus.ACTIVE and d.price and d.price > 0
        ]
        best = min(candidates, key=lambda d: (d.price, d.id)) if candidates else None
        best_deal_id = best.id if best else None
        if product_id in self.products:
            self.products[product_id] = replace(self.products[product_id], best_deal_id=best_deal_id)
        return best_deal_id

    async def get_stop_words(self):
        return list(self.stop_words)


class FakeScraper(HtmlScraper):
    """Returns canned results per URL and records peak concurrency."""

    def __init__(self, results: Optional[dict[str, Optional[ScrapeResult]]] = None, delay: float = 0.0):
        self.results = results or {}
        self.default: Optional[ScrapeResult] = None
        self.delay = delay
        self.calls: list[tuple[str, list[str]]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_enter = None

    async def scrape(self, url, selectors, cancel_event=None):
        self.calls.append((url, list(selectors or [])))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_enter is not None:
                self.on_enter(url)
            await asyncio.sleep(self.delay)
            result = self.results.get(url, self.default)
            return replace(result) if result is not None else None
        finally:
            self.in_flight -= 1


class FakeStoreClient(StoreClient):
    """Store client returning canned search results and item data."""

    def __init__(
        self,
        store_type: StoreType = StoreType.EBAY,
        listings: Optional[dict[str, list[NewListing]]] = None,
        items: Optional[dict[str, StoreProductData]] = None,
        supports_sold_status: bool = True,
    ):
        self.store_type = store_type
        self.supports_sold_status = supports_sold_status
        self.listings = listings or {}
        self.items = items or {}
        self.failing_queries: set[str] = set()
        self.searches: list[tuple[str, int, Optional[int]]] = []

    async def get_by_url(self, product_url):
        return self.items.get(product_url)

    async def search_new_listings(self, query, limit, condition_id=None):
        self.searches.append((query, limit, condition_id))
        if query in self.failing_queries:
            raise ConnectionError("search failed")
        return list(self.listings.get(query, []))


def scrape_result(price=None, currency="USD", in_stock=None, sold=None) -> ScrapeResult:
    return ScrapeResult(
        price=Decimal(price) if price is not None else None,
        currency=currency if price is not None else None,
        in_stock=in_stock,
        sold=sold,
    )


def page(body: str, title: str = "Listing") -> str:
    return f"<html><head><title>{title}</title></head><body>{body}</body></html>"


@pytest.fixture
def repo() -> InMemoryDealRepository:
    repository = InMemoryDealRepository()
    repository.stores[1] = Store(
        id=1,
        name="Example Shop",
        store_type="generic",
        price_selectors=[".amount"],
    )
    return repository


@pytest.fixture
def scraper() -> FakeScraper:
    return FakeScraper()
