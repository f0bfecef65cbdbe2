"""Deal update orchestration: refresh, expiration sweep and listing ingestion."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Iterable, Optional, Sequence, Union

from dealwatch import metrics
from dealwatch.config import settings
from dealwatch.db.base import DealRepository, DealStatus, NewDealListing, Product, Store, TrackedDeal
from dealwatch.ingest.base import HtmlScraper, ScrapeResult
from dealwatch.stores.base import NewListing, StoreClient, StoreProductData, StoreType
from dealwatch.stores.matching import (
    DEFAULT_STOP_WORDS,
    coverage,
    discount_percent,
    normalize_tokens,
    price_within_msrp,
)

logger = logging.getLogger(__name__)


class RefreshOutcome(str, Enum):
    """Classification of a single deal refresh."""

    UPDATED = "updated"
    EXPIRED = "expired"
    SOLD = "sold"
    ERROR = "error"
    UNCHANGED = "unchanged"


@dataclass
class RefreshReport:
    """Aggregate counts for one refresh run."""

    total: int = 0
    updated: int = 0
    expired: int = 0
    sold: int = 0
    errors: int = 0

    @property
    def unchanged(self) -> int:
        return self.total - self.updated - self.expired - self.sold - self.errors

    def add(self, outcome: RefreshOutcome):
        self.total += 1
        if outcome == RefreshOutcome.UPDATED:
            self.updated += 1
        elif outcome == RefreshOutcome.EXPIRED:
            self.expired += 1
        elif outcome == RefreshOutcome.SOLD:
            self.sold += 1
        elif outcome == RefreshOutcome.ERROR:
            self.errors += 1


@dataclass
class NewListingQuery:
    """A search to run for one catalog product."""

    product_id: int
    query: str


class RunCancelledError(Exception):
    """Cancellation was requested; ``result`` holds what completed before it."""

    def __init__(self, operation: str, result: Union[RefreshReport, int]):
        super().__init__(f"{operation} cancelled")
        self.operation = operation
        self.result = result


class InvalidCancellationTokenError(TypeError):
    """The cancellation signal is not an asyncio.Event."""


def _check_cancel_event(cancel_event) -> None:
    if cancel_event is not None and not isinstance(cancel_event, asyncio.Event):
        raise InvalidCancellationTokenError(
            f"cancel_event must be an asyncio.Event or None, got {type(cancel_event).__name__}"
        )


def _is_cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class DealUpdateOrchestrator:
    """
    Keeps tracked deals current.

    Three operations share one cancellation contract: the signal is checked
    at item boundaries, in-flight items are allowed to finish, and the
    operation then raises RunCancelledError with the partial result.
    Per-item failures are logged and counted, never raised.
    """

    def __init__(
        self,
        repository: DealRepository,
        scraper: HtmlScraper,
        store_clients: Optional[Iterable[StoreClient]] = None,
        max_parallel: Optional[int] = None,
        next_check_hours_changed: Optional[int] = None,
        next_check_hours_unchanged: Optional[int] = None,
        next_check_hours_error: Optional[int] = None,
        max_error_count: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.repository = repository
        self.scraper = scraper
        self.store_clients: dict[StoreType, StoreClient] = {
            client.store_type: client for client in (store_clients or [])
        }
        if max_parallel is None:
            max_parallel = settings.max_parallel_refreshes
        if next_check_hours_changed is None:
            next_check_hours_changed = settings.next_check_hours_changed
        if next_check_hours_unchanged is None:
            next_check_hours_unchanged = settings.next_check_hours_unchanged
        if next_check_hours_error is None:
            next_check_hours_error = settings.next_check_hours_error
        if max_error_count is None:
            max_error_count = settings.max_error_count

        self.max_parallel = max(1, max_parallel)
        self.next_check_changed = timedelta(hours=next_check_hours_changed)
        self.next_check_unchanged = timedelta(hours=next_check_hours_unchanged)
        self.next_check_error = timedelta(hours=next_check_hours_error)
        self.max_error_count = max_error_count
        self._clock = clock

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_deals(
        self,
        batch_size: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RefreshReport:
        """
        Refresh up to ``batch_size`` due deals.

        At most ``max_parallel`` deals are in flight at once. A repository
        failure while loading the batch propagates; anything after that is
        counted per deal.

        Raises:
            InvalidCancellationTokenError: cancel_event is not an Event
            RunCancelledError: cancellation stopped the run before every deal was admitted
        """
        _check_cancel_event(cancel_event)
        if batch_size is None:
            batch_size = settings.refresh_batch_size
        if _is_cancelled(cancel_event):
            raise RunCancelledError("refresh_deals", RefreshReport())

        deals = await self.repository.get_due_deals(batch_size, self._clock())
        logger.info(f"Refreshing {len(deals)} due deals (max parallel {self.max_parallel})")

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def refresh_with_semaphore(deal: TrackedDeal) -> Optional[RefreshOutcome]:
            async with semaphore:
                if _is_cancelled(cancel_event):
                    return None
                metrics.scrapes_in_flight.inc()
                try:
                    return await self._refresh_one(deal, cancel_event)
                finally:
                    metrics.scrapes_in_flight.dec()

        outcomes = await asyncio.gather(*(refresh_with_semaphore(d) for d in deals))

        report = RefreshReport()
        for outcome in outcomes:
            if outcome is None:
                continue
            report.add(outcome)
            metrics.record_refresh_outcome(outcome.value)

        if report.total < len(deals):
            logger.warning(f"Refresh cancelled after {report.total} of {len(deals)} deals")
            raise RunCancelledError("refresh_deals", report)
        return report

    async def _refresh_one(
        self,
        deal: TrackedDeal,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RefreshOutcome:
        try:
            return await self._reconcile(deal, cancel_event)
        except Exception as e:
            logger.error(f"Refresh failed for deal {deal.id}: {e}", exc_info=True)
            try:
                await self._record_error(deal, self._clock())
            except Exception as record_error:
                logger.error(f"Could not reschedule failed deal {deal.id}: {record_error}")
            return RefreshOutcome.ERROR

    async def _reconcile(
        self,
        deal: TrackedDeal,
        cancel_event: Optional[asyncio.Event],
    ) -> RefreshOutcome:
        now = self._clock()

        if not deal.url:
            logger.warning(f"Deal {deal.id} has no offer URL")
            await self._record_error(deal, now)
            return RefreshOutcome.ERROR

        if deal.expires_at is not None and deal.expires_at < now:
            deal.status = DealStatus.EXPIRED
            return await self._save(deal, now, RefreshOutcome.EXPIRED)

        store = await self.repository.get_store_by_id(deal.store_id) if deal.store_id is not None else None
        result = await self._fetch(deal, store, cancel_event)
        if result is None:
            await self._record_error(deal, now)
            return RefreshOutcome.ERROR

        if isinstance(result, ScrapeResult) and result.blocked_by_challenge:
            logger.info(f"Deal {deal.id} blocked by bot protection; keeping stored state")
            return await self._save(deal, now, RefreshOutcome.UNCHANGED)

        if isinstance(result, StoreProductData) and result.discontinued:
            logger.info(f"Deal {deal.id} listing no longer available; expiring")
            deal.status = DealStatus.EXPIRED
            return await self._save(deal, now, RefreshOutcome.EXPIRED)

        if result.sold and deal.status != DealStatus.SOLD:
            deal.sold = True
            deal.status = DealStatus.SOLD
            return await self._save(deal, now, RefreshOutcome.SOLD)

        changed = False
        old_price = deal.price
        price_changed = result.price is not None and result.price > 0 and result.price != deal.price
        if price_changed:
            deal.price = result.price
            deal.currency = result.currency or deal.currency
            changed = True

        if result.in_stock is False and deal.status != DealStatus.OUT_OF_STOCK:
            deal.status = DealStatus.OUT_OF_STOCK
            changed = True
        elif result.in_stock is True and deal.status == DealStatus.OUT_OF_STOCK:
            deal.status = DealStatus.ACTIVE
            changed = True
        if result.in_stock is not None:
            deal.in_stock = result.in_stock

        outcome = RefreshOutcome.UPDATED if changed else RefreshOutcome.UNCHANGED
        await self._save(deal, now, outcome, price_changed=price_changed)
        if price_changed:
            metrics.record_price_change(old_price, deal.price)
            logger.info(f"Deal {deal.id} price {old_price} -> {deal.price}")
        return outcome

    async def _fetch(
        self,
        deal: TrackedDeal,
        store: Optional[Store],
        cancel_event: Optional[asyncio.Event],
    ) -> Optional[Union[ScrapeResult, StoreProductData]]:
        """Store API first when it applies, then the scraper."""
        if store is not None and store.store_type:
            store_type = StoreType.from_key(store.store_type) or StoreType.infer_from_url(deal.url)
        else:
            store_type = StoreType.infer_from_url(deal.url)

        client = self.store_clients.get(store_type)
        if client is not None and ((store is not None and store.api_enabled) or client.supports_sold_status):
            data = await client.get_by_url(deal.url)
            if data is not None:
                return data
            logger.debug(f"Deal {deal.id}: {store_type.value} API returned nothing, trying scraper")

        if store is not None and not store.scrape_enabled:
            logger.warning(f"Deal {deal.id}: scraping disabled for store {store.name}")
            return None

        selectors = deal.price_selectors or (store.price_selectors if store else [])
        if not selectors:
            logger.warning(f"Deal {deal.id}: no price selectors configured")
            return None

        return await self.scraper.scrape(deal.url, selectors, cancel_event)

    async def _save(
        self,
        deal: TrackedDeal,
        now: datetime,
        outcome: RefreshOutcome,
        price_changed: bool = False,
    ) -> RefreshOutcome:
        """Persist the deal; a price history row is written with it, never before it."""
        changed = outcome != RefreshOutcome.UNCHANGED
        deal.error_count = 0
        deal.last_checked_at = now
        deal.next_check_at = now + (self.next_check_changed if changed else self.next_check_unchanged)
        if changed:
            deal.updated_at = now
        await self.repository.update_deal(deal, price_changed_at=now if price_changed else None)
        if changed:
            await self._update_best_deal(deal.product_id)
        return outcome

    async def _record_error(self, deal: TrackedDeal, now: datetime):
        error_count = await self.repository.record_check_error(deal.id, now + self.next_check_error)
        if error_count >= self.max_error_count:
            logger.warning(f"Deal {deal.id} failed {error_count} consecutive checks; marking stale")
            await self.repository.mark_stale(deal.id)
            await self._update_best_deal(deal.product_id)

    async def _update_best_deal(self, product_id: Optional[int]):
        if product_id is None:
            return
        try:
            best_deal_id = await self.repository.update_product_best_deal(product_id)
        except Exception as e:
            logger.warning(f"Best deal update failed for product {product_id}: {e}")
            return
        logger.debug(f"Product {product_id} best deal is now {best_deal_id}")

    # ------------------------------------------------------------------
    # Expiration sweep
    # ------------------------------------------------------------------

    async def sweep_expired_deals(self, cancel_event: Optional[asyncio.Event] = None) -> int:
        """Expire deals whose expiration timestamp has passed. No fetching."""
        _check_cancel_event(cancel_event)
        if _is_cancelled(cancel_event):
            raise RunCancelledError("sweep_expired_deals", 0)

        now = self._clock()
        deals = await self.repository.get_expired_active_deals(now)

        expired = 0
        try:
            for deal in deals:
                if _is_cancelled(cancel_event):
                    raise RunCancelledError("sweep_expired_deals", expired)
                try:
                    await self.repository.expire_deal(deal.id, now)
                except Exception as e:
                    logger.error(f"Failed to expire deal {deal.id}: {e}")
                    continue
                expired += 1
                await self._update_best_deal(deal.product_id)
        finally:
            metrics.record_deals_expired(expired)

        return expired

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest_new_listings(
        self,
        store_type: Union[StoreType, str, None],
        max_results_per_query: Optional[int] = None,
        queries: Sequence[NewListingQuery] = (),
        cancel_event: Optional[asyncio.Event] = None,
    ) -> int:
        """
        Search a store for each product query and create listings not yet tracked.

        Returns:
            Number of listings created
        """
        _check_cancel_event(cancel_event)

        if not isinstance(store_type, StoreType):
            store_type = StoreType.from_key(store_type)
        client = self.store_clients.get(store_type) if store_type is not None else None
        if client is None:
            logger.info(f"Store type {store_type} not yet supported for ingestion; skipping")
            return 0

        if _is_cancelled(cancel_event):
            raise RunCancelledError("ingest_new_listings", 0)

        limit = max_results_per_query
        if limit is None:
            limit = settings.ingest_max_results_per_query
        store = await self.repository.get_store_by_type(store_type.value)
        stop_words = await self._load_stop_words()

        created = 0
        for query in queries:
            if _is_cancelled(cancel_event):
                raise RunCancelledError("ingest_new_listings", created)
            try:
                count = await self._ingest_query(client, store, query, limit, stop_words)
            except Exception as e:
                logger.error(f"Ingestion query '{query.query}' for product {query.product_id} failed: {e}")
                metrics.record_ingest_query_error(store_type.value)
                continue
            metrics.record_listings_ingested(store_type.value, count)
            created += count

        return created

    async def _load_stop_words(self) -> list[str]:
        try:
            stop_words = await self.repository.get_stop_words()
        except Exception as e:
            logger.warning(f"Could not load stop words, using defaults: {e}")
            return list(DEFAULT_STOP_WORDS)
        return stop_words or list(DEFAULT_STOP_WORDS)

    async def _ingest_query(
        self,
        client: StoreClient,
        store: Optional[Store],
        query: NewListingQuery,
        limit: int,
        stop_words: list[str],
    ) -> int:
        product = await self.repository.get_product_by_id(query.product_id)
        if product is None:
            logger.warning(f"Product {query.product_id} not found; skipping query '{query.query}'")
            return 0

        listings = await client.search_new_listings(query.query, limit, product.preferred_condition_id)
        product_tokens = normalize_tokens(product.name, stop_words)
        matched = [l for l in listings if self._matches(product, product_tokens, l, stop_words)]
        matched.sort(key=lambda l: l.price)

        now = self._clock()
        created = 0
        for listing in matched[:limit]:
            if await self.repository.exists_listing(store_item_id=listing.item_id, url=listing.url):
                continue
            await self.repository.create_listing(
                NewDealListing(
                    product_id=product.id,
                    url=listing.url,
                    price=listing.price,
                    currency=listing.currency or "USD",
                    store_id=store.id if store else None,
                    store_item_id=listing.item_id,
                    title=listing.title,
                    condition_id=listing.condition_id,
                    free_shipping=bool(listing.free_shipping),
                    discount_percent=discount_percent(product.msrp, listing.price),
                    next_check_at=now,
                ),
                now,
            )
            created += 1

        if created:
            await self._update_best_deal(product.id)
        logger.debug(
            f"Query '{query.query}': {len(listings)} found, {len(matched)} matched, {created} created"
        )
        return created

    def _matches(
        self,
        product: Product,
        product_tokens: set[str],
        listing: NewListing,
        stop_words: list[str],
    ) -> bool:
        if listing.price is None or listing.price <= 0 or not listing.url:
            return False
        if (
            product.preferred_condition_id is not None
            and listing.condition_id is not None
            and listing.condition_id != product.preferred_condition_id
        ):
            return False
        if listing.gtin:
            return True

        title_coverage = coverage(product_tokens, normalize_tokens(listing.title, stop_words))
        if title_coverage < settings.ingest_title_coverage_threshold:
            return False
        if product.msrp is not None and not price_within_msrp(
            listing.price,
            product.msrp,
            settings.ingest_msrp_min_ratio,
            settings.ingest_msrp_max_ratio,
        ):
            return False
        return True
