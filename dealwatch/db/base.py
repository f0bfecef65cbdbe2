"""Domain records and the repository interface for tracked deals."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class DealStatus(str, Enum):
    """Lifecycle state of a tracked deal."""

    ACTIVE = "active"
    EXPIRED = "expired"
    SOLD = "sold"
    OUT_OF_STOCK = "out_of_stock"
    STALE = "stale"


@dataclass
class Store:
    """A store and its scrape profile."""

    id: int
    name: str
    store_type: Optional[str] = None
    api_enabled: bool = False
    scrape_enabled: bool = True
    price_selectors: list[str] = field(default_factory=list)


@dataclass
class Product:
    """A catalog product tracked for deals."""

    id: int
    name: Optional[str]
    msrp: Optional[Decimal] = None
    preferred_condition_id: Optional[int] = None
    active: bool = True
    best_deal_id: Optional[int] = None


@dataclass
class TrackedDeal:
    """A product-to-offer binding under monitoring."""

    id: int
    url: Optional[str]
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    in_stock: Optional[bool] = None
    sold: bool = False
    status: DealStatus = DealStatus.ACTIVE
    expires_at: Optional[datetime] = None
    store_id: Optional[int] = None
    product_id: Optional[int] = None
    store_item_id: Optional[str] = None
    price_selectors: list[str] = field(default_factory=list)
    title: Optional[str] = None
    discount_percent: Optional[int] = None
    error_count: int = 0
    last_checked_at: Optional[datetime] = None
    next_check_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class NewDealListing:
    """Values for a deal created by ingestion."""

    product_id: int
    url: Optional[str]
    price: Optional[Decimal]
    currency: Optional[str]
    store_id: Optional[int]
    store_item_id: Optional[str]
    title: Optional[str] = None
    condition_id: Optional[int] = None
    free_shipping: bool = False
    discount_percent: Optional[int] = None
    next_check_at: Optional[datetime] = None


class DealRepository(ABC):
    """Persistence for deals, products and stores.

    Implementations are the single source of truth for deal state. Writes are
    last-write-wins; no optimistic concurrency is expected.
    """

    @abstractmethod
    async def get_due_deals(self, batch_size: int, now: datetime) -> list[TrackedDeal]:
        """Active or out-of-stock deals whose next check is due, oldest first."""

    @abstractmethod
    async def get_deal_by_id(self, deal_id: int) -> Optional[TrackedDeal]:
        pass

    @abstractmethod
    async def get_store_by_id(self, store_id: int) -> Optional[Store]:
        pass

    @abstractmethod
    async def get_store_by_type(self, store_type: str) -> Optional[Store]:
        pass

    @abstractmethod
    async def get_active_products(self) -> list[Product]:
        pass

    @abstractmethod
    async def get_product_by_id(self, product_id: int) -> Optional[Product]:
        pass

    @abstractmethod
    async def get_expired_active_deals(self, now: datetime) -> list[TrackedDeal]:
        """Deals past their expiration timestamp that are not yet expired."""

    @abstractmethod
    async def expire_deal(self, deal_id: int, now: datetime) -> None:
        pass

    @abstractmethod
    async def update_deal(self, deal: TrackedDeal, price_changed_at: Optional[datetime] = None) -> None:
        """Persist price, stock, sold, status and scheduling fields.

        With ``price_changed_at`` set, a price history row for the deal's
        current price is written in the same transaction.
        """

    @abstractmethod
    async def record_check_error(self, deal_id: int, next_check_at: datetime) -> int:
        """Increment the deal's error count, reschedule it, return the new count."""

    @abstractmethod
    async def mark_stale(self, deal_id: int) -> None:
        pass

    @abstractmethod
    async def exists_listing(
        self,
        store_item_id: Optional[str] = None,
        url: Optional[str] = None,
    ) -> bool:
        """True if a deal already tracks this store item id or URL."""

    @abstractmethod
    async def create_listing(self, listing: NewDealListing, created_at: datetime) -> TrackedDeal:
        pass

    @abstractmethod
    async def update_product_best_deal(self, product_id: int) -> Optional[int]:
        """Point the product at its lowest-priced active deal (or none); return that deal id."""

    @abstractmethod
    async def get_stop_words(self) -> list[str]:
        pass
