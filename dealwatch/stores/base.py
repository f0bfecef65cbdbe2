"""Store client interface for marketplace integrations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from urllib.parse import urlparse


class StoreClientError(Exception):
    """A store API call failed."""


class StoreType(str, Enum):
    """Marketplaces the pipeline knows about."""

    EBAY = "ebay"
    AMAZON = "amazon"
    BESTBUY = "bestbuy"
    WALMART = "walmart"
    GENERIC = "generic"

    @classmethod
    def from_key(cls, key: Optional[str]) -> Optional["StoreType"]:
        """Parse a configured store key; None if unknown."""
        if not key:
            return None
        try:
            return cls(key.strip().lower())
        except ValueError:
            return None

    @classmethod
    def infer_from_url(cls, url: str) -> "StoreType":
        """Infer the marketplace from a listing URL's host."""
        host = (urlparse(url).netloc or url).lower()
        for store_type in (cls.EBAY, cls.AMAZON, cls.BESTBUY, cls.WALMART):
            if f"{store_type.value}." in host:
                return store_type
        return cls.GENERIC


@dataclass
class NewListing:
    """A candidate offer returned by a marketplace search."""

    item_id: str
    title: Optional[str]
    url: Optional[str]
    price: Optional[Decimal]
    currency: Optional[str] = None
    gtin: Optional[str] = None
    mpn: Optional[str] = None
    brand: Optional[str] = None
    condition_id: Optional[int] = None
    free_shipping: Optional[bool] = None
    aspects: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class StoreProductData:
    """Current price and availability reported by a store API."""

    price: Optional[Decimal]
    currency: Optional[str]
    in_stock: Optional[bool]
    sold: Optional[bool]
    discontinued: Optional[bool] = None
    retrieved_at: Optional[datetime] = None

    def __post_init__(self):
        if self.retrieved_at is None:
            self.retrieved_at = datetime.utcnow()


class StoreClient(ABC):
    """Per-marketplace search and detail capability."""

    store_type: StoreType = StoreType.GENERIC
    supports_api: bool = True
    # Sold state from this store's API is authoritative over scraped text
    supports_sold_status: bool = False

    @abstractmethod
    async def get_by_url(self, product_url: str) -> Optional[StoreProductData]:
        """Current price/availability for a listing URL, or None."""

    @abstractmethod
    async def search_new_listings(
        self,
        query: str,
        limit: int,
        condition_id: Optional[int] = None,
    ) -> list[NewListing]:
        """Search the marketplace for up to ``limit`` candidate listings."""

    async def close(self) -> None:
        """Release network resources."""
