"""eBay Browse API client for listing search and refresh checks."""

import asyncio
import logging
import re
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

import httpx

from dealwatch.config import settings
from dealwatch.stores.base import (
    NewListing,
    StoreClient,
    StoreClientError,
    StoreProductData,
    StoreType,
)

logger = logging.getLogger(__name__)

# Accessory and non-core listing keywords
ACCESSORY_KEYWORDS = (
    "case", "cover", "headcover", "head cover", "charger", "screen protector", "protector",
    "cable", "battery", "mount", "stand", "skin", "dock", "adapter", "shaft", "grip",
    "sleeve", "tip", "tool", "wrench", "weight", "weights", "screw", "screws",
)
ACCESSORY_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in ACCESSORY_KEYWORDS) + r")s?\b",
    re.IGNORECASE,
)

ITEM_ID_PATTERN = re.compile(r"/itm/(?:[^/?#]+/)?(\d{9,15})")

SEARCH_PAGE_SIZE = 50

IN_STOCK_STATUSES = ("IN_STOCK", "LIMITED_STOCK")


def extract_item_id(url: str) -> Optional[str]:
    """Legacy eBay item id from a listing URL."""
    match = ITEM_ID_PATTERN.search(url or "")
    return match.group(1) if match else None


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class EbayAuthService:
    """OAuth client-credentials token provider with caching."""

    TOKEN_PATH = "/identity/v1/oauth2/token"

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        scope: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.client_id = client_id or settings.ebay_client_id
        self.client_secret = client_secret or settings.ebay_client_secret
        self.scope = scope or settings.ebay_oauth_scope
        self.base_url = (base_url or settings.ebay_api_base_url).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def get_access_token(self) -> Optional[str]:
        """Return a cached token, refreshing it within five minutes of expiry."""
        async with self._lock:
            now = self._clock()
            if self._token and self._expires_at and now < self._expires_at - timedelta(minutes=5):
                return self._token

            if not self.configured:
                logger.warning("eBay credentials not configured; cannot request token")
                return None

            response = await self._client.post(
                f"{self.base_url}{self.TOKEN_PATH}",
                data={"grant_type": "client_credentials", "scope": self.scope},
                auth=(self.client_id, self.client_secret),
            )
            if response.status_code != 200:
                logger.warning(f"eBay OAuth token request failed: HTTP {response.status_code}")
                return None

            payload = response.json()
            self._token = payload.get("access_token")
            expires_in = _int(payload.get("expires_in"))
            if expires_in is not None:
                self._expires_at = now + timedelta(seconds=expires_in)
            return self._token

    async def close(self):
        await self._client.aclose()


class EbayStoreClient(StoreClient):
    """Browse API client: fixed-price search with quality filters, and item lookup."""

    store_type = StoreType.EBAY
    supports_api = True
    supports_sold_status = True

    def __init__(
        self,
        auth: EbayAuthService,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        marketplace_id: Optional[str] = None,
        min_feedback_percent: Optional[float] = None,
        min_feedback_score: Optional[int] = None,
        require_top_rated: Optional[bool] = None,
    ):
        self.auth = auth
        self.base_url = (base_url or settings.ebay_api_base_url).rstrip("/")
        self.marketplace_id = marketplace_id or settings.ebay_marketplace_id
        self.min_feedback_percent = (
            settings.ebay_min_feedback_percent if min_feedback_percent is None else min_feedback_percent
        )
        self.min_feedback_score = (
            settings.ebay_min_feedback_score if min_feedback_score is None else min_feedback_score
        )
        self.require_top_rated = (
            settings.ebay_require_top_rated if require_top_rated is None else require_top_rated
        )
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)

    async def _headers(self) -> dict[str, str]:
        token = await self.auth.get_access_token()
        if not token:
            raise StoreClientError("eBay access token unavailable")
        return {
            "Authorization": f"Bearer {token}",
            "X-EBAY-C-MARKETPLACE-ID": self.marketplace_id,
        }

    async def search_new_listings(
        self,
        query: str,
        limit: int,
        condition_id: Optional[int] = None,
    ) -> list[NewListing]:
        if limit <= 0 or not query.strip():
            return []

        filters = ["buyingOptions:{FIXED_PRICE}"]
        if condition_id is not None:
            filters.append(f"conditionIds:{{{condition_id}}}")

        response = await self._client.get(
            f"{self.base_url}/buy/browse/v1/item_summary/search",
            params={
                "q": query,
                "limit": str(SEARCH_PAGE_SIZE),
                "filter": ",".join(filters),
            },
            headers=await self._headers(),
        )
        if response.status_code != 200:
            raise StoreClientError(f"eBay search failed: HTTP {response.status_code}")

        summaries = response.json().get("itemSummaries") or []
        listings = []
        seen: set[str] = set()
        for summary in summaries:
            listing = self._to_listing(summary)
            if listing is None or listing.item_id in seen:
                continue
            if not self._passes_filters(summary, listing):
                continue
            seen.add(listing.item_id)
            listings.append(listing)

        listings.sort(key=lambda l: l.price)
        logger.debug(
            f"eBay search '{query}': {len(summaries)} raw, {len(listings)} kept, returning {min(limit, len(listings))}"
        )
        return listings[:limit]

    @staticmethod
    def _to_listing(summary: dict) -> Optional[NewListing]:
        item_id = summary.get("itemId")
        price_info = summary.get("price") or {}
        price = _decimal(price_info.get("value"))
        if not item_id or price is None:
            return None

        free_shipping = None
        shipping_options = summary.get("shippingOptions")
        if shipping_options:
            free_shipping = any(
                (o.get("shippingCostType") or "").upper() == "FREE" for o in shipping_options
            )

        gtin = summary.get("gtin")
        if isinstance(gtin, list):
            gtin = gtin[0] if gtin else None

        return NewListing(
            item_id=item_id,
            title=summary.get("title"),
            url=summary.get("itemWebUrl"),
            price=price,
            currency=price_info.get("currency"),
            gtin=gtin,
            mpn=summary.get("mpn"),
            brand=summary.get("brand"),
            condition_id=_int(summary.get("conditionId")),
            free_shipping=free_shipping,
        )

    def _passes_filters(self, summary: dict, listing: NewListing) -> bool:
        if ACCESSORY_PATTERN.search(listing.title or ""):
            return False

        seller = summary.get("seller") or {}
        feedback_percent = float(_decimal(seller.get("feedbackPercentage")) or 0)
        feedback_score = _int(seller.get("feedbackScore")) or 0
        if feedback_percent < self.min_feedback_percent or feedback_score < self.min_feedback_score:
            return False
        if self.require_top_rated and not summary.get("topRatedBuyingExperience"):
            return False
        return True

    async def get_by_url(self, product_url: str) -> Optional[StoreProductData]:
        item_id = extract_item_id(product_url)
        if item_id is None:
            logger.debug(f"No eBay item id in {product_url}")
            return None

        try:
            response = await self._client.get(
                f"{self.base_url}/buy/browse/v1/item/get_item_by_legacy_id",
                params={"legacy_item_id": item_id},
                headers=await self._headers(),
            )
        except (httpx.HTTPError, StoreClientError) as e:
            logger.warning(f"eBay item lookup failed for {item_id}: {e}")
            return None

        if response.status_code == 404:
            return StoreProductData(price=None, currency="USD", in_stock=False, sold=None, discontinued=True)
        if response.status_code != 200:
            logger.warning(f"eBay item lookup for {item_id} returned HTTP {response.status_code}")
            return None

        item = response.json()
        price_info = item.get("price") or {}
        in_stock = None
        sold = None
        availabilities = item.get("estimatedAvailabilities") or []
        if availabilities:
            status = (availabilities[0].get("estimatedAvailabilityStatus") or "").upper()
            if status in IN_STOCK_STATUSES:
                in_stock = True
            elif status == "OUT_OF_STOCK":
                in_stock = False
                if (_int(availabilities[0].get("estimatedSoldQuantity")) or 0) > 0:
                    sold = True

        return StoreProductData(
            price=_decimal(price_info.get("value")),
            currency=price_info.get("currency") or "USD",
            in_stock=in_stock,
            sold=sold,
            discontinued=False,
        )

    async def close(self):
        await self._client.aclose()
        await self.auth.close()
