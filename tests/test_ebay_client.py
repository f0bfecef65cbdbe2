"""Tests for the eBay Browse API client."""

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from dealwatch.stores.base import StoreClientError
from dealwatch.stores.ebay import EbayAuthService, EbayStoreClient, extract_item_id
from tests.conftest import NOW

BASE = "https://api.ebay.test"


def summary(item_id, title, price, feedback="99.5", score=1200, shipping="FREE", **extra):
    data = {
        "itemId": f"v1|{item_id}|0",
        "title": title,
        "itemWebUrl": f"https://www.ebay.com/itm/{item_id}",
        "price": {"value": price, "currency": "USD"},
        "conditionId": "1000",
        "shippingOptions": [{"shippingCostType": shipping}],
        "seller": {"username": "seller", "feedbackPercentage": feedback, "feedbackScore": score},
    }
    data.update(extra)
    return data


class FakeEbay:
    """Routes token, search and item requests; records what it saw."""

    def __init__(self, summaries=None, items=None, search_status=200):
        self.summaries = summaries or []
        self.items = items or {}
        self.search_status = search_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/identity/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok-123", "expires_in": 7200})
        if path == "/buy/browse/v1/item_summary/search":
            if self.search_status != 200:
                return httpx.Response(self.search_status, json={"errors": []})
            return httpx.Response(200, json={"itemSummaries": self.summaries})
        if path == "/buy/browse/v1/item/get_item_by_legacy_id":
            item = self.items.get(request.url.params.get("legacy_item_id"))
            if item is None:
                return httpx.Response(404, json={"errors": []})
            return httpx.Response(200, json=item)
        return httpx.Response(500)

    def count(self, path):
        return sum(1 for r in self.requests if r.url.path == path)


class Clock:
    def __init__(self):
        self.now = NOW

    def __call__(self):
        return self.now


def make_client(fake, clock=None, client_id="id", **kwargs):
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    auth = EbayAuthService(
        client_id=client_id,
        client_secret="secret",
        base_url=BASE,
        client=http,
        clock=clock or Clock(),
    )
    return EbayStoreClient(
        auth,
        client=http,
        base_url=BASE,
        marketplace_id="EBAY_US",
        min_feedback_percent=98.0,
        min_feedback_score=500,
        require_top_rated=kwargs.pop("require_top_rated", False),
    )


def test_extract_item_id():
    assert extract_item_id("https://www.ebay.com/itm/123456789012") == "123456789012"
    assert extract_item_id("https://www.ebay.com/itm/Sony-PS5/123456789012?hash=abc") == "123456789012"
    assert extract_item_id("https://www.ebay.com/sch/i.html?_nkw=ps5") is None
    assert extract_item_id("") is None


@pytest.mark.asyncio
async def test_token_is_cached_until_near_expiry():
    fake = FakeEbay()
    clock = Clock()
    client = make_client(fake, clock=clock)

    assert await client.auth.get_access_token() == "tok-123"
    clock.now = NOW + timedelta(minutes=60)
    assert await client.auth.get_access_token() == "tok-123"
    assert fake.count("/identity/v1/oauth2/token") == 1

    # Within five minutes of the two-hour expiry
    clock.now = NOW + timedelta(minutes=116)
    await client.auth.get_access_token()
    assert fake.count("/identity/v1/oauth2/token") == 2

    token_request = fake.requests[0]
    assert token_request.method == "POST"
    assert token_request.headers["authorization"].startswith("Basic ")
    assert b"grant_type=client_credentials" in token_request.content


@pytest.mark.asyncio
async def test_search_without_credentials_raises():
    fake = FakeEbay()
    client = make_client(fake, client_id="")

    with pytest.raises(StoreClientError):
        await client.search_new_listings("ps5", 5)
    assert fake.requests == []


@pytest.mark.asyncio
async def test_search_filters_and_sorts():
    fake = FakeEbay(summaries=[
        summary("111", "Sony PlayStation 5 Console", "479.99"),
        summary("222", "PS5 Console Cover Case", "19.99"),
        summary("333", "Sony PlayStation 5 Console Slim", "449.00", feedback="91.0"),
        summary("444", "Sony PlayStation 5 Console Disc", "459.00", score=12),
        summary("555", "Sony PlayStation 5 Console Bundle", "429.00", shipping="CALCULATED"),
        summary("666", "Sony PlayStation 5", "499.00"),
    ])
    client = make_client(fake)

    listings = await client.search_new_listings("Sony PlayStation 5", 2, condition_id=1000)

    assert [l.item_id for l in listings] == ["v1|555|0", "v1|111|0"]
    assert listings[0].price == Decimal("429.00")
    assert listings[0].free_shipping is False
    assert listings[1].free_shipping is True
    assert listings[1].condition_id == 1000
    assert listings[1].url == "https://www.ebay.com/itm/111"

    search = next(r for r in fake.requests if r.url.path.endswith("/search"))
    assert search.headers["authorization"] == "Bearer tok-123"
    assert search.headers["x-ebay-c-marketplace-id"] == "EBAY_US"
    assert search.url.params["q"] == "Sony PlayStation 5"
    assert "buyingOptions:{FIXED_PRICE}" in search.url.params["filter"]
    assert "conditionIds:{1000}" in search.url.params["filter"]


@pytest.mark.asyncio
async def test_search_requires_top_rated_when_configured():
    fake = FakeEbay(summaries=[
        summary("111", "Sony PlayStation 5 Console", "479.99", topRatedBuyingExperience=True),
        summary("222", "Sony PlayStation 5 Console", "469.99"),
    ])
    client = make_client(fake, require_top_rated=True)

    listings = await client.search_new_listings("ps5", 5)

    assert [l.item_id for l in listings] == ["v1|111|0"]


@pytest.mark.asyncio
async def test_search_http_error_raises():
    client = make_client(FakeEbay(search_status=503))

    with pytest.raises(StoreClientError):
        await client.search_new_listings("ps5", 5)


@pytest.mark.asyncio
async def test_get_by_url_maps_availability():
    fake = FakeEbay(items={
        "123456789012": {
            "price": {"value": "399.99", "currency": "USD"},
            "estimatedAvailabilities": [{"estimatedAvailabilityStatus": "IN_STOCK"}],
        },
        "210987654321": {
            "price": {"value": "350.00", "currency": "USD"},
            "estimatedAvailabilities": [
                {"estimatedAvailabilityStatus": "OUT_OF_STOCK", "estimatedSoldQuantity": 1}
            ],
        },
    })
    client = make_client(fake)

    live = await client.get_by_url("https://www.ebay.com/itm/123456789012")
    sold = await client.get_by_url("https://www.ebay.com/itm/Listing-Title/210987654321")
    gone = await client.get_by_url("https://www.ebay.com/itm/999999999999")

    assert live.price == Decimal("399.99")
    assert live.in_stock is True
    assert live.sold is None
    assert sold.in_stock is False
    assert sold.sold is True
    assert gone.discontinued is True
    assert gone.price is None


@pytest.mark.asyncio
async def test_get_by_url_without_item_id():
    fake = FakeEbay()
    client = make_client(fake)

    assert await client.get_by_url("https://www.ebay.com/str/someshop") is None
    assert fake.requests == []


@pytest.mark.asyncio
async def test_get_by_url_token_failure_returns_none():
    fake = FakeEbay()
    client = make_client(fake, client_id="")

    assert await client.get_by_url("https://www.ebay.com/itm/123456789012") is None

