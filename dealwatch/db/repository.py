"""SQLAlchemy-backed deal repository."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from dealwatch.db.base import (
    DealRepository,
    DealStatus,
    NewDealListing,
    Product,
    Store,
    TrackedDeal,
)
from dealwatch.db.models import DealModel, DealPriceHistory, ProductModel, StopWord, StoreModel

logger = logging.getLogger(__name__)

REFRESHABLE_STATUSES = (DealStatus.ACTIVE.value, DealStatus.OUT_OF_STOCK.value)


def _to_store(row: StoreModel) -> Store:
    selectors: list[str] = []
    config = row.scrape_config or {}
    raw = config.get("price_selectors") if isinstance(config, dict) else None
    if isinstance(raw, list):
        seen = set()
        for s in raw:
            if isinstance(s, str) and s.strip() and s not in seen:
                seen.add(s)
                selectors.append(s)
    return Store(
        id=row.id,
        name=row.name,
        store_type=row.store_type,
        api_enabled=row.api_enabled,
        scrape_enabled=row.scrape_enabled,
        price_selectors=selectors,
    )


def _to_product(row: ProductModel) -> Product:
    return Product(
        id=row.id,
        name=row.name,
        msrp=row.msrp,
        preferred_condition_id=row.preferred_condition_id,
        active=row.active,
        best_deal_id=row.best_deal_id,
    )


def _to_deal(row: DealModel) -> TrackedDeal:
    return TrackedDeal(
        id=row.id,
        url=row.url,
        price=row.price,
        currency=row.currency,
        in_stock=row.in_stock,
        sold=row.sold,
        status=DealStatus(row.status),
        expires_at=row.expires_at,
        store_id=row.store_id,
        product_id=row.product_id,
        store_item_id=row.store_item_id,
        price_selectors=[s for s in (row.price_selectors or []) if isinstance(s, str) and s.strip()],
        title=row.title,
        discount_percent=row.discount_percent,
        error_count=row.error_count,
        last_checked_at=row.last_checked_at,
        next_check_at=row.next_check_at,
        updated_at=row.updated_at,
    )


class SqlAlchemyDealRepository(DealRepository):
    """Deal repository over an async SQLAlchemy session factory.

    Each call runs in its own short session so concurrent refreshes never
    share a session.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_due_deals(self, batch_size: int, now: datetime) -> list[TrackedDeal]:
        async with self._session_factory() as db:
            query = (
                select(DealModel)
                .where(DealModel.status.in_(REFRESHABLE_STATUSES))
                .where(or_(DealModel.next_check_at.is_(None), DealModel.next_check_at <= now))
                .order_by(DealModel.next_check_at.asc().nulls_first(), DealModel.id)
                .limit(batch_size)
            )
            result = await db.execute(query)
            return [_to_deal(row) for row in result.scalars().all()]

    async def get_deal_by_id(self, deal_id: int) -> Optional[TrackedDeal]:
        async with self._session_factory() as db:
            row = await db.get(DealModel, deal_id)
            return _to_deal(row) if row else None

    async def get_store_by_id(self, store_id: int) -> Optional[Store]:
        async with self._session_factory() as db:
            row = await db.get(StoreModel, store_id)
            return _to_store(row) if row else None

    async def get_store_by_type(self, store_type: str) -> Optional[Store]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(StoreModel).where(StoreModel.store_type == store_type).limit(1)
            )
            row = result.scalars().first()
            return _to_store(row) if row else None

    async def get_active_products(self) -> list[Product]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ProductModel).where(ProductModel.active.is_(True)).order_by(ProductModel.id)
            )
            return [_to_product(row) for row in result.scalars().all()]

    async def get_product_by_id(self, product_id: int) -> Optional[Product]:
        async with self._session_factory() as db:
            row = await db.get(ProductModel, product_id)
            return _to_product(row) if row else None

    async def get_expired_active_deals(self, now: datetime) -> list[TrackedDeal]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(DealModel)
                .where(DealModel.status.in_(REFRESHABLE_STATUSES))
                .where(DealModel.expires_at.is_not(None))
                .where(DealModel.expires_at < now)
                .order_by(DealModel.id)
            )
            return [_to_deal(row) for row in result.scalars().all()]

    async def expire_deal(self, deal_id: int, now: datetime) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(DealModel)
                .where(DealModel.id == deal_id)
                .values(status=DealStatus.EXPIRED.value, updated_at=now)
            )
            await db.commit()

    async def update_deal(self, deal: TrackedDeal, price_changed_at: Optional[datetime] = None) -> None:
        async with self._session_factory() as db:
            if price_changed_at is not None and deal.price is not None:
                db.add(DealPriceHistory(
                    deal_id=deal.id,
                    price=deal.price,
                    currency=deal.currency,
                    changed_at=price_changed_at,
                ))
            await db.execute(
                update(DealModel)
                .where(DealModel.id == deal.id)
                .values(
                    price=deal.price,
                    currency=deal.currency,
                    in_stock=deal.in_stock,
                    sold=deal.sold,
                    status=deal.status.value,
                    error_count=deal.error_count,
                    last_checked_at=deal.last_checked_at,
                    next_check_at=deal.next_check_at,
                    updated_at=deal.updated_at,
                )
            )
            await db.commit()

    async def record_check_error(self, deal_id: int, next_check_at: datetime) -> int:
        async with self._session_factory() as db:
            row = await db.get(DealModel, deal_id)
            if row is None:
                return 0
            row.error_count = (row.error_count or 0) + 1
            row.next_check_at = next_check_at
            await db.commit()
            return row.error_count

    async def mark_stale(self, deal_id: int) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(DealModel)
                .where(DealModel.id == deal_id)
                .values(status=DealStatus.STALE.value)
            )
            await db.commit()

    async def exists_listing(
        self,
        store_item_id: Optional[str] = None,
        url: Optional[str] = None,
    ) -> bool:
        conditions = []
        if store_item_id:
            conditions.append(DealModel.store_item_id == store_item_id)
        if url:
            conditions.append(DealModel.url == url)
        if not conditions:
            return False
        async with self._session_factory() as db:
            result = await db.execute(select(DealModel.id).where(or_(*conditions)).limit(1))
            return result.first() is not None

    async def create_listing(self, listing: NewDealListing, created_at: datetime) -> TrackedDeal:
        async with self._session_factory() as db:
            row = DealModel(
                product_id=listing.product_id,
                store_id=listing.store_id,
                url=listing.url,
                store_item_id=listing.store_item_id,
                title=listing.title,
                price=listing.price,
                currency=listing.currency,
                condition_id=listing.condition_id,
                free_shipping=listing.free_shipping,
                discount_percent=listing.discount_percent,
                status=DealStatus.ACTIVE.value,
                error_count=0,
                created_at=created_at,
                next_check_at=listing.next_check_at,
            )
            db.add(row)
            await db.commit()
            await db.refresh(row)
            logger.debug(f"Created deal {row.id} for product {listing.product_id}")
            return _to_deal(row)

    async def update_product_best_deal(self, product_id: int) -> Optional[int]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(DealModel.id)
                .where(DealModel.product_id == product_id)
                .where(DealModel.status == DealStatus.ACTIVE.value)
                .where(DealModel.price > 0)
                .order_by(DealModel.price.asc(), DealModel.id)
                .limit(1)
            )
            best_deal_id = result.scalars().first()
            await db.execute(
                update(ProductModel)
                .where(ProductModel.id == product_id)
                .values(best_deal_id=best_deal_id)
            )
            await db.commit()
            return best_deal_id

    async def get_stop_words(self) -> list[str]:
        async with self._session_factory() as db:
            result = await db.execute(select(StopWord.name).where(StopWord.active.is_(True)))
            seen = {}
            for name in result.scalars().all():
                if name and name.strip():
                    seen.setdefault(name.lower(), name)
            return list(seen.values())
