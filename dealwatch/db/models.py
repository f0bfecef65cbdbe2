"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class StoreModel(Base):
    """Store with its scrape profile."""

    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    store_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    api_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    scrape_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # {"price_selectors": [...]}
    scrape_config: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)


class ProductModel(Base):
    """Catalog product."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    msrp: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    preferred_condition_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Lowest-priced active deal; kept current by the worker
    best_deal_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    deals: Mapped[list["DealModel"]] = relationship("DealModel", back_populates="product")


class DealModel(Base):
    """Tracked deal (offer URL bound to a product)."""

    __tablename__ = "deals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("products.id"), nullable=True
    )
    store_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("stores.id"), nullable=True
    )
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    store_item_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    in_stock: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    sold: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False, index=True)
    price_selectors: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    condition_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    free_shipping: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    discount_percent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    next_check_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    product: Mapped[Optional["ProductModel"]] = relationship("ProductModel", back_populates="deals")
    price_history: Mapped[list["DealPriceHistory"]] = relationship(
        "DealPriceHistory", back_populates="deal", cascade="all, delete-orphan"
    )


class DealPriceHistory(Base):
    """Price changes observed for a deal."""

    __tablename__ = "deal_price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    deal_id: Mapped[int] = mapped_column(Integer, ForeignKey("deals.id"), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    deal: Mapped["DealModel"] = relationship("DealModel", back_populates="price_history")


class StopWord(Base):
    """Words ignored when matching listing titles to product names."""

    __tablename__ = "stop_words"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
