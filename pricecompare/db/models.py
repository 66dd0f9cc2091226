"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

AVAILABILITY_STATES = ("in_stock", "limited_stock", "out_of_stock")
AVAILABLE_STATES = ("in_stock", "limited_stock")

RUN_STATUSES = ("running", "completed", "completed_with_errors", "failed")
TERMINAL_RUN_STATUSES = ("completed", "completed_with_errors", "failed")

GLOBAL_SCOPE = "global"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Category(Base):
    """Product category."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    products: Mapped[list["Product"]] = relationship("Product", back_populates="category")


class Country(Base):
    """Storefront country with its display currency."""

    __tablename__ = "countries"

    code: Mapped[str] = mapped_column(String(8), primary_key=True)  # ISO code, e.g. US
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="USD")
    currency_symbol: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    retailer_links: Mapped[list["RetailerCountry"]] = relationship(
        "RetailerCountry", back_populates="country", cascade="all, delete-orphan"
    )


class Retailer(Base):
    """Retailer selling products."""

    __tablename__ = "retailers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    website_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    logo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    prices: Mapped[list["Price"]] = relationship("Price", back_populates="retailer")
    country_links: Mapped[list["RetailerCountry"]] = relationship(
        "RetailerCountry", back_populates="retailer", cascade="all, delete-orphan"
    )


class RetailerCountry(Base):
    """Association of a retailer with a country storefront."""

    __tablename__ = "retailer_countries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    retailer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("retailers.id", ondelete="CASCADE"), nullable=False
    )
    country_code: Mapped[str] = mapped_column(
        String(8), ForeignKey("countries.code", ondelete="CASCADE"), nullable=False
    )
    website_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    retailer: Mapped["Retailer"] = relationship("Retailer", back_populates="country_links")
    country: Mapped["Country"] = relationship("Country", back_populates="retailer_links")

    __table_args__ = (
        UniqueConstraint("retailer_id", "country_code", name="uq_retailer_country"),
    )


class Product(Base):
    """Catalog product, identified by exact (name, brand)."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    brand: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    model: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    category_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Attributes vary by category, kept schemaless
    specifications: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    category: Mapped[Optional["Category"]] = relationship("Category", back_populates="products")
    prices: Mapped[list["Price"]] = relationship(
        "Price", back_populates="product", cascade="all, delete-orphan"
    )
    price_history: Mapped[list["PriceHistory"]] = relationship(
        "PriceHistory", back_populates="product", cascade="all, delete-orphan"
    )

    __table_args__ = (UniqueConstraint("name", "brand", name="uq_product_name_brand"),)


class Price(Base):
    """Current price of a product at a retailer (one row per pair)."""

    __tablename__ = "prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    retailer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("retailers.id", ondelete="CASCADE"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)
    product_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    availability: Mapped[str] = mapped_column(String(32), default="in_stock", nullable=False)
    last_checked: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    product: Mapped["Product"] = relationship("Product", back_populates="prices")
    retailer: Mapped["Retailer"] = relationship("Retailer", back_populates="prices")

    __table_args__ = (
        UniqueConstraint("product_id", "retailer_id", name="uq_price_product_retailer"),
        CheckConstraint("price > 0", name="ck_price_positive"),
    )


class PriceHistory(Base):
    """Time series of past prices per (product, retailer)."""

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    retailer_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("retailers.id", ondelete="CASCADE"), nullable=False
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="USD", nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    price_change_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    deal_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # 0-10
    is_deal: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    source: Mapped[str] = mapped_column(String(16), default="ingestion", nullable=False)

    product: Mapped["Product"] = relationship("Product", back_populates="price_history")

    __table_args__ = (
        Index("ix_price_history_series", "product_id", "retailer_id", "recorded_at"),
        Index("ix_price_history_recorded_at", "recorded_at"),
    )


class FeaturedDeal(Base):
    """Ranked cross-retailer deal, materialized per scope."""

    __tablename__ = "featured_deals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)  # "global" or country code
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    savings_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    savings_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    lowest_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    highest_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    deal_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    product: Mapped["Product"] = relationship("Product")

    __table_args__ = (
        UniqueConstraint("scope", "product_id", name="uq_featured_deal_scope_product"),
        UniqueConstraint("scope", "deal_rank", name="uq_featured_deal_scope_rank"),
    )


class SchedulerRun(Base):
    """One orchestrator run and its per-task outcome."""

    __tablename__ = "scheduler_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_type: Mapped[str] = mapped_column(String(32), nullable=False)  # 'scheduled' | 'manual'
    status: Mapped[str] = mapped_column(String(32), default="running", nullable=False)
    lock_run_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    execution_time_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tasks_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tasks_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    summary: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    error_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    __table_args__ = (Index("ix_scheduler_runs_started_at", "started_at"),)


class ProductDiscoveryLog(Base):
    """Provenance record written when ingestion creates a product."""

    __tablename__ = "product_discovery_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    country_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    initial_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    initial_retailer_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
