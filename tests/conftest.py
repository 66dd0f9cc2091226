"""Shared fixtures: in-memory SQLite database and test settings."""

from datetime import datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pricecompare.config import Settings
from pricecompare.db.models import (
    Base,
    Category,
    Country,
    Price,
    Product,
    Retailer,
    RetailerCountry,
)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        run_lock_backend="local",
        orchestrator_inter_task_delay_seconds=0,
        orchestrator_task_timeout_seconds=30,
        scheduler_enabled=False,
        discovery_feed_path="",
        discovery_feed_url="",
        backfill_window_days=60,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def catalog(session_factory) -> dict:
    """
    Reference data: US and UK (plus an inactive FR), a category, and
    retailers Alpha/Beta (US), Gamma (UK) and Closed (US, inactive).
    """
    async with session_factory() as db:
        db.add_all([
            Country(code="US", name="United States", currency="USD", currency_symbol="$"),
            Country(code="UK", name="United Kingdom", currency="GBP", currency_symbol="£"),
            Country(code="FR", name="France", currency="EUR", is_active=False),
        ])
        category = Category(name="Laptops", slug="laptops")
        alpha = Retailer(name="Alpha", website_url="https://alpha.example")
        beta = Retailer(name="Beta", website_url="https://beta.example")
        gamma = Retailer(name="Gamma", website_url="https://gamma.example")
        closed = Retailer(name="Closed", is_active=False)
        db.add_all([category, alpha, beta, gamma, closed])
        await db.flush()

        db.add_all([
            RetailerCountry(retailer_id=alpha.id, country_code="US", is_primary=True),
            RetailerCountry(retailer_id=beta.id, country_code="US", is_primary=True),
            RetailerCountry(retailer_id=gamma.id, country_code="UK", is_primary=True),
            RetailerCountry(retailer_id=closed.id, country_code="US", is_primary=True),
        ])
        await db.commit()

        return {
            "category_id": category.id,
            "alpha": alpha.id,
            "beta": beta.id,
            "gamma": gamma.id,
            "closed": closed.id,
        }


@pytest.fixture
def make_product(session_factory):
    async def _make(name: str, brand: str = "Acme", **fields) -> int:
        async with session_factory() as db:
            product = Product(name=name, brand=brand, **fields)
            db.add(product)
            await db.commit()
            return product.id

    return _make


@pytest.fixture
def make_price(session_factory):
    async def _make(
        product_id: int,
        retailer_id: int,
        price: str,
        availability: str = "in_stock",
        currency: str = "USD",
        last_checked: datetime | None = None,
    ) -> None:
        async with session_factory() as db:
            db.add(
                Price(
                    product_id=product_id,
                    retailer_id=retailer_id,
                    price=Decimal(price),
                    currency=currency,
                    availability=availability,
                    last_checked=last_checked or datetime.utcnow(),
                )
            )
            await db.commit()

    return _make
