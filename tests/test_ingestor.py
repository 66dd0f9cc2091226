"""Tests for price ingestion with archive-before-overwrite."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from pricecompare.db.models import (
    Price,
    PriceHistory,
    Product,
    ProductDiscoveryLog,
    Retailer,
    RetailerCountry,
)
from pricecompare.ingest.ingestor import PriceIngestor


def _observation(price: str, **overrides) -> dict:
    observation = {
        "name": "ZenBook 14",
        "brand": "ASUS",
        "category": "laptops",
        "retailer": "Alpha",
        "country": "US",
        "price": price,
        "currency": "usd",
        "url": "https://alpha.example/zenbook-14",
        "availability": "in_stock",
    }
    observation.update(overrides)
    return observation


@pytest.mark.asyncio
async def test_first_observation_creates_product_and_price(session_factory, test_settings, catalog):
    ingestor = PriceIngestor(session_factory, test_settings)

    result = await ingestor.ingest([_observation("999.99")])

    assert result.products_created == 1
    assert result.prices_updated == 1
    assert result.history_archived == 0
    assert result.failed == 0

    async with session_factory() as db:
        product = (await db.execute(select(Product))).scalar_one()
        assert product.category_id == catalog["category_id"]

        price = (await db.execute(select(Price))).scalar_one()
        assert price.price == Decimal("999.99")
        assert price.currency == "USD"
        assert price.retailer_id == catalog["alpha"]

        assert (await db.execute(select(PriceHistory))).scalars().all() == []

        log = (await db.execute(select(ProductDiscoveryLog))).scalar_one()
        assert log.product_id == product.id
        assert log.source == test_settings.discovery_source_name


@pytest.mark.asyncio
async def test_price_change_archives_previous_value(session_factory, test_settings, catalog):
    ingestor = PriceIngestor(session_factory, test_settings)
    await ingestor.ingest([_observation("60.00")])

    async with session_factory() as db:
        first_checked = (await db.execute(select(Price))).scalar_one().last_checked

    result = await ingestor.ingest([_observation("50.00")])

    assert result.history_archived == 1
    async with session_factory() as db:
        price = (await db.execute(select(Price))).scalar_one()
        assert price.price == Decimal("50.00")
        assert price.last_checked >= first_checked

        history = (await db.execute(select(PriceHistory))).scalars().all()
        assert len(history) == 1
        assert history[0].price == Decimal("60.00")
        assert history[0].recorded_at == first_checked
        assert history[0].source == "ingestion"
        assert history[0].price_change_percent is None


@pytest.mark.asyncio
async def test_change_percent_relative_to_previous_point(session_factory, test_settings, catalog):
    ingestor = PriceIngestor(session_factory, test_settings)
    for price in ("60.00", "50.00", "55.00"):
        await ingestor.ingest([_observation(price)])

    async with session_factory() as db:
        history = (
            await db.execute(select(PriceHistory).order_by(PriceHistory.id))
        ).scalars().all()

    assert [h.price for h in history] == [Decimal("60.00"), Decimal("50.00")]
    assert history[1].price_change_percent == pytest.approx(-16.67, abs=0.01)
    assert history[0].recorded_at <= history[1].recorded_at


@pytest.mark.asyncio
async def test_archive_never_goes_back_in_time(session_factory, test_settings, catalog, make_product, make_price):
    product_id = await make_product("ZenBook 14", brand="ASUS")
    stale = datetime.utcnow() - timedelta(days=10)
    await make_price(product_id, catalog["alpha"], "70.00", last_checked=stale)
    async with session_factory() as db:
        db.add(
            PriceHistory(
                product_id=product_id,
                retailer_id=catalog["alpha"],
                price=Decimal("80.00"),
                recorded_at=stale + timedelta(days=5),
                source="backfill",
            )
        )
        await db.commit()

    await PriceIngestor(session_factory, test_settings).ingest([_observation("65.00")])

    async with session_factory() as db:
        latest = (
            await db.execute(select(PriceHistory).order_by(PriceHistory.id.desc()).limit(1))
        ).scalar_one()
    assert latest.price == Decimal("70.00")
    assert latest.recorded_at == stale + timedelta(days=5)
    assert latest.price_change_percent == pytest.approx(-12.5)


@pytest.mark.asyncio
async def test_invalid_observation_is_recorded_and_batch_continues(session_factory, test_settings, catalog):
    ingestor = PriceIngestor(session_factory, test_settings)

    result = await ingestor.ingest([
        _observation("-5"),
        _observation("10.00", availability="sold out soon"),
        _observation("20.00", name="Surface Laptop", brand="Microsoft"),
    ])

    assert result.observations == 3
    assert result.failed == 2
    assert result.prices_updated == 1
    assert all(f.key for f in result.failures)
    assert result.to_dict()["failed"] == 2


@pytest.mark.asyncio
async def test_new_retailer_is_created_and_linked(session_factory, test_settings, catalog):
    ingestor = PriceIngestor(session_factory, test_settings)

    result = await ingestor.ingest([
        _observation("10.00", retailer="Delta", url="https://delta.example/p/1", country="UK"),
    ])

    assert result.retailers_created == 1
    async with session_factory() as db:
        delta = (await db.execute(select(Retailer).where(Retailer.name == "Delta"))).scalar_one()
        assert delta.website_url == "https://delta.example"
        link = (
            await db.execute(select(RetailerCountry).where(RetailerCountry.retailer_id == delta.id))
        ).scalar_one()
        assert link.country_code == "UK"
        assert link.is_primary is True


@pytest.mark.asyncio
async def test_unknown_country_still_stores_price(session_factory, test_settings, catalog):
    result = await PriceIngestor(session_factory, test_settings).ingest([
        _observation("10.00", country="ZZ"),
    ])

    assert result.failed == 0
    async with session_factory() as db:
        links = (
            await db.execute(
                select(RetailerCountry).where(RetailerCountry.country_code == "ZZ")
            )
        ).scalars().all()
        assert links == []
        assert (await db.execute(select(Price))).scalar_one().price == Decimal("10.00")


@pytest.mark.asyncio
async def test_existing_product_descriptive_fields_refresh(session_factory, test_settings, catalog):
    ingestor = PriceIngestor(session_factory, test_settings)
    await ingestor.ingest([_observation("10.00", specifications={"ram": "16GB"})])
    await ingestor.ingest([
        _observation(
            "11.00",
            retailer="Beta",
            description="Thin and light",
            specifications={"storage": "1TB"},
        )
    ])

    async with session_factory() as db:
        products = (await db.execute(select(Product))).scalars().all()
        prices = (await db.execute(select(Price))).scalars().all()

    assert len(products) == 1
    assert products[0].description == "Thin and light"
    assert products[0].specifications == {"ram": "16GB", "storage": "1TB"}
    assert len(prices) == 2
