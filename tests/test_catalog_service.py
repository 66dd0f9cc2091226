"""Tests for catalog read queries."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from pricecompare.catalog.service import CatalogService
from pricecompare.db.models import Category, PriceHistory
from pricecompare.deals.engine import DealAggregationEngine

NOW = datetime(2026, 9, 15, 18, 0)


@pytest.fixture
def service(test_settings) -> CatalogService:
    return CatalogService(test_settings)


@pytest.mark.asyncio
async def test_search_is_restricted_to_country_retailers(
    db_session, service, catalog, make_product, make_price
):
    us_and_uk = await make_product("ZenBook 14", brand="ASUS", category_id=catalog["category_id"])
    uk_only = await make_product("ZenBook Duo", brand="ASUS")
    await make_price(us_and_uk, catalog["alpha"], "999.00")
    await make_price(us_and_uk, catalog["gamma"], "899.00", currency="GBP")
    await make_price(uk_only, catalog["gamma"], "1299.00", currency="GBP")

    us_results = await service.search_products(db_session, "zenbook", country_code="US")
    uk_results = await service.search_products(db_session, "zenbook", country_code="uk")

    assert [p["id"] for p in us_results] == [us_and_uk]
    assert [p["retailer_name"] for p in us_results[0]["prices"]] == ["Alpha"]
    assert us_results[0]["lowest_price"] == 999.0
    assert us_results[0]["category_name"] == "Laptops"
    assert [p["id"] for p in uk_results] == [us_and_uk, uk_only]


@pytest.mark.asyncio
async def test_search_matches_brand_and_description(db_session, service, catalog, make_product, make_price):
    kindle = await make_product("Paperwhite", brand="Amazon", description="Glare-free e-reader")
    await make_price(kindle, catalog["alpha"], "139.99")

    assert [p["id"] for p in await service.search_products(db_session, "AMAZON")] == [kindle]
    assert [p["id"] for p in await service.search_products(db_session, "e-reader")] == [kindle]
    assert await service.search_products(db_session, "tablet") == []


@pytest.mark.asyncio
async def test_search_filters_and_orders(db_session, service, catalog, make_product, make_price):
    db_session.add(Category(name="Phones", slug="phones"))
    await db_session.commit()
    laptop = await make_product("Yoga Slim", category_id=catalog["category_id"])
    other = await make_product("Aspire 5")
    await make_price(laptop, catalog["alpha"], "700.00")
    await make_price(laptop, catalog["beta"], "650.00")
    await make_price(other, catalog["beta"], "500.00")

    everything = await service.search_products(db_session)
    laptops = await service.search_products(db_session, category_id=catalog["category_id"])

    assert [p["name"] for p in everything] == ["Aspire 5", "Yoga Slim"]
    assert [p["id"] for p in laptops] == [laptop]
    assert [p["price"] for p in laptops[0]["prices"]] == [650.0, 700.0]


@pytest.mark.asyncio
async def test_search_excludes_inactive_retailers_and_unknown_countries(
    db_session, service, catalog, make_product, make_price
):
    product_id = await make_product("Echo Dot")
    await make_price(product_id, catalog["closed"], "49.00")

    assert await service.search_products(db_session, country_code="US") == []
    assert await service.search_products(db_session, country_code="FR") == []
    assert await service.search_products(db_session, country_code="ZZ") == []


@pytest.mark.asyncio
async def test_get_product(db_session, service, catalog, make_product, make_price):
    product_id = await make_product("Pixel 9", specifications={"ram": "12GB"})
    await make_price(product_id, catalog["beta"], "799.00")
    await make_price(product_id, catalog["gamma"], "699.00", currency="GBP")

    product = await service.get_product(db_session, product_id)

    assert product["specifications"] == {"ram": "12GB"}
    assert [p["retailer_name"] for p in product["prices"]] == ["Gamma", "Beta"]
    assert await service.get_product(db_session, 9999) is None


@pytest.mark.asyncio
async def test_price_history_grouped_by_day(db_session, service, catalog, make_product):
    product_id = await make_product("Pixel 9")
    day = datetime(2026, 9, 10)
    db_session.add_all([
        PriceHistory(product_id=product_id, retailer_id=catalog["alpha"], price=Decimal("100.00"),
                     recorded_at=day + timedelta(hours=1)),
        PriceHistory(product_id=product_id, retailer_id=catalog["alpha"], price=Decimal("90.00"),
                     recorded_at=day + timedelta(hours=20)),
        PriceHistory(product_id=product_id, retailer_id=catalog["beta"], price=Decimal("95.00"),
                     recorded_at=day + timedelta(hours=9)),
        PriceHistory(product_id=product_id, retailer_id=catalog["beta"], price=Decimal("80.00"),
                     recorded_at=day + timedelta(days=2)),
        # Other country and outside the window
        PriceHistory(product_id=product_id, retailer_id=catalog["gamma"], price=Decimal("10.00"),
                     recorded_at=day),
        PriceHistory(product_id=product_id, retailer_id=catalog["alpha"], price=Decimal("70.00"),
                     recorded_at=NOW - timedelta(days=31)),
    ])
    await db_session.commit()

    history = await service.get_price_history(db_session, product_id, "US", days=30, now=NOW)

    assert history == [
        {"date": "2026-09-10", "min_price": 90.0, "max_price": 100.0, "avg_price": 95.0, "retailer_count": 2},
        {"date": "2026-09-12", "min_price": 80.0, "max_price": 80.0, "avg_price": 80.0, "retailer_count": 1},
    ]
    assert await service.get_price_history(db_session, product_id, "US", days=1, now=NOW) == []
    assert await service.get_price_history(db_session, product_id, "FR", now=NOW) == []


@pytest.mark.asyncio
async def test_featured_deals_by_scope(
    db_session, session_factory, test_settings, service, catalog, make_product, make_price
):
    tablet = await make_product("iPad Air", brand="Apple")
    await make_price(tablet, catalog["alpha"], "400.00")
    await make_price(tablet, catalog["beta"], "600.00")
    await DealAggregationEngine(session_factory, test_settings).update_all_scopes()

    global_deals = await service.get_featured_deals(db_session)
    us_deals = await service.get_featured_deals(db_session, "us")

    assert [d["product_name"] for d in global_deals] == ["iPad Air"]
    assert global_deals[0]["rank"] == 1
    assert global_deals[0]["savings_amount"] == 200.0
    assert us_deals[0]["scope"] == "US"
    assert await service.get_featured_deals(db_session, "UK") == []


@pytest.mark.asyncio
async def test_countries_are_active_and_sorted(db_session, service, catalog):
    countries = await service.list_countries(db_session)

    assert [c.code for c in countries] == ["UK", "US"]
