"""Tests for featured deal aggregation."""

from decimal import Decimal

import pytest
from sqlalchemy import select

from pricecompare.db.models import GLOBAL_SCOPE, FeaturedDeal
from pricecompare.deals.engine import DealAggregationEngine


async def _deals(session_factory, scope: str) -> list[FeaturedDeal]:
    async with session_factory() as db:
        result = await db.execute(
            select(FeaturedDeal).where(FeaturedDeal.scope == scope).order_by(FeaturedDeal.deal_rank)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_global_deals_span_countries(session_factory, test_settings, catalog, make_product, make_price):
    laptop = await make_product("ZenBook 14")
    await make_price(laptop, catalog["alpha"], "100.00")
    await make_price(laptop, catalog["gamma"], "150.00", currency="GBP")

    ranked = await DealAggregationEngine(session_factory, test_settings).compute_deals(GLOBAL_SCOPE)

    assert [d.candidate.product_id for d in ranked] == [laptop]
    stored = await _deals(session_factory, GLOBAL_SCOPE)
    assert len(stored) == 1
    assert stored[0].deal_rank == 1
    assert stored[0].savings_amount == Decimal("50.00")
    assert stored[0].savings_percentage == pytest.approx(33.33)
    assert stored[0].lowest_price == Decimal("100.00")
    assert stored[0].highest_price == Decimal("150.00")
    assert stored[0].currency == "USD"
    assert stored[0].expires_at > stored[0].created_at


@pytest.mark.asyncio
async def test_unavailable_offers_are_ignored(session_factory, test_settings, catalog, make_product, make_price):
    phone = await make_product("Pixel 9")
    await make_price(phone, catalog["alpha"], "500.00")
    await make_price(phone, catalog["beta"], "900.00", availability="out_of_stock")
    await make_price(phone, catalog["closed"], "800.00")

    ranked = await DealAggregationEngine(session_factory, test_settings).compute_deals(GLOBAL_SCOPE)

    assert ranked == []


@pytest.mark.asyncio
async def test_limited_stock_counts_as_available(session_factory, test_settings, catalog, make_product, make_price):
    phone = await make_product("Pixel 9")
    await make_price(phone, catalog["alpha"], "500.00")
    await make_price(phone, catalog["beta"], "700.00", availability="limited_stock")

    ranked = await DealAggregationEngine(session_factory, test_settings).compute_deals("US")

    assert [d.candidate.product_id for d in ranked] == [phone]


@pytest.mark.asyncio
async def test_country_scope_uses_its_retailers_and_threshold(
    session_factory, test_settings, catalog, make_product, make_price
):
    modest = await make_product("Kindle")
    await make_price(modest, catalog["alpha"], "88.00")
    await make_price(modest, catalog["beta"], "100.00")
    engine = DealAggregationEngine(session_factory, test_settings)

    # 12% clears the global threshold but not the country one
    assert len(await engine.compute_deals(GLOBAL_SCOPE)) == 1
    assert await engine.compute_deals("US") == []
    # UK has a single retailer, so no spread
    assert await engine.compute_deals("UK") == []


@pytest.mark.asyncio
async def test_replacement_only_touches_its_scope(
    session_factory, test_settings, catalog, make_product, make_price
):
    tablet = await make_product("iPad Air")
    await make_price(tablet, catalog["alpha"], "400.00")
    await make_price(tablet, catalog["beta"], "600.00")
    engine = DealAggregationEngine(session_factory, test_settings)

    await engine.compute_deals(GLOBAL_SCOPE)
    await engine.compute_deals("US")
    assert len(await _deals(session_factory, "US")) == 1

    # Threshold nothing can reach empties the US scope only
    assert await engine.compute_deals("US", min_savings_pct=99) == []
    assert await _deals(session_factory, "US") == []
    assert len(await _deals(session_factory, GLOBAL_SCOPE)) == 1


@pytest.mark.asyncio
async def test_top_n_limits_stored_deals(session_factory, test_settings, catalog, make_product, make_price):
    for i in range(5):
        product_id = await make_product(f"Monitor {i}")
        await make_price(product_id, catalog["alpha"], "100.00")
        await make_price(product_id, catalog["beta"], str(150 + i * 20))

    ranked = await DealAggregationEngine(session_factory, test_settings).compute_deals(GLOBAL_SCOPE, top_n=3)

    stored = await _deals(session_factory, GLOBAL_SCOPE)
    assert [d.deal_rank for d in stored] == [1, 2, 3]
    assert [d.product_id for d in stored] == [d.candidate.product_id for d in ranked]
    assert stored[0].savings_percentage > stored[-1].savings_percentage


@pytest.mark.asyncio
async def test_update_all_scopes_covers_active_countries(
    session_factory, test_settings, catalog, make_product, make_price
):
    tablet = await make_product("iPad Air")
    await make_price(tablet, catalog["alpha"], "400.00")
    await make_price(tablet, catalog["beta"], "600.00")

    stats = await DealAggregationEngine(session_factory, test_settings).update_all_scopes()

    assert stats["scopes"] == {GLOBAL_SCOPE: 1, "UK": 0, "US": 1}
    assert stats["deals_stored"] == 2
    assert stats["errors"] == 0
    assert "FR" not in stats["scopes"]
