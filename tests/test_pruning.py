"""Tests for price history retention pruning."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from pricecompare.db.models import PriceHistory
from pricecompare.history.pruning import prune_price_history

NOW = datetime(2026, 10, 1, 12, 0)


async def _add_history(session_factory, product_id: int, retailer_id: int, ages_in_days: list[int]):
    async with session_factory() as db:
        db.add_all([
            PriceHistory(
                product_id=product_id,
                retailer_id=retailer_id,
                price=Decimal("10.00") + age,
                recorded_at=NOW - timedelta(days=age),
            )
            for age in ages_in_days
        ])
        await db.commit()


@pytest.mark.asyncio
async def test_prunes_only_rows_past_retention(session_factory, test_settings, catalog, make_product):
    product_id = await make_product("Kindle")
    await _add_history(session_factory, product_id, catalog["alpha"], [1, 100, 364, 366, 400, 900])

    stats = await prune_price_history(session_factory, test_settings, retention_days=365, now=NOW)

    assert stats["history_pruned"] == 3
    assert stats["errors"] == 0
    assert stats["retention_days"] == 365
    async with session_factory() as db:
        remaining = (await db.execute(select(PriceHistory.recorded_at))).scalars().all()
    assert sorted(NOW - r for r in remaining) == [
        timedelta(days=1), timedelta(days=100), timedelta(days=364)
    ]


@pytest.mark.asyncio
async def test_prunes_in_chunks(session_factory, test_settings, catalog, make_product):
    product_id = await make_product("Kindle")
    await _add_history(session_factory, product_id, catalog["alpha"], [400, 401, 402, 403, 404, 10])
    chunked = test_settings.model_copy(update={"history_prune_batch_size": 2})

    stats = await prune_price_history(session_factory, chunked, retention_days=30, now=NOW)

    assert stats["history_pruned"] == 5
    async with session_factory() as db:
        remaining = (await db.execute(select(PriceHistory))).scalars().all()
    assert len(remaining) == 1


@pytest.mark.asyncio
async def test_nothing_to_prune(session_factory, test_settings, catalog):
    stats = await prune_price_history(session_factory, test_settings, now=NOW)

    assert stats["history_pruned"] == 0
    assert stats["cutoff"] == (NOW - timedelta(days=test_settings.history_retention_days)).isoformat()
