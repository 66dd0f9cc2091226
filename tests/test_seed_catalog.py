"""Tests for the reference data seeding script."""

import json

import pytest
from sqlalchemy import select

from pricecompare.db.models import Country, RetailerCountry
from scripts.seed_catalog import SEED_FILE, seed_catalog

SEED = {
    "countries": [
        {"code": "us", "name": "United States", "currency": "USD"},
        {"code": "DE", "name": "Germany", "currency": "EUR", "is_active": False},
    ],
    "categories": [{"name": "Tablets", "slug": "tablets"}],
    "retailers": [
        {"name": "Mega", "website_url": "https://mega.example", "countries": ["US", "DE", "ZZ"]},
    ],
}


@pytest.mark.asyncio
async def test_seed_is_idempotent(session_factory):
    first = await seed_catalog(SEED, session_factory=session_factory)
    second = await seed_catalog(SEED, session_factory=session_factory)

    assert first == {"countries": 2, "categories": 1, "retailers": 1, "links": 2, "skipped": 0}
    assert second == {"countries": 0, "categories": 0, "retailers": 0, "links": 0, "skipped": 4}

    async with session_factory() as db:
        links = (
            await db.execute(select(RetailerCountry).order_by(RetailerCountry.id))
        ).scalars().all()
        germany = await db.get(Country, "DE")

    assert [(link.country_code, link.is_primary) for link in links] == [("US", True), ("DE", False)]
    assert germany.is_active is False


def test_bundled_seed_file_is_valid():
    data = json.loads(SEED_FILE.read_text(encoding="utf-8"))
    codes = {country["code"] for country in data["countries"]}

    assert {"US", "UK"} <= codes
    assert all(set(r["countries"]) <= codes for r in data["retailers"])
