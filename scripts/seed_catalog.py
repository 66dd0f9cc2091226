#!/usr/bin/env python3
"""
Catalog seeding script for reference data.

Loads countries, categories and retailers from catalog_seed.json.

Schema for catalog_seed.json:
- countries: [{code, name, currency, currency_symbol?, is_active?}]
- categories: [{name, slug, description?}]
- retailers: [{name, website_url?, logo_url?, countries: [code, ...]}]
  The first listed country becomes the retailer's primary storefront.

Existing rows (matched by country code, category slug, retailer name) are
skipped, so the script can be re-run safely.
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from pricecompare.db.models import Category, Country, Retailer
from pricecompare.db.repository import CatalogRepository
from pricecompare.db.session import AsyncSessionLocal

SEED_FILE = Path(__file__).parent.parent / "catalog_seed.json"


async def seed_catalog(data: dict, session_factory=AsyncSessionLocal) -> dict:
    """Insert missing reference rows and return per-table counts."""
    counts = {"countries": 0, "categories": 0, "retailers": 0, "links": 0, "skipped": 0}

    async with session_factory() as db:
        repo = CatalogRepository(db)

        for item in data.get("countries", []):
            code = item["code"].upper()
            if await repo.get_country(code):
                counts["skipped"] += 1
                continue
            db.add(Country(
                code=code,
                name=item["name"],
                currency=item.get("currency", "USD"),
                currency_symbol=item.get("currency_symbol"),
                is_active=item.get("is_active", True),
            ))
            print(f"  [ADD] country {code}")
            counts["countries"] += 1
        await db.flush()

        for item in data.get("categories", []):
            if await repo.get_category_by_slug(item["slug"]):
                counts["skipped"] += 1
                continue
            db.add(Category(
                name=item["name"],
                slug=item["slug"],
                description=item.get("description"),
            ))
            print(f"  [ADD] category {item['slug']}")
            counts["categories"] += 1

        for item in data.get("retailers", []):
            retailer = await repo.get_retailer_by_name(item["name"])
            if retailer is None:
                retailer = await repo.add_retailer(item["name"], website_url=item.get("website_url"))
                retailer.logo_url = item.get("logo_url")
                print(f"  [ADD] retailer {item['name']}")
                counts["retailers"] += 1
            else:
                counts["skipped"] += 1

            for code in item.get("countries", []):
                if await repo.link_retailer_country(retailer.id, code.upper(), item.get("website_url")):
                    counts["links"] += 1

        await db.commit()

    return counts


async def list_catalog():
    """Print stored reference data."""
    async with AsyncSessionLocal() as db:
        countries = (await db.execute(select(Country).order_by(Country.code))).scalars().all()
        categories = (await db.execute(select(Category).order_by(Category.name))).scalars().all()
        retailers = (await db.execute(select(Retailer).order_by(Retailer.name))).scalars().all()

    print(f"\nCountries ({len(countries)}):")
    for country in countries:
        status = "[ON]" if country.is_active else "[OFF]"
        print(f"  {status} {country.code} {country.name} ({country.currency})")
    print(f"\nCategories ({len(categories)}):")
    for category in categories:
        print(f"  {category.slug}: {category.name}")
    print(f"\nRetailers ({len(retailers)}):")
    for retailer in retailers:
        status = "[ON]" if retailer.is_active else "[OFF]"
        print(f"  {status} {retailer.name}")


def main():
    if len(sys.argv) > 1:
        if sys.argv[1] == "--list":
            asyncio.run(list_catalog())
            return
        if sys.argv[1] == "--help":
            print("Usage: python seed_catalog.py [--list | SEED_FILE]")
            print("")
            print("With no options, seeds reference data from catalog_seed.json")
            return
        seed_file = Path(sys.argv[1])
    else:
        seed_file = SEED_FILE

    if not seed_file.exists():
        print(f"Error: {seed_file} not found")
        sys.exit(1)

    try:
        data = json.loads(seed_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in {seed_file}: {e}")
        sys.exit(1)

    try:
        counts = asyncio.run(seed_catalog(data))
    except Exception as e:
        print(f"\nError: Seeding failed: {e}")
        print("Make sure the database is running and migrations are applied.")
        sys.exit(1)

    print("\nSeeding complete!")
    for table, count in counts.items():
        print(f"  - {table}: {count}")


if __name__ == "__main__":
    main()
