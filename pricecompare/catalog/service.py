"""Read-side catalog queries consumed by the storefront API."""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from pricecompare.config import Settings, settings as default_settings
from pricecompare.db.models import (
    GLOBAL_SCOPE,
    Category,
    Country,
    FeaturedDeal,
    Price,
    PriceHistory,
    Product,
    Retailer,
    RetailerCountry,
    SchedulerRun,
)

logger = logging.getLogger(__name__)


def _price_dict(price: Price) -> Dict[str, Any]:
    return {
        "retailer_id": price.retailer_id,
        "retailer_name": price.retailer.name if price.retailer else None,
        "price": float(price.price),
        "currency": price.currency,
        "availability": price.availability,
        "product_url": price.product_url,
        "last_checked": price.last_checked,
    }


def _product_dict(product: Product, prices: List[Price]) -> Dict[str, Any]:
    price_rows = sorted((_price_dict(p) for p in prices), key=lambda p: p["price"])
    return {
        "id": product.id,
        "name": product.name,
        "brand": product.brand,
        "model": product.model,
        "category_id": product.category_id,
        "category_name": product.category.name if product.category else None,
        "description": product.description,
        "image_url": product.image_url,
        "specifications": product.specifications or {},
        "prices": price_rows,
        "lowest_price": price_rows[0]["price"] if price_rows else None,
    }


class CatalogService:
    """Catalog reads: products, deals, history and run status."""

    def __init__(self, settings: Settings = default_settings):
        self.settings = settings

    async def list_categories(self, db: AsyncSession) -> List[Category]:
        result = await db.execute(select(Category).order_by(Category.name))
        return list(result.scalars().all())

    async def list_countries(self, db: AsyncSession) -> List[Country]:
        result = await db.execute(
            select(Country).where(Country.is_active.is_(True)).order_by(Country.name)
        )
        return list(result.scalars().all())

    async def _country_retailer_ids(self, db: AsyncSession, country_code: str) -> List[int]:
        result = await db.execute(
            select(RetailerCountry.retailer_id)
            .join(Retailer, Retailer.id == RetailerCountry.retailer_id)
            .where(
                RetailerCountry.country_code == country_code.upper(),
                Retailer.is_active.is_(True),
            )
        )
        return [row[0] for row in result.all()]

    async def search_products(
        self,
        db: AsyncSession,
        query_text: Optional[str] = None,
        country_code: Optional[str] = "US",
        category_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Search products by name, brand or description.

        Only products priced at one of the country's retailers are returned,
        and each product carries only those prices. A country without
        retailers yields an empty list.
        """
        limit = limit or self.settings.search_result_limit

        retailer_ids: Optional[List[int]] = None
        if country_code:
            retailer_ids = await self._country_retailer_ids(db, country_code)
            if not retailer_ids:
                return []

        priced = select(Price.product_id)
        if retailer_ids is not None:
            priced = priced.where(Price.retailer_id.in_(retailer_ids))

        query = (
            select(Product)
            .options(selectinload(Product.category))
            .where(Product.id.in_(priced))
        )
        if query_text:
            pattern = f"%{query_text.strip()}%"
            query = query.where(
                or_(
                    Product.name.ilike(pattern),
                    Product.brand.ilike(pattern),
                    Product.description.ilike(pattern),
                )
            )
        if category_id is not None:
            query = query.where(Product.category_id == category_id)

        result = await db.execute(query.order_by(Product.name, Product.id).limit(limit))
        products = list(result.scalars().all())
        if not products:
            return []

        price_query = (
            select(Price)
            .options(selectinload(Price.retailer))
            .where(Price.product_id.in_([p.id for p in products]))
        )
        if retailer_ids is not None:
            price_query = price_query.where(Price.retailer_id.in_(retailer_ids))
        price_result = await db.execute(price_query)

        prices_by_product: Dict[int, List[Price]] = defaultdict(list)
        for price in price_result.scalars().all():
            prices_by_product[price.product_id].append(price)

        return [_product_dict(p, prices_by_product[p.id]) for p in products]

    async def get_product(self, db: AsyncSession, product_id: int) -> Optional[Dict[str, Any]]:
        result = await db.execute(
            select(Product)
            .options(
                selectinload(Product.category),
                selectinload(Product.prices).selectinload(Price.retailer),
            )
            .where(Product.id == product_id)
        )
        product = result.scalar_one_or_none()
        if product is None:
            return None
        return _product_dict(product, list(product.prices))

    async def get_featured_deals(
        self,
        db: AsyncSession,
        country_code: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Featured deals of a country scope (global when no country), by rank."""
        scope = country_code.upper() if country_code else GLOBAL_SCOPE
        result = await db.execute(
            select(FeaturedDeal)
            .options(selectinload(FeaturedDeal.product))
            .where(FeaturedDeal.scope == scope)
            .order_by(FeaturedDeal.deal_rank)
        )
        return [
            {
                "rank": deal.deal_rank,
                "scope": deal.scope,
                "product_id": deal.product_id,
                "product_name": deal.product.name,
                "brand": deal.product.brand,
                "image_url": deal.product.image_url,
                "lowest_price": float(deal.lowest_price),
                "highest_price": float(deal.highest_price),
                "savings_amount": float(deal.savings_amount),
                "savings_percentage": deal.savings_percentage,
                "currency": deal.currency,
                "expires_at": deal.expires_at,
            }
            for deal in result.scalars().all()
        ]

    async def get_price_history(
        self,
        db: AsyncSession,
        product_id: int,
        country_code: Optional[str] = "US",
        days: int = 30,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Price history grouped by calendar day, oldest day first.

        Each day reports min/max/avg price across the country's retailers and
        how many distinct retailers recorded a price that day.
        """
        query = select(PriceHistory.recorded_at, PriceHistory.price, PriceHistory.retailer_id).where(
            PriceHistory.product_id == product_id,
            PriceHistory.recorded_at >= (now or datetime.utcnow()) - timedelta(days=days),
        )
        if country_code:
            retailer_ids = await self._country_retailer_ids(db, country_code)
            if not retailer_ids:
                return []
            query = query.where(PriceHistory.retailer_id.in_(retailer_ids))

        result = await db.execute(query.order_by(PriceHistory.recorded_at))

        grouped: Dict[str, Dict[str, Any]] = {}
        for recorded_at, price, retailer_id in result.all():
            day = grouped.setdefault(
                recorded_at.date().isoformat(), {"prices": [], "retailers": set()}
            )
            day["prices"].append(float(price))
            day["retailers"].add(retailer_id)

        return [
            {
                "date": date,
                "min_price": min(day["prices"]),
                "max_price": max(day["prices"]),
                "avg_price": round(sum(day["prices"]) / len(day["prices"]), 2),
                "retailer_count": len(day["retailers"]),
            }
            for date, day in sorted(grouped.items())
        ]

    async def list_runs(self, db: AsyncSession, limit: Optional[int] = None) -> List[SchedulerRun]:
        result = await db.execute(
            select(SchedulerRun)
            .order_by(SchedulerRun.started_at.desc(), SchedulerRun.id.desc())
            .limit(limit or self.settings.scheduler_status_limit)
        )
        return list(result.scalars().all())
