"""Repository over the catalog tables used by the batch pipeline."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pricecompare.db.models import (
    AVAILABLE_STATES,
    GLOBAL_SCOPE,
    Category,
    Country,
    FeaturedDeal,
    Price,
    PriceHistory,
    Product,
    ProductDiscoveryLog,
    Retailer,
    RetailerCountry,
)

logger = logging.getLogger(__name__)


class CatalogRepository:
    """
    Query and write helpers bound to one session.

    The repository never commits; callers own the transaction boundary.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Products / retailers / reference data
    # ------------------------------------------------------------------

    async def get_product_by_key(self, name: str, brand: str) -> Optional[Product]:
        result = await self.db.execute(
            select(Product).where(Product.name == name, Product.brand == brand)
        )
        return result.scalar_one_or_none()

    async def add_product(self, product: Product) -> Product:
        self.db.add(product)
        await self.db.flush()
        return product

    async def get_retailer_by_name(self, name: str) -> Optional[Retailer]:
        result = await self.db.execute(select(Retailer).where(Retailer.name == name))
        return result.scalar_one_or_none()

    async def add_retailer(self, name: str, website_url: Optional[str] = None) -> Retailer:
        retailer = Retailer(name=name, website_url=website_url, is_active=True)
        self.db.add(retailer)
        await self.db.flush()
        return retailer

    async def get_category_by_slug(self, slug: str) -> Optional[Category]:
        result = await self.db.execute(select(Category).where(Category.slug == slug))
        return result.scalar_one_or_none()

    async def get_country(self, code: str) -> Optional[Country]:
        return await self.db.get(Country, code)

    async def list_active_countries(self) -> list[Country]:
        result = await self.db.execute(
            select(Country).where(Country.is_active.is_(True)).order_by(Country.code)
        )
        return list(result.scalars().all())

    async def link_retailer_country(
        self,
        retailer_id: int,
        country_code: str,
        website_url: Optional[str] = None,
    ) -> bool:
        """
        Link a retailer to a country if not linked yet.

        Returns:
            True if a new link row was created
        """
        existing = await self.db.execute(
            select(RetailerCountry.id).where(
                RetailerCountry.retailer_id == retailer_id,
                RetailerCountry.country_code == country_code,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return False

        if await self.get_country(country_code) is None:
            logger.debug(f"Unknown country {country_code}; retailer {retailer_id} not linked")
            return False

        primary_count = await self.db.execute(
            select(func.count(RetailerCountry.id)).where(
                RetailerCountry.retailer_id == retailer_id
            )
        )
        self.db.add(
            RetailerCountry(
                retailer_id=retailer_id,
                country_code=country_code,
                website_url=website_url,
                is_primary=(primary_count.scalar() or 0) == 0,
            )
        )
        await self.db.flush()
        return True

    async def retailer_ids_for_country(self, country_code: str) -> list[int]:
        result = await self.db.execute(
            select(RetailerCountry.retailer_id).where(
                RetailerCountry.country_code == country_code
            )
        )
        return [row[0] for row in result.all()]

    async def log_discovery(
        self,
        product_id: int,
        source: str,
        category_id: Optional[int],
        country_code: Optional[str],
        initial_price: Optional[Decimal],
        initial_retailer_id: Optional[int],
        metadata: Optional[dict] = None,
    ) -> None:
        self.db.add(
            ProductDiscoveryLog(
                product_id=product_id,
                source=source,
                category_id=category_id,
                country_code=country_code,
                initial_price=initial_price,
                initial_retailer_id=initial_retailer_id,
                metadata_json=metadata or {},
            )
        )

    # ------------------------------------------------------------------
    # Current prices
    # ------------------------------------------------------------------

    async def get_current_price(
        self,
        product_id: int,
        retailer_id: int,
        for_update: bool = False,
    ) -> Optional[Price]:
        query = select(Price).where(
            Price.product_id == product_id, Price.retailer_id == retailer_id
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_price_pairs(self, limit: int) -> list[Price]:
        """Current prices at active retailers, oldest pairs first."""
        result = await self.db.execute(
            select(Price)
            .join(Retailer, Retailer.id == Price.retailer_id)
            .where(Retailer.is_active.is_(True))
            .order_by(Price.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def load_available_prices(self, scope: str) -> list[tuple[int, Decimal, str]]:
        """
        Current in-stock prices at active retailers, optionally scoped to a country.

        Returns:
            (product_id, price, currency) rows
        """
        query = (
            select(Price.product_id, Price.price, Price.currency)
            .join(Retailer, Retailer.id == Price.retailer_id)
            .where(
                Retailer.is_active.is_(True),
                Price.availability.in_(AVAILABLE_STATES),
                Price.price > 0,
            )
        )
        if scope != GLOBAL_SCOPE:
            query = query.join(
                RetailerCountry,
                (RetailerCountry.retailer_id == Price.retailer_id)
                & (RetailerCountry.country_code == scope),
            )
        result = await self.db.execute(query.order_by(Price.product_id))
        return [(row[0], row[1], row[2]) for row in result.all()]

    # ------------------------------------------------------------------
    # Price history
    # ------------------------------------------------------------------

    async def get_latest_history_point(
        self, product_id: int, retailer_id: int
    ) -> Optional[PriceHistory]:
        result = await self.db.execute(
            select(PriceHistory)
            .where(
                PriceHistory.product_id == product_id,
                PriceHistory.retailer_id == retailer_id,
            )
            .order_by(PriceHistory.recorded_at.desc(), PriceHistory.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_history(self, product_id: int, retailer_id: int) -> int:
        result = await self.db.execute(
            select(func.count(PriceHistory.id)).where(
                PriceHistory.product_id == product_id,
                PriceHistory.retailer_id == retailer_id,
            )
        )
        return result.scalar() or 0

    async def earliest_history_at(self, product_id: int, retailer_id: int) -> Optional[datetime]:
        result = await self.db.execute(
            select(func.min(PriceHistory.recorded_at)).where(
                PriceHistory.product_id == product_id,
                PriceHistory.retailer_id == retailer_id,
            )
        )
        return result.scalar()

    def add_history(self, points: Sequence[PriceHistory]) -> None:
        self.db.add_all(points)

    # ------------------------------------------------------------------
    # Featured deals
    # ------------------------------------------------------------------

    async def replace_featured_deals(self, scope: str, deals: Sequence[FeaturedDeal]) -> int:
        """
        Delete every deal in the scope and insert the new set.

        Returns:
            Number of rows deleted
        """
        result = await self.db.execute(delete(FeaturedDeal).where(FeaturedDeal.scope == scope))
        self.db.add_all(deals)
        await self.db.flush()
        return result.rowcount or 0
