"""Catalog read API routes consumed by the storefront."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pricecompare.api.deps import get_catalog_service, get_database
from pricecompare.catalog.service import CatalogService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["catalog"])


class CategoryResponse(BaseModel):
    """Response model for a category."""
    id: int
    name: str
    slug: str
    description: Optional[str]

    class Config:
        from_attributes = True


class CountryResponse(BaseModel):
    """Response model for a country."""
    code: str
    name: str
    currency: str
    currency_symbol: Optional[str]

    class Config:
        from_attributes = True


class PriceResponse(BaseModel):
    retailer_id: int
    retailer_name: Optional[str]
    price: float
    currency: str
    availability: str
    product_url: Optional[str]
    last_checked: datetime


class ProductResponse(BaseModel):
    """Response model for a product with its current prices."""
    id: int
    name: str
    brand: str
    model: Optional[str]
    category_id: Optional[int]
    category_name: Optional[str]
    description: Optional[str]
    image_url: Optional[str]
    specifications: Dict[str, Any]
    prices: List[PriceResponse]
    lowest_price: Optional[float]


class FeaturedDealResponse(BaseModel):
    """Response model for a featured deal."""
    rank: int
    scope: str
    product_id: int
    product_name: str
    brand: str
    image_url: Optional[str]
    lowest_price: float
    highest_price: float
    savings_amount: float
    savings_percentage: float
    currency: Optional[str]
    expires_at: Optional[datetime]


class PriceHistoryDayResponse(BaseModel):
    """One calendar day of aggregated price history."""
    date: str
    min_price: float
    max_price: float
    avg_price: float
    retailer_count: int


@router.get("/categories", response_model=List[CategoryResponse])
async def list_categories(
    db: AsyncSession = Depends(get_database),
    service: CatalogService = Depends(get_catalog_service),
):
    """List all categories by name."""
    return await service.list_categories(db)


@router.get("/countries", response_model=List[CountryResponse])
async def list_countries(
    db: AsyncSession = Depends(get_database),
    service: CatalogService = Depends(get_catalog_service),
):
    """List active countries by name."""
    return await service.list_countries(db)


@router.get("/products/search", response_model=List[ProductResponse])
async def search_products(
    q: str = "",
    country: str = "US",
    category_id: Optional[int] = None,
    db: AsyncSession = Depends(get_database),
    service: CatalogService = Depends(get_catalog_service),
):
    """Search products priced at the country's retailers."""
    return await service.search_products(
        db, query_text=q or None, country_code=country, category_id=category_id
    )


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: int,
    db: AsyncSession = Depends(get_database),
    service: CatalogService = Depends(get_catalog_service),
):
    """Get a product with all its current prices."""
    product = await service.get_product(db, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("/products/{product_id}/history", response_model=List[PriceHistoryDayResponse])
async def get_price_history(
    product_id: int,
    country: str = "US",
    days: int = Query(30, ge=1, le=1825),
    db: AsyncSession = Depends(get_database),
    service: CatalogService = Depends(get_catalog_service),
):
    """Daily min/max/avg prices for a product in a country."""
    return await service.get_price_history(db, product_id, country_code=country, days=days)


@router.get("/deals/featured", response_model=List[FeaturedDealResponse])
async def get_featured_deals(
    country: Optional[str] = None,
    db: AsyncSession = Depends(get_database),
    service: CatalogService = Depends(get_catalog_service),
):
    """Featured deals for a country, or the global ranking when no country is given."""
    return await service.get_featured_deals(db, country_code=country)
