"""FastAPI dependencies."""

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from pricecompare.catalog.service import CatalogService
from pricecompare.worker.orchestrator import Orchestrator


async def get_database(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency for database session."""
    async with request.app.state.session_factory() as session:
        yield session


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service
