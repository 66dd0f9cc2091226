"""Main application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricecompare.api.routes import catalog, scheduler as scheduler_routes
from pricecompare.catalog.service import CatalogService
from pricecompare.config import Settings, settings as default_settings
from pricecompare.db.models import Base
from pricecompare.db.session import AsyncSessionLocal
from pricecompare.logging_config import setup_logging
from pricecompare.worker.orchestrator import Orchestrator
from pricecompare.worker.scheduler import setup_scheduler

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings = default_settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    orchestrator: Optional[Orchestrator] = None,
    create_tables: bool = True,
    enable_scheduler: Optional[bool] = None,
    instrument: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings
        session_factory: Session factory for requests and the pipeline
        orchestrator: Pipeline orchestrator (built from settings when omitted)
        create_tables: Run metadata.create_all at startup on the engine bound to session_factory
        enable_scheduler: Start APScheduler jobs (defaults to settings.scheduler_enabled)
        instrument: Expose Prometheus metrics at /metrics
    """
    session_factory = session_factory or AsyncSessionLocal
    orchestrator = orchestrator or Orchestrator(session_factory, settings)
    if enable_scheduler is None:
        enable_scheduler = settings.scheduler_enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info("Starting price-compare...")

        if create_tables:
            async with session_factory.kw["bind"].begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        scheduler = None
        if enable_scheduler:
            scheduler = setup_scheduler(orchestrator, settings)
            scheduler.start()
            logger.info("Scheduler started")

        yield

        logger.info("Shutting down...")
        if scheduler:
            scheduler.shutdown()
        await orchestrator.lock.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Price Compare",
        description="Cross-retailer price comparison catalog and deal pipeline",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.orchestrator = orchestrator
    app.state.catalog_service = CatalogService(settings)

    if instrument:
        instrumentator = Instrumentator(
            should_group_status_codes=True,
            should_ignore_untemplated=True,
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics", "/health"],
            inprogress_name="http_requests_inprogress",
            inprogress_labels=True,
        )
        instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

    app.include_router(catalog.router)
    app.include_router(scheduler_routes.router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


def main():
    setup_logging()
    uvicorn.run(
        "pricecompare.main:create_app",
        factory=True,
        host=default_settings.app_host,
        port=default_settings.app_port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
