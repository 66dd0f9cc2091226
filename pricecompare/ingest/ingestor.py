"""Price ingestion: upsert current prices, archiving the replaced value first."""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricecompare import metrics
from pricecompare.config import Settings, settings as default_settings
from pricecompare.db.models import Price, PriceHistory, Product
from pricecompare.db.repository import CatalogRepository
from pricecompare.db.session import AsyncSessionLocal
from pricecompare.ingest.observations import IngestFailure, IngestResult, PriceObservation

logger = logging.getLogger(__name__)


def _site_root(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def _raw_key(raw: Any) -> str:
    if isinstance(raw, dict):
        return f"{raw.get('brand', '')} {raw.get('name', '?')} @ {raw.get('retailer', '?')}".strip()
    return repr(raw)[:80]


class PriceIngestor:
    """
    Stores batches of price observations.

    Each observation runs in its own transaction: product/retailer resolution,
    the history archive of the replaced price and the price upsert commit
    together or not at all. A failing observation is recorded and the batch
    continues.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        settings: Settings = default_settings,
        source_name: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.source_name = source_name or settings.discovery_source_name

    async def ingest(self, observations: Iterable[PriceObservation | dict]) -> IngestResult:
        """
        Ingest a batch of observations.

        Args:
            observations: PriceObservation models or raw dicts (validated here)

        Returns:
            IngestResult with counters and per-observation failures
        """
        result = IngestResult()
        parsed: list[PriceObservation] = []

        for raw in observations:
            result.observations += 1
            if isinstance(raw, PriceObservation):
                parsed.append(raw)
                continue
            try:
                parsed.append(PriceObservation.model_validate(raw))
            except ValidationError as e:
                error = "; ".join(err["msg"] for err in e.errors())
                logger.warning(f"Rejected observation {_raw_key(raw)}: {error}")
                result.failures.append(IngestFailure(key=_raw_key(raw), error=error))
                metrics.record_observation(False)

        batch_size = max(1, self.settings.ingest_batch_size)
        for start in range(0, len(parsed), batch_size):
            chunk = parsed[start:start + batch_size]
            for observation in chunk:
                await self._ingest_with_isolation(observation, result)

            logger.debug(
                f"Ingested chunk {start // batch_size + 1}: "
                f"{min(start + batch_size, len(parsed))}/{len(parsed)} observations"
            )

        logger.info(
            f"Ingestion complete: {result.observations} observations, "
            f"{result.products_created} new products, {result.prices_updated} prices updated, "
            f"{result.history_archived} archived, {result.failed} failed"
        )
        return result

    async def _ingest_with_isolation(
        self,
        observation: PriceObservation,
        result: IngestResult,
    ) -> None:
        try:
            async with self.session_factory() as db:
                async with db.begin():
                    outcome = await self._ingest_one(CatalogRepository(db), observation)
        except Exception as e:
            logger.error(f"Failed to ingest {observation.describe()}: {e}")
            result.failures.append(IngestFailure(key=observation.describe(), error=str(e)[:500]))
            metrics.record_observation(False)
            return

        result.products_created += outcome["product_created"]
        result.retailers_created += outcome["retailer_created"]
        result.history_archived += outcome["archived"]
        result.prices_updated += 1
        metrics.record_observation(True)
        if outcome["product_created"]:
            metrics.products_created_total.inc()
        metrics.record_history_points("ingestion", outcome["archived"])

    async def _ingest_one(self, repo: CatalogRepository, obs: PriceObservation) -> dict:
        now = datetime.utcnow()

        product, product_created = await self._resolve_product(repo, obs)

        retailer_created = False
        retailer = await repo.get_retailer_by_name(obs.retailer)
        if retailer is None:
            retailer = await repo.add_retailer(obs.retailer, website_url=_site_root(obs.url))
            retailer_created = True
            logger.info(f"Created retailer '{obs.retailer}'")

        if obs.country:
            await repo.link_retailer_country(retailer.id, obs.country, _site_root(obs.url))

        if product_created:
            await repo.log_discovery(
                product_id=product.id,
                source=self.source_name,
                category_id=product.category_id,
                country_code=obs.country,
                initial_price=obs.price,
                initial_retailer_id=retailer.id,
                metadata={"retailer": obs.retailer, "currency": obs.currency},
            )

        archived = 0
        current = await repo.get_current_price(product.id, retailer.id, for_update=True)
        if current is not None:
            repo.add_history([await self._archive_point(repo, current)])
            archived = 1
            metrics.record_price_change(float(current.price), float(obs.price))

            current.price = obs.price
            current.currency = obs.currency
            current.product_url = obs.url or current.product_url
            current.availability = obs.availability
            current.last_checked = now
        else:
            repo.db.add(
                Price(
                    product_id=product.id,
                    retailer_id=retailer.id,
                    price=obs.price,
                    currency=obs.currency,
                    product_url=obs.url,
                    availability=obs.availability,
                    last_checked=now,
                )
            )

        return {
            "product_created": int(product_created),
            "retailer_created": int(retailer_created),
            "archived": archived,
        }

    async def _resolve_product(
        self,
        repo: CatalogRepository,
        obs: PriceObservation,
    ) -> tuple[Product, bool]:
        product = await repo.get_product_by_key(obs.name, obs.brand)
        if product is not None:
            # Refresh descriptive fields from the latest sighting
            if obs.description:
                product.description = obs.description
            if obs.specifications:
                product.specifications = {**(product.specifications or {}), **obs.specifications}
            if obs.image_url:
                product.image_url = obs.image_url
            if obs.model and not product.model:
                product.model = obs.model
            return product, False

        category_id = None
        if obs.category:
            category = await repo.get_category_by_slug(obs.category)
            if category is None:
                logger.debug(f"Unknown category '{obs.category}' for {obs.describe()}")
            else:
                category_id = category.id

        product = await repo.add_product(
            Product(
                name=obs.name,
                brand=obs.brand,
                model=obs.model,
                category_id=category_id,
                description=obs.description,
                image_url=obs.image_url,
                specifications=dict(obs.specifications),
            )
        )
        logger.info(f"Created product '{obs.name}' ({obs.brand or 'no brand'})")
        return product, True

    async def _archive_point(self, repo: CatalogRepository, current: Price) -> PriceHistory:
        """Build the history row holding the price about to be replaced."""
        previous = await repo.get_latest_history_point(current.product_id, current.retailer_id)

        recorded_at = current.last_checked
        change_percent = None
        if previous is not None:
            # Series timestamps never go backwards
            if previous.recorded_at > recorded_at:
                recorded_at = previous.recorded_at
            if previous.price > 0:
                change_percent = round(
                    float((current.price - previous.price) / previous.price * 100), 2
                )

        return PriceHistory(
            product_id=current.product_id,
            retailer_id=current.retailer_id,
            price=current.price,
            currency=current.currency,
            recorded_at=recorded_at,
            price_change_percent=change_percent,
            source="ingestion",
        )
