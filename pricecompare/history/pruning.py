"""Retention pruning for the price history table."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricecompare import metrics
from pricecompare.config import Settings, settings as default_settings
from pricecompare.db.models import PriceHistory
from pricecompare.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)


async def prune_price_history(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    settings: Settings = default_settings,
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Delete price history older than the retention window, in chunks.

    A failing chunk is logged and pruning stops; rows already deleted stay
    deleted and the remainder is picked up by the next run.
    """
    retention_days = retention_days or settings.history_retention_days
    cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)
    batch_size = max(1, settings.history_prune_batch_size)
    pruned = 0
    errors = 0

    while True:
        try:
            async with session_factory() as db:
                async with db.begin():
                    ids_result = await db.execute(
                        select(PriceHistory.id)
                        .where(PriceHistory.recorded_at < cutoff)
                        .limit(batch_size)
                    )
                    ids = [row[0] for row in ids_result.all()]
                    if ids:
                        await db.execute(delete(PriceHistory).where(PriceHistory.id.in_(ids)))
        except Exception as e:
            logger.error(f"Error pruning price history: {e}")
            errors += 1
            break

        pruned += len(ids)
        if len(ids) < batch_size:
            break

    if pruned:
        metrics.price_history_pruned_total.inc(pruned)
        logger.info(f"Pruned {pruned} price history records older than {retention_days} days")

    return {
        "retention_days": retention_days,
        "cutoff": cutoff.isoformat(),
        "history_pruned": pruned,
        "errors": errors,
    }
