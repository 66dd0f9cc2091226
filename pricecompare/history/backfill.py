"""Historical price backfill.

Synthesizes a daily price series for (product, retailer) pairs that have
little or no history, anchored so the newest synthesized point lands close
to the current observed price. Series are seeded per pair, so re-running
the generator for the same inputs yields the same points.
"""

import logging
import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricecompare import metrics
from pricecompare.config import Settings, settings as default_settings
from pricecompare.db.models import PriceHistory
from pricecompare.db.repository import CatalogRepository
from pricecompare.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)

YEARLY_AMPLITUDE = 0.08
WEEKLY_AMPLITUDE = 0.02
DAILY_NOISE = 0.03
FLAT_SERIES_SCORE = 5.0


@dataclass
class SeriesPoint:
    """One synthesized daily price."""

    recorded_at: datetime
    price: Decimal
    price_change_percent: Optional[float]
    deal_score: float
    is_deal: bool


@dataclass
class SeriesResult:
    """Outcome of backfilling one pair."""

    product_id: int
    retailer_id: int
    points_written: int = 0
    skipped: bool = False
    reason: Optional[str] = None
    failed_batches: int = 0


def _seasonal(day: datetime) -> tuple[float, float]:
    yearly = math.sin(2 * math.pi * day.timetuple().tm_yday / 365.25)
    weekly = math.sin(2 * math.pi * day.weekday() / 7)
    return yearly, weekly


def score_series(prices: list[float], deal_cutoff: float) -> list[tuple[float, bool]]:
    """
    Deal score per point: 10 at the series minimum, 0 at the maximum.

    A flat series carries no signal and scores FLAT_SERIES_SCORE everywhere.
    """
    if not prices:
        return []
    low, high = min(prices), max(prices)
    scored = []
    for price in prices:
        if high > low:
            score = round(10 * (high - price) / (high - low), 2)
        else:
            score = FLAT_SERIES_SCORE
        scored.append((score, score >= deal_cutoff))
    return scored


def generate_series(
    current_price: float,
    window_days: int,
    end: datetime,
    seed: str,
    floor_ratio: float = 0.65,
    ceil_ratio: float = 2.0,
    drift: float = 0.15,
    deal_cutoff: float = 7.0,
) -> list[SeriesPoint]:
    """
    Generate `window_days` daily points ending at `end` (oldest first).

    Each value combines a downward drift (older points higher), yearly and
    weekly oscillations measured relative to `end`, and bounded uniform
    noise, then is clamped to [current * floor_ratio, current * ceil_ratio].

    Args:
        current_price: Observed price the series converges to
        window_days: Number of daily points
        end: Timestamp of the newest point
        seed: Seed for the noise generator
    """
    if window_days <= 0 or current_price <= 0:
        return []

    rng = random.Random(seed)
    floor = current_price * floor_ratio
    ceil = current_price * ceil_ratio
    end_yearly, end_weekly = _seasonal(end)
    span = max(1, window_days - 1)

    raw_prices: list[float] = []
    timestamps: list[datetime] = []
    for days_ago in range(window_days - 1, -1, -1):
        day = end - timedelta(days=days_ago)
        yearly, weekly = _seasonal(day)

        trend = 1 + drift * (days_ago / span)
        seasonal = 1 + YEARLY_AMPLITUDE * (yearly - end_yearly) + WEEKLY_AMPLITUDE * (weekly - end_weekly)
        noise = 1 + rng.uniform(-DAILY_NOISE, DAILY_NOISE)

        value = current_price * trend * seasonal * noise
        value = min(max(value, floor), ceil)
        raw_prices.append(round(value, 2))
        timestamps.append(day)

    points = []
    previous: Optional[float] = None
    for day, price, (score, is_deal) in zip(
        timestamps, raw_prices, score_series(raw_prices, deal_cutoff)
    ):
        change = None
        if previous is not None and previous > 0:
            change = round((price - previous) / previous * 100, 2)
        points.append(
            SeriesPoint(
                recorded_at=day,
                price=Decimal(str(price)),
                price_change_percent=change,
                deal_score=score,
                is_deal=is_deal,
            )
        )
        previous = price
    return points


class HistoryBackfiller:
    """Backfills price history for pairs with too few points."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.settings = settings

    async def backfill(
        self,
        product_id: int,
        retailer_id: int,
        window_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SeriesResult:
        """
        Backfill one (product, retailer) pair.

        No-op when the pair already has more than
        `backfill_min_existing_points` history rows or has no current price.
        The window is clipped so no point falls before the retention cutoff
        (`now - history_retention_days`); a pair whose series would end before
        the cutoff is skipped.
        """
        window_days = window_days or self.settings.backfill_window_days
        retention_floor = (now or datetime.utcnow()) - timedelta(days=self.settings.history_retention_days)
        result = SeriesResult(product_id=product_id, retailer_id=retailer_id)

        async with self.session_factory() as db:
            repo = CatalogRepository(db)
            existing = await repo.count_history(product_id, retailer_id)
            if existing > self.settings.backfill_min_existing_points:
                result.skipped = True
                result.reason = f"{existing} points already recorded"
                return result

            current = await repo.get_current_price(product_id, retailer_id)
            if current is None:
                result.skipped = True
                result.reason = "no current price"
                return result

            earliest = await repo.earliest_history_at(product_id, retailer_id)
            current_price = float(current.price)
            currency = current.currency
            anchor = current.last_checked
            if earliest is not None and earliest < anchor:
                anchor = earliest

        # Synthesized points end strictly before anything already recorded
        end = (anchor - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
        if end < retention_floor:
            result.skipped = True
            result.reason = "existing history reaches back past the retention window"
            return result
        window_days = min(window_days, (end - retention_floor).days + 1)

        points = generate_series(
            current_price=current_price,
            window_days=window_days,
            end=end,
            seed=f"{self.settings.backfill_seed}:{product_id}:{retailer_id}",
            floor_ratio=self.settings.backfill_floor_ratio,
            ceil_ratio=self.settings.backfill_ceil_ratio,
            drift=self.settings.backfill_drift,
            deal_cutoff=self.settings.deal_score_cutoff,
        )

        batch_size = max(1, self.settings.backfill_batch_size)
        for start in range(0, len(points), batch_size):
            batch = points[start:start + batch_size]
            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        db.add_all([
                            PriceHistory(
                                product_id=product_id,
                                retailer_id=retailer_id,
                                price=point.price,
                                currency=currency,
                                recorded_at=point.recorded_at,
                                price_change_percent=point.price_change_percent,
                                deal_score=point.deal_score,
                                is_deal=point.is_deal,
                                source="backfill",
                            )
                            for point in batch
                        ])
                result.points_written += len(batch)
            except Exception as e:
                result.failed_batches += 1
                metrics.backfill_batch_errors_total.inc()
                logger.error(
                    f"Error inserting backfill batch {start // batch_size + 1} for "
                    f"product {product_id} / retailer {retailer_id}: {e}"
                )

        metrics.record_history_points("backfill", result.points_written)
        logger.debug(
            f"Backfilled {result.points_written} points for product {product_id} / "
            f"retailer {retailer_id}"
        )
        return result

    async def backfill_all(
        self,
        window_days: Optional[int] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Backfill every current price pair at an active retailer.

        Returns:
            Dict with job statistics
        """
        logger.info("Starting historical price backfill")
        start_time = datetime.utcnow()

        async with self.session_factory() as db:
            prices = await CatalogRepository(db).list_price_pairs(
                limit or self.settings.backfill_max_pairs
            )
            pairs = [(p.product_id, p.retailer_id) for p in prices]

        stats = {
            "pairs_checked": len(pairs),
            "pairs_backfilled": 0,
            "pairs_skipped": 0,
            "points_written": 0,
            "failed_batches": 0,
            "errors": 0,
        }

        for product_id, retailer_id in pairs:
            try:
                series = await self.backfill(product_id, retailer_id, window_days, now=now)
            except Exception as e:
                logger.error(
                    f"Error backfilling product {product_id} / retailer {retailer_id}: {e}"
                )
                stats["errors"] += 1
                continue

            if series.skipped:
                stats["pairs_skipped"] += 1
            else:
                stats["pairs_backfilled"] += 1
            stats["points_written"] += series.points_written
            stats["failed_batches"] += series.failed_batches

        duration = (datetime.utcnow() - start_time).total_seconds()
        logger.info(
            f"Backfill complete in {duration:.1f}s: {stats['pairs_backfilled']} pairs backfilled, "
            f"{stats['pairs_skipped']} skipped, {stats['points_written']} points written"
        )
        return stats
