"""Deal aggregation engine.

Reads current available prices, computes per-product savings, ranks them and
materializes the top deals into the featured_deals table, one scope (global
or a country code) at a time.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricecompare import metrics
from pricecompare.config import Settings, settings as default_settings
from pricecompare.db.models import GLOBAL_SCOPE, FeaturedDeal
from pricecompare.db.repository import CatalogRepository
from pricecompare.db.session import AsyncSessionLocal
from pricecompare.deals.ranking import DealCandidate, RankedDeal, calculate_savings, rank_deals
from pricecompare.errors import DealUpdateError

logger = logging.getLogger(__name__)


def _money(value: float) -> Decimal:
    return Decimal(str(round(value, 2)))


class DealAggregationEngine:
    """Computes and stores featured deals per scope."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.settings = settings

    async def compute_deals(
        self,
        scope: str = GLOBAL_SCOPE,
        min_savings_pct: Optional[float] = None,
        top_n: Optional[int] = None,
    ) -> list[RankedDeal]:
        """
        Rank deals for a scope and replace its featured deals.

        The delete of the old set and the insert of the new one share a
        transaction. An empty ranking leaves the scope empty.

        Args:
            scope: "global" or a country code
            min_savings_pct: Savings threshold; defaults per scope from settings
            top_n: Maximum deals kept

        Returns:
            The ranked deals that were stored
        """
        if min_savings_pct is None:
            min_savings_pct = (
                self.settings.deal_global_min_savings_pct
                if scope == GLOBAL_SCOPE
                else self.settings.deal_country_min_savings_pct
            )
        top_n = self.settings.deal_top_n if top_n is None else top_n

        async with self.session_factory() as db:
            async with db.begin():
                repo = CatalogRepository(db)
                candidates = self._build_candidates(await repo.load_available_prices(scope))
                ranked = rank_deals(
                    candidates,
                    min_savings_pct=min_savings_pct,
                    top_n=top_n,
                    tie_tolerance_pct=self.settings.deal_tie_tolerance_pct,
                )

                now = datetime.utcnow()
                expires_at = now + timedelta(hours=self.settings.deal_ttl_hours)
                removed = await repo.replace_featured_deals(
                    scope,
                    [
                        FeaturedDeal(
                            scope=scope,
                            product_id=deal.candidate.product_id,
                            savings_amount=_money(deal.candidate.savings_amount),
                            savings_percentage=round(deal.candidate.savings_percentage, 2),
                            lowest_price=_money(deal.candidate.lowest_price),
                            highest_price=_money(deal.candidate.highest_price),
                            currency=deal.candidate.currency,
                            deal_rank=deal.rank,
                            created_at=now,
                            expires_at=expires_at,
                        )
                        for deal in ranked
                    ],
                )

        logger.info(
            f"Featured deals for scope '{scope}': {len(candidates)} candidates, "
            f"{len(ranked)} stored (threshold {min_savings_pct}%), {removed} replaced"
        )
        return ranked

    def _build_candidates(self, rows: list[tuple[int, Decimal, str]]) -> list[DealCandidate]:
        by_product: dict[int, list[tuple[Decimal, str]]] = defaultdict(list)
        for product_id, price, currency in rows:
            by_product[product_id].append((price, currency))

        candidates = []
        for product_id, offers in by_product.items():
            lowest_currency = min(offers, key=lambda offer: offer[0])[1]
            candidate = calculate_savings(
                product_id, [price for price, _ in offers], currency=lowest_currency
            )
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    async def update_all_scopes(self) -> dict:
        """
        Refresh the global scope and every active country.

        A failing scope is logged and counted; the remaining scopes still run.

        Returns:
            Dict with per-scope deal counts and error count
        """
        logger.info("Starting featured deal update")
        start_time = datetime.utcnow()

        async with self.session_factory() as db:
            countries = [c.code for c in await CatalogRepository(db).list_active_countries()]

        stats: dict = {"scopes": {}, "deals_stored": 0, "errors": 0, "failed_scopes": []}
        for scope in [GLOBAL_SCOPE, *countries]:
            try:
                ranked = await self.compute_deals(scope)
            except Exception as e:
                logger.error(f"Error updating featured deals for scope '{scope}': {e}")
                metrics.record_deal_update(scope, 0, success=False)
                stats["errors"] += 1
                stats["failed_scopes"].append(scope)
                continue

            metrics.record_deal_update(scope, len(ranked), success=True)
            stats["scopes"][scope] = len(ranked)
            stats["deals_stored"] += len(ranked)

        if stats["errors"] and not stats["scopes"]:
            raise DealUpdateError(
                f"Featured deal update failed for every scope: {', '.join(stats['failed_scopes'])}"
            )

        duration = (datetime.utcnow() - start_time).total_seconds()
        logger.info(
            f"Featured deal update complete in {duration:.1f}s: "
            f"{stats['deals_stored']} deals across {len(stats['scopes'])} scopes, "
            f"{stats['errors']} errors"
        )
        return stats
