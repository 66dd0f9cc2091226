"""Cross-retailer savings calculation and deal ranking."""

from dataclasses import dataclass
from decimal import Decimal
from functools import cmp_to_key
from typing import Iterable, Optional, Sequence

DEFAULT_TIE_TOLERANCE_PCT = 1.0


@dataclass
class DealCandidate:
    """Savings statistics for one product across its available prices."""

    product_id: int
    lowest_price: float
    highest_price: float
    average_price: float
    savings_amount: float
    savings_percentage: float
    retailer_count: int
    currency: Optional[str] = None


@dataclass
class RankedDeal:
    """A candidate that survived filtering, with its dense rank."""

    rank: int
    candidate: DealCandidate


def calculate_savings(
    product_id: int,
    prices: Sequence[float | Decimal],
    currency: Optional[str] = None,
) -> Optional[DealCandidate]:
    """
    Compute savings for a product from its current prices.

    Returns None when there is no real spread: fewer than two prices, a
    non-positive highest price, or lowest >= highest.
    """
    values = [float(p) for p in prices if p is not None]
    if len(values) < 2:
        return None

    lowest = min(values)
    highest = max(values)
    if highest <= 0 or lowest >= highest:
        return None

    savings_amount = highest - lowest
    return DealCandidate(
        product_id=product_id,
        lowest_price=lowest,
        highest_price=highest,
        average_price=sum(values) / len(values),
        savings_amount=savings_amount,
        savings_percentage=savings_amount / highest * 100,
        retailer_count=len(values),
        currency=currency,
    )


def compare_deals(
    a: DealCandidate,
    b: DealCandidate,
    tie_tolerance_pct: float = DEFAULT_TIE_TOLERANCE_PCT,
) -> int:
    """
    Order two candidates, best first.

    Percentages within `tie_tolerance_pct` of each other are treated as a
    tie and ranked by savings amount instead. Product id breaks exact ties.
    """
    pct_diff = a.savings_percentage - b.savings_percentage
    if abs(pct_diff) < tie_tolerance_pct:
        if a.savings_amount != b.savings_amount:
            return -1 if a.savings_amount > b.savings_amount else 1
        return (a.product_id > b.product_id) - (a.product_id < b.product_id)
    return -1 if pct_diff > 0 else 1


def rank_deals(
    candidates: Iterable[DealCandidate],
    min_savings_pct: float,
    top_n: int,
    tie_tolerance_pct: float = DEFAULT_TIE_TOLERANCE_PCT,
) -> list[RankedDeal]:
    """
    Filter by threshold, sort best first, truncate and assign ranks 1..k.

    Args:
        candidates: Savings per product
        min_savings_pct: Minimum savings percentage to keep a product
        top_n: Maximum number of deals returned
    """
    eligible = [c for c in candidates if c.savings_percentage >= min_savings_pct]
    eligible.sort(key=cmp_to_key(lambda a, b: compare_deals(a, b, tie_tolerance_pct)))
    return [
        RankedDeal(rank=index, candidate=candidate)
        for index, candidate in enumerate(eligible[:max(0, top_n)], start=1)
    ]
