"""Median-based outlier filtering for a batch of price observations."""

import logging
import statistics
from decimal import Decimal
from typing import Optional, Sequence, TypeVar

from pricescan import metrics
from pricescan.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def median_price(prices: Sequence[Decimal]) -> Decimal:
    """Median of a list of prices, 0 for an empty list."""
    if not prices:
        return Decimal("0")
    return Decimal(statistics.median(prices))


def filter_outliers(results: list[T], multiplier: Optional[float] = None) -> list[T]:
    """
    Drop results priced above ``multiplier`` times the batch median.

    The median is taken over the whole batch passed in. When the batch is
    empty or its median is 0 nothing is dropped. Order is preserved.

    Args:
        results: Objects with a ``price`` attribute
        multiplier: Outlier factor, defaults to ``settings.outlier_multiplier``

    Returns:
        The results that are not outliers
    """
    if not results:
        return []

    factor = Decimal(str(multiplier if multiplier is not None else settings.outlier_multiplier))
    median = median_price([Decimal(r.price) for r in results])
    if median <= 0:
        return list(results)

    ceiling = factor * median
    kept = [r for r in results if Decimal(r.price) <= ceiling]

    dropped = len(results) - len(kept)
    if dropped:
        metrics.outliers_dropped_total.inc(dropped)
        logger.info(f"Dropped {dropped} outlier(s) above {ceiling:.2f} (median {median:.2f})")
    return kept
