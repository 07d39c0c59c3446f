"""Ranking of one product's price results across sources."""

from decimal import Decimal
from typing import Mapping, Optional

from pricescan.config import settings
from pricescan.domain import PriceScrapingResult


def rank_results(
    results: list[PriceScrapingResult],
    confidence_threshold: Optional[float] = None,
    source_priorities: Mapping[str, int] | None = None,
) -> list[PriceScrapingResult]:
    """
    Order results best first and flag the best one as the lowest price.

    Sort keys, in order: confidence at or above the threshold, confidence,
    source priority (higher first), then price (lower first). Exactly one
    result carries ``is_lowest_price`` when the list is not empty.
    """
    threshold = (
        settings.default_confidence_threshold
        if confidence_threshold is None
        else confidence_threshold
    )
    priorities = source_priorities or {}

    ranked = sorted(
        results,
        key=lambda r: (
            r.confidence_score < threshold,
            -r.confidence_score,
            -priorities.get(r.source_id, 0),
            Decimal(r.price),
        ),
    )
    for index, result in enumerate(ranked):
        result.is_lowest_price = index == 0
    return ranked
