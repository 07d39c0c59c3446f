"""Aggregate figures over stored price results."""

import logging
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pricescan.config import settings
from pricescan.currency.converter import ExchangeRateNotFound
from pricescan.detect.margin import margin_for
from pricescan.domain import ResultFilter

logger = logging.getLogger(__name__)


@dataclass
class ResultAnalytics:
    total_results: int = 0
    average_price: float = 0.0
    average_confidence: float = 0.0
    high_confidence_count: int = 0
    opportunities_count: int = 0
    sources_count: int = 0
    products_count: int = 0
    average_margin: Optional[float] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "totalResults": data["total_results"],
            "averagePrice": data["average_price"],
            "averageConfidence": data["average_confidence"],
            "highConfidenceCount": data["high_confidence_count"],
            "opportunitiesCount": data["opportunities_count"],
            "sourcesCount": data["sources_count"],
            "productsCount": data["products_count"],
            "averageMargin": data["average_margin"],
        }


def _round(value: Decimal, places: str) -> float:
    return float(value.quantize(Decimal(places), rounding=ROUND_HALF_UP))


async def calculate_analytics(
    repository,
    result_filter: ResultFilter | None = None,
    converter=None,
) -> ResultAnalytics:
    """
    Summarize the results matching a filter.

    Rows whose product has no positive wholesale price, or whose price cannot
    be converted into the product currency, are left out of the margin
    figures but still count everywhere else. Reading is side-effect free, so
    repeated calls over unchanged data return the same figures.
    """
    rows = await repository.find_result_rows(result_filter)
    if not rows:
        return ResultAnalytics()

    high = settings.high_confidence_threshold
    target = Decimal(str(settings.margin_alert_threshold_percent))

    price_total = Decimal("0")
    confidence_total = Decimal("0")
    high_confidence = 0
    sources = set()
    products = set()
    margins: list[Decimal] = []
    skipped = 0

    for row in rows:
        result = row.result
        price_total += Decimal(result.price)
        confidence_total += Decimal(str(result.confidence_score))
        if result.confidence_score >= high:
            high_confidence += 1
        sources.add(result.source_id)
        products.add(result.normalized_product_id)

        try:
            margin = await margin_for(result, row.wholesale_price, row.product_currency, converter)
        except ExchangeRateNotFound:
            skipped += 1
            continue
        if margin is not None:
            margins.append(margin)

    if skipped:
        logger.debug(f"Excluded {skipped} result(s) without an exchange rate from margin figures")

    count = len(rows)
    return ResultAnalytics(
        total_results=count,
        average_price=_round(price_total / count, "0.01"),
        average_confidence=_round(confidence_total / count, "0.0001"),
        high_confidence_count=high_confidence,
        opportunities_count=sum(1 for m in margins if m >= target),
        sources_count=len(sources),
        products_count=len(products),
        average_margin=_round(sum(margins, Decimal("0")) / len(margins), "0.1") if margins else None,
    )
