"""Result sink that persists observations and raises margin alerts."""

import logging
from collections import defaultdict

from pricescan import metrics
from pricescan.db.repository import ResultSink, SqlAlchemyRepository
from pricescan.detect.margin import create_margin_alert
from pricescan.domain import PriceScrapingResult

logger = logging.getLogger(__name__)


class AlertingResultSink(ResultSink):
    """
    Store a product's results, then check each one for a margin opportunity.

    Alert failures never fail the save; they are logged and dropped.
    """

    def __init__(self, repository: SqlAlchemyRepository, converter=None):
        self.repository = repository
        self.converter = converter

    async def save_results(self, product_id: str, results: list[PriceScrapingResult]) -> int:
        saved = await self.repository.save_results(results)
        metrics.results_saved_total.inc(saved)

        try:
            await self._raise_alerts(product_id, results)
        except Exception as e:
            metrics.record_alert(success=False)
            logger.warning(f"Margin alerts for product {product_id} skipped: {e}")
        return saved

    async def _raise_alerts(self, product_id: str, results: list[PriceScrapingResult]) -> None:
        product = await self.repository.get_product(product_id)
        if product is None:
            logger.warning(f"Product {product_id} not found, skipping margin alerts")
            return

        for result in results:
            outcome = await create_margin_alert(self.repository, result, product, self.converter)
            if outcome.error:
                logger.warning(outcome.error)

    async def save_batch(self, results: list[PriceScrapingResult]) -> int:
        """Save results for several products, grouped per product."""
        grouped: dict[str, list[PriceScrapingResult]] = defaultdict(list)
        for result in results:
            grouped[result.normalized_product_id].append(result)

        saved = 0
        for product_id, product_results in grouped.items():
            saved += await self.save_results(product_id, product_results)
        return saved
