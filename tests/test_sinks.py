"""Tests for the alerting result sink."""

from decimal import Decimal

import pytest

from pricescan.domain import NormalizedProduct, PriceScrapingResult
from pricescan.worker.sinks import AlertingResultSink


class FlakyRepository:
    """Stores results, but product lookups or alert writes can be made to fail."""

    def __init__(self, product=None, product_error=None, alert_error=None):
        self.product = product
        self.product_error = product_error
        self.alert_error = alert_error
        self.results: list[PriceScrapingResult] = []
        self.alerts = []

    async def save_results(self, results):
        self.results.extend(results)
        return len(results)

    async def get_product(self, product_id):
        if self.product_error is not None:
            raise self.product_error
        return self.product

    async def create_alert(self, alert):
        if self.alert_error is not None:
            raise self.alert_error
        self.alerts.append(alert)
        return alert


@pytest.fixture
def product():
    return NormalizedProduct(
        id="prod-1",
        brand="Chanel",
        product_name="No 5 Eau De Parfum",
        wholesale_price=Decimal("10.00"),
        currency="EUR",
    )


def make_result(price="20.00"):
    return PriceScrapingResult(
        normalized_product_id="prod-1",
        source_id="src-bol",
        product_title="Chanel No 5 EDP",
        price=Decimal(price),
        confidence_score=0.9,
    )


@pytest.mark.asyncio
async def test_alert_is_created_after_save(product):
    repository = FlakyRepository(product=product)

    saved = await AlertingResultSink(repository).save_results("prod-1", [make_result()])

    assert saved == 1
    assert len(repository.alerts) == 1


@pytest.mark.asyncio
async def test_product_lookup_failure_keeps_saved_results():
    repository = FlakyRepository(product_error=RuntimeError("db hiccup"))

    saved = await AlertingResultSink(repository).save_results("prod-1", [make_result()])

    assert saved == 1
    assert len(repository.results) == 1
    assert repository.alerts == []


@pytest.mark.asyncio
async def test_alert_write_failure_keeps_saved_results(product):
    repository = FlakyRepository(product=product, alert_error=RuntimeError("alerts table locked"))

    saved = await AlertingResultSink(repository).save_results("prod-1", [make_result(), make_result("25.00")])

    assert saved == 2
    assert len(repository.results) == 2
    assert repository.alerts == []


@pytest.mark.asyncio
async def test_missing_product_skips_alerts():
    repository = FlakyRepository(product=None)

    assert await AlertingResultSink(repository).save_results("prod-1", [make_result()]) == 1
    assert repository.alerts == []


@pytest.mark.asyncio
async def test_save_failure_still_raises():
    class BrokenRepository(FlakyRepository):
        async def save_results(self, results):
            raise RuntimeError("database unavailable")

    with pytest.raises(RuntimeError):
        await AlertingResultSink(BrokenRepository()).save_results("prod-1", [make_result()])
