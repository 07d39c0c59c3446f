"""Tests for outlier filtering, ranking, margins and analytics."""

from datetime import datetime
from decimal import Decimal

import pytest

from pricescan.currency.converter import CurrencyConverter
from pricescan.detect.analytics import calculate_analytics
from pricescan.detect.margin import calculate_margin, create_margin_alert, format_alert_message
from pricescan.detect.outliers import filter_outliers, median_price
from pricescan.detect.ranking import rank_results
from pricescan.domain import CurrencyRate, PriceScrapingResult, ResultFilter


def result(price, confidence=0.8, source_id="src-1", product_id="prod-1", currency="EUR"):
    return PriceScrapingResult(
        normalized_product_id=product_id,
        source_id=source_id,
        product_title="Chanel No 5 100ml",
        price=Decimal(str(price)),
        currency=currency,
        confidence_score=confidence,
    )


def test_outlier_above_three_times_median_is_dropped():
    results = [result(p) for p in (10, 11, 12, 9, 500)]

    kept = filter_outliers(results, multiplier=3)

    assert [r.price for r in kept] == [Decimal("10"), Decimal("11"), Decimal("12"), Decimal("9")]


def test_outlier_filter_keeps_price_at_the_limit():
    results = [result(p) for p in (10, 10, 30)]
    assert len(filter_outliers(results, multiplier=3)) == 3


def test_outlier_filter_edge_cases():
    assert filter_outliers([]) == []
    zeros = [result(0), result(0), result(5)]
    assert filter_outliers(zeros, multiplier=3) == zeros
    assert median_price([]) == Decimal("0")


def test_ranking_flags_exactly_one_lowest_price():
    results = [
        result(25, confidence=0.9),
        result(19, confidence=0.6),
        result(22, confidence=0.9, source_id="src-2"),
    ]

    ranked = rank_results(results, confidence_threshold=0.7, source_priorities={"src-2": 5})

    assert sum(1 for r in ranked if r.is_lowest_price) == 1
    # Confident results come first even when a low-confidence one is cheaper
    assert ranked[0].source_id == "src-2"
    assert ranked[-1].price == Decimal("19")


def test_ranking_breaks_ties_on_price():
    ranked = rank_results([result(30), result(20), result(25)], confidence_threshold=0.5)
    assert [r.price for r in ranked] == [Decimal("20"), Decimal("25"), Decimal("30")]
    assert ranked[0].is_lowest_price


def test_ranking_empty_list():
    assert rank_results([]) == []


def test_calculate_margin():
    assert calculate_margin(Decimal("100"), Decimal("80")) == Decimal("25.00")
    assert calculate_margin(Decimal("60"), Decimal("80")) == Decimal("-25.00")
    assert calculate_margin(Decimal("100"), Decimal("0")) is None
    assert calculate_margin(Decimal("100"), None) is None


def test_alert_message_format():
    assert format_alert_message(Decimal("25.00"), 20.0) == "Margin 25.0% >= 20%"


@pytest.mark.asyncio
async def test_margin_alert_created(repository, products, source):
    product = products[0]
    scraped = result(100, product_id=product.id, source_id=source.id)

    outcome = await create_margin_alert(repository, scraped, product, threshold=20)

    assert outcome.created
    assert outcome.alert.current_margin == Decimal("25.00")
    assert outcome.alert.message == "Margin 25.0% >= 20%"
    alerts = await repository.list_alerts()
    assert len(alerts) == 1
    assert alerts[0].normalized_product_id == product.id


@pytest.mark.asyncio
async def test_no_alert_below_threshold(repository, products, source):
    product = products[0]
    outcome = await create_margin_alert(
        repository, result(90, product_id=product.id), product, threshold=20
    )
    assert not outcome.created
    assert outcome.error is None
    assert await repository.list_alerts() == []


@pytest.mark.asyncio
async def test_alert_error_is_reported_not_raised(repository, products):
    product = products[0]
    converter = CurrencyConverter(repository)
    scraped = result(100, product_id=product.id, currency="GBP")

    outcome = await create_margin_alert(repository, scraped, product, converter, threshold=20)

    assert not outcome.created
    assert "not computable" in outcome.error


@pytest.mark.asyncio
async def test_analytics_over_stored_results(repository, products, source):
    chanel, dior = products
    await repository.save_results([
        result(100, confidence=0.9, product_id=chanel.id, source_id=source.id),
        result(90, confidence=0.7, product_id=chanel.id, source_id=source.id),
        result(66, confidence=0.85, product_id=dior.id, source_id=source.id),
    ])

    analytics = await calculate_analytics(repository)

    assert analytics.total_results == 3
    assert analytics.average_price == 85.33
    assert analytics.average_confidence == 0.8167
    assert analytics.high_confidence_count == 2
    assert analytics.products_count == 2
    assert analytics.sources_count == 1
    # Margins 25, 12.5 and 20 percent
    assert analytics.opportunities_count == 2
    assert analytics.average_margin == 19.2

    again = await calculate_analytics(repository)
    assert again == analytics


@pytest.mark.asyncio
async def test_analytics_skips_unconvertible_margins(repository, products, source):
    chanel = products[0]
    await repository.save_results([
        result(100, product_id=chanel.id, source_id=source.id),
        result(100, product_id=chanel.id, source_id=source.id, currency="GBP"),
    ])
    converter = CurrencyConverter(repository)

    analytics = await calculate_analytics(repository, ResultFilter(product_id=chanel.id), converter)

    assert analytics.total_results == 2
    assert analytics.average_margin == 25.0

    await repository.save_exchange_rate(
        CurrencyRate(from_currency="GBP", to_currency="EUR", rate=Decimal("1.2"), date=datetime.utcnow().date())
    )
    converter.clear_cache()
    analytics = await calculate_analytics(repository, ResultFilter(product_id=chanel.id), converter)
    # 100 GBP is 120 EUR: 50 percent
    assert analytics.average_margin == 37.5


@pytest.mark.asyncio
async def test_analytics_empty(repository):
    analytics = await calculate_analytics(repository)
    assert analytics.total_results == 0
    assert analytics.average_margin is None
    assert analytics.to_dict()["totalResults"] == 0