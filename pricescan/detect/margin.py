"""Margin calculation and margin opportunity alerts."""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pricescan import metrics
from pricescan.config import settings
from pricescan.domain import AlertType, NormalizedProduct, PriceScrapingResult, ScrapingAlert

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
TWO_PLACES = Decimal("0.01")


@dataclass
class AlertOutcome:
    """Result of an alert attempt. Both fields are None when no alert was due."""

    alert: Optional[ScrapingAlert] = None
    error: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.alert is not None


def calculate_margin(retail_price: Decimal, wholesale_price: Optional[Decimal]) -> Optional[Decimal]:
    """
    Margin of a retail price over the wholesale price, in percent.

    Returns:
        Percentage rounded to two places, or None when the wholesale price is
        missing or not positive
    """
    if wholesale_price is None:
        return None
    wholesale = Decimal(wholesale_price)
    if wholesale <= 0:
        return None
    margin = (Decimal(retail_price) - wholesale) / wholesale * HUNDRED
    return margin.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


async def margin_for(
    result: PriceScrapingResult,
    wholesale_price: Optional[Decimal],
    product_currency: str,
    converter=None,
) -> Optional[Decimal]:
    """
    Margin of a stored result against its product's wholesale price.

    The retail price is converted into the product currency when the two
    differ and a converter is given.

    Raises:
        ExchangeRateNotFound: If the conversion rate is unknown
    """
    price = Decimal(result.price)
    if converter is not None and result.currency and product_currency and (
        result.currency.upper() != product_currency.upper()
    ):
        price = await converter.convert(price, result.currency, product_currency)
    return calculate_margin(price, wholesale_price)


def format_alert_message(margin: Decimal, threshold: float) -> str:
    return f"Margin {margin:.1f}% >= {threshold:g}%"


async def create_margin_alert(
    repository,
    result: PriceScrapingResult,
    product: NormalizedProduct,
    converter=None,
    threshold: Optional[float] = None,
) -> AlertOutcome:
    """
    Raise a margin opportunity alert when the result clears the target margin.

    Never raises. Conversion or storage failures are returned in
    ``AlertOutcome.error`` for the caller to log.
    """
    target = settings.margin_alert_threshold_percent if threshold is None else threshold

    try:
        margin = await margin_for(result, product.wholesale_price, product.currency, converter)
    except Exception as e:
        metrics.record_alert(success=False)
        return AlertOutcome(error=f"Margin for product {product.id} not computable: {e}")

    if margin is None or margin < Decimal(str(target)):
        return AlertOutcome()

    alert = ScrapingAlert(
        normalized_product_id=result.normalized_product_id,
        message=format_alert_message(margin, target),
        current_margin=margin,
        target_margin=Decimal(str(target)),
        alert_type=AlertType.MARGIN_OPPORTUNITY,
    )
    try:
        stored = await repository.create_alert(alert)
    except Exception as e:
        metrics.record_alert(success=False)
        return AlertOutcome(error=f"Failed to store alert for product {product.id}: {e}")

    metrics.record_alert(success=True)
    logger.info(f"Margin alert for product {product.id}: {alert.message}")
    return AlertOutcome(alert=stored)
