"""Exchange rate lookup and conversion with an in-memory cache."""

import logging
import time
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from pricescan.config import settings
from pricescan.domain import CurrencyRate, ScrapingError

logger = logging.getLogger(__name__)


class ExchangeRateNotFound(ScrapingError):
    """No stored rate for a currency pair, in either direction."""

    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(f"Exchange rate not found for {from_currency} to {to_currency}")


class CurrencyConverter:
    """
    Converts amounts between currencies using rates stored by the repository.

    Rates are cached per (from, to, date) for ``settings.exchange_rate_cache_hours``.
    If only the reverse pair is stored its inverse is used.
    """

    def __init__(self, repository, cache_hours: Optional[float] = None, clock=time.monotonic):
        self.repository = repository
        hours = settings.exchange_rate_cache_hours if cache_hours is None else cache_hours
        self.cache_ttl = hours * 3600
        self._clock = clock
        self._cache: dict[tuple[str, str, Optional[date]], tuple[Decimal, float]] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    async def get_exchange_rate(
        self, from_currency: str, to_currency: str, on: Optional[date] = None
    ) -> Decimal:
        """
        Rate to multiply a ``from_currency`` amount by to get ``to_currency``.

        Raises:
            ExchangeRateNotFound: If neither the pair nor its reverse is stored
        """
        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        if from_currency == to_currency:
            return Decimal("1")

        key = (from_currency, to_currency, on)
        cached = self._cache.get(key)
        if cached is not None:
            rate, stored_at = cached
            if self._clock() - stored_at < self.cache_ttl:
                return rate

        stored = await self.repository.find_exchange_rate(from_currency, to_currency, on)
        if stored is not None:
            rate = Decimal(stored.rate)
        else:
            reverse = await self.repository.find_exchange_rate(to_currency, from_currency, on)
            if reverse is None or Decimal(reverse.rate) == 0:
                raise ExchangeRateNotFound(from_currency, to_currency)
            rate = Decimal("1") / Decimal(reverse.rate)

        self._cache[key] = (rate, self._clock())
        return rate

    async def convert(
        self,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
        on: Optional[date] = None,
    ) -> Decimal:
        rate = await self.get_exchange_rate(from_currency, to_currency, on)
        return Decimal(amount) * rate

    async def update_exchange_rates(self, client: httpx.AsyncClient | None = None) -> int:
        """
        Pull the latest rates for the supported currencies and store them.

        Each supported currency is fetched as a base against all the others.
        A failing currency is logged and skipped.

        Returns:
            Number of rates stored
        """
        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)

        stored = 0
        currencies = [c.upper() for c in settings.supported_currencies]
        try:
            for base in currencies:
                targets = [c for c in currencies if c != base]
                try:
                    response = await client.get(
                        settings.exchange_rate_api_url,
                        params={"from": base, "to": ",".join(targets)},
                    )
                    response.raise_for_status()
                    payload = response.json()
                except (httpx.HTTPError, ValueError) as e:
                    logger.warning(f"Failed to fetch exchange rates for {base}: {e}")
                    continue

                rate_date = _parse_date(payload.get("date"))
                for target, value in (payload.get("rates") or {}).items():
                    try:
                        rate = Decimal(str(value))
                    except InvalidOperation:
                        logger.warning(f"Skipping invalid rate {base}->{target}: {value!r}")
                        continue
                    await self.repository.save_exchange_rate(
                        CurrencyRate(
                            from_currency=base,
                            to_currency=target.upper(),
                            rate=rate,
                            date=rate_date,
                            source="api",
                        )
                    )
                    stored += 1
        finally:
            if owns_client:
                await client.aclose()

        self.clear_cache()
        logger.info(f"Stored {stored} exchange rates")
        return stored


def _parse_date(value: Optional[str]) -> date:
    if value:
        try:
            return datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError:
            logger.warning(f"Unexpected rate date {value!r}, using today")
    return datetime.utcnow().date()
