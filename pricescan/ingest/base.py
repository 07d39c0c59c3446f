"""Base scraper adapter interface for external price sources."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

import httpx

from pricescan import metrics
from pricescan.config import settings
from pricescan.domain import NormalizedProduct, PriceScrapingSource, ScrapingError
from pricescan.ingest.fetchers.headless import HeadlessRenderer, RenderError, RenderTimeout
from pricescan.ingest.fetchers.static import build_client, looks_blocked
from pricescan.ingest.matching import score_listing
from pricescan.ingest.rate_limiter import RateLimiter, Sleep

logger = logging.getLogger(__name__)


class FailureReason(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    BLOCKED = "blocked"
    NO_MATCH = "no_match"
    PARSE = "parse"


class ScraperInitError(ScrapingError):
    """An adapter could not be brought up for its source."""

    def __init__(self, source_name: str, reason: str):
        self.source_name = source_name
        self.reason = reason
        super().__init__(f"Scraper initialization failed for {source_name}: {reason}")


class SearchFailed(Exception):
    """A single search attempt failed."""

    def __init__(self, reason: FailureReason, message: str, transient: bool = False):
        self.reason = reason
        self.transient = transient
        super().__init__(message)


@dataclass
class Observation:
    """One candidate listing found by an adapter."""

    title: str
    price: Decimal
    url: str = ""
    merchant: str = ""
    currency: str = "EUR"
    price_incl_vat: Optional[bool] = None
    shipping_cost: Optional[Decimal] = None
    availability: bool = True
    confidence: float = 0.0


class ScraperAdapter(ABC):
    """
    One adapter per price source.

    ``search`` is a template method: throttle, fetch (retrying transient
    failures up to ``max_retries`` times with exponential backoff), parse,
    apply the allow/deny domain lists, then score each listing. It never
    raises; failures are counted in ``failures`` and the latest reason is kept
    in ``last_error``.
    """

    # Selectors to wait for when the page is rendered in a headless browser
    result_selectors: list[str] = []

    def __init__(
        self,
        source: PriceScrapingSource,
        client: httpx.AsyncClient | None = None,
        renderer: HeadlessRenderer | None = None,
        sleep: Sleep = asyncio.sleep,
        clock=time.monotonic,
    ):
        self.source = source
        self.config = source.config
        self.max_retries = settings.default_max_retries
        self._client = client
        self._owns_client = client is None
        self._renderer = renderer
        self._sleep = sleep
        self._rate_limiter = RateLimiter(sleep=sleep, clock=clock)

        self.initialized = False
        self.failures: Counter[str] = Counter()
        self.last_error: Optional[str] = None
        self.consecutive_failures = 0
        self.searches = 0

    @property
    def name(self) -> str:
        return self.source.name

    @property
    def min_interval(self) -> float:
        """Seconds between two calls of this adapter."""
        return (self.source.rate_limit + self.config.delay_ms) / 1000

    async def initialize(self) -> None:
        """
        Prepare the adapter for searching.

        Raises:
            ScraperInitError: If the source cannot be used
        """
        if self.initialized:
            return
        try:
            self.validate_config()
            if self.config.use_headless:
                if self._renderer is None:
                    self._renderer = HeadlessRenderer(
                        headers=self.config.headers, proxy_url=self.config.proxy_url
                    )
                await self._renderer.start()
            elif self._client is None:
                self._client = build_client(self.config.headers, self.config.proxy_url)
        except ScraperInitError:
            raise
        except Exception as e:
            await self.shutdown()
            raise ScraperInitError(self.name, str(e)) from e

        self.initialized = True
        logger.info(
            f"Initialized scraper for {self.name} "
            f"({'headless' if self.config.use_headless else 'static'})"
        )

    def validate_config(self) -> None:
        """Raise ScraperInitError when the source configuration is unusable."""

    async def shutdown(self) -> None:
        """Release HTTP clients and browsers. Never raises."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.error(f"Error closing HTTP client for {self.name}: {e}")
            self._client = None
        if self._renderer is not None:
            try:
                await self._renderer.close()
            except Exception as e:
                logger.error(f"Error closing browser for {self.name}: {e}")
            self._renderer = None
        self.initialized = False

    async def search(self, product: NormalizedProduct) -> list[Observation]:
        """Find candidate listings for a product. Returns [] on any failure."""
        self.searches += 1
        started = time.perf_counter()
        try:
            await self._rate_limiter.acquire_with_interval(self.name, self.min_interval)
            html = await self._fetch_with_retries(self.build_search_url(product))
            try:
                listings = self.parse_results(html)
            except Exception as e:
                raise SearchFailed(FailureReason.PARSE, f"Could not parse results: {e}") from e

            observations = []
            for listing in listings[: settings.max_results_per_search]:
                if not self.domain_allowed(listing.url):
                    continue
                listing.confidence = score_listing(product, listing.title, listing.url)
                observations.append(listing)

            if not observations:
                raise SearchFailed(FailureReason.NO_MATCH, f"No listings for '{product.search_term}'")

        except SearchFailed as e:
            self.record_failure(e.reason, str(e), time.perf_counter() - started)
            return []
        except Exception as e:
            logger.exception(f"Unexpected error in {self.name} search")
            self.record_failure(FailureReason.PARSE, repr(e), time.perf_counter() - started)
            return []

        self.consecutive_failures = 0
        metrics.record_search_success(self.name, time.perf_counter() - started, len(observations))
        logger.debug(f"{self.name}: {len(observations)} listings for '{product.search_term}'")
        return observations

    def record_failure(self, reason: FailureReason, message: str, duration: float) -> None:
        self.failures[reason.value] += 1
        self.last_error = f"{reason.value}: {message}"
        # Not finding a product says nothing about the health of the source
        if reason != FailureReason.NO_MATCH:
            self.consecutive_failures += 1
        metrics.record_search_error(self.name, reason.value, duration)
        logger.info(f"{self.name} search failed ({reason.value}): {message}")

    async def _fetch_with_retries(self, url: str) -> str:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.fetch(url)
            except SearchFailed as e:
                if not e.transient or attempt > self.max_retries:
                    raise
                wait = await self._rate_limiter.wait_for_backoff(attempt)
                logger.warning(
                    f"Retry {attempt}/{self.max_retries} for {self.name} after {wait:.1f}s: {e}"
                )

    async def fetch(self, url: str) -> str:
        """
        Fetch a search page.

        Raises:
            SearchFailed: Transient for timeouts, transport errors, 429 and 5xx
        """
        if self.config.use_headless and self._renderer is not None:
            try:
                html = await self._renderer.render(url, self.result_selectors)
            except RenderTimeout as e:
                raise SearchFailed(FailureReason.TIMEOUT, str(e), transient=True) from e
            except RenderError as e:
                raise SearchFailed(FailureReason.NETWORK, str(e), transient=True) from e
        else:
            if self._client is None:
                raise SearchFailed(FailureReason.NETWORK, f"{self.name} is not initialized")
            try:
                response = await self._client.get(url)
            except httpx.TimeoutException as e:
                raise SearchFailed(FailureReason.TIMEOUT, f"Timed out fetching {url}", transient=True) from e
            except httpx.TransportError as e:
                raise SearchFailed(FailureReason.NETWORK, f"Transport error: {e}", transient=True) from e

            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After", "")
                if retry_after.isdigit():
                    self._rate_limiter.set_cooldown(self.name, float(retry_after))
                raise SearchFailed(FailureReason.BLOCKED, "HTTP 429 Too Many Requests", transient=True)
            if response.status_code >= 500:
                raise SearchFailed(
                    FailureReason.NETWORK, f"HTTP {response.status_code}", transient=True
                )
            if response.status_code == 403:
                raise SearchFailed(FailureReason.BLOCKED, "HTTP 403 Forbidden")
            if response.status_code >= 400:
                raise SearchFailed(FailureReason.NETWORK, f"HTTP {response.status_code}")
            html = response.text

        if looks_blocked(html):
            raise SearchFailed(FailureReason.BLOCKED, "Bot check page served")
        return html

    def domain_allowed(self, url: str) -> bool:
        """Apply allowDomains/denyDomains by host suffix. Relative or empty URLs pass."""
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return not self.config.allow_domains

        def matches(domain: str) -> bool:
            domain = domain.lower().lstrip(".")
            return host == domain or host.endswith("." + domain)

        if any(matches(d) for d in self.config.deny_domains):
            return False
        if self.config.allow_domains:
            return any(matches(d) for d in self.config.allow_domains)
        return True

    def health(self) -> dict:
        return {
            "source": self.name,
            "sourceId": self.source.id,
            "initialized": self.initialized,
            "searches": self.searches,
            "failures": dict(self.failures),
            "consecutiveFailures": self.consecutive_failures,
            "lastError": self.last_error,
            "healthy": self.initialized
            and self.consecutive_failures < settings.adapter_failure_limit,
        }

    @abstractmethod
    def build_search_url(self, product: NormalizedProduct) -> str:
        """URL of the source's search page for a product."""
        pass

    @abstractmethod
    def parse_results(self, html: str) -> list[Observation]:
        """Extract listings from a search page, without confidence."""
        pass
