"""Adapter registry for price source implementations."""

import logging
from typing import Optional, Type

from pricescan.domain import PriceScrapingSource
from pricescan.ingest.base import ScraperAdapter
from pricescan.ingest.sources.amazon import AmazonFRAdapter, AmazonNLAdapter
from pricescan.ingest.sources.bolcom import BolComAdapter
from pricescan.ingest.sources.generic import GenericSelectorAdapter
from pricescan.ingest.sources.houseofniche import HouseOfNicheAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry mapping source names to adapter classes."""

    # Matched against the lowercased source name, first match wins
    _adapters: list[tuple[tuple[str, ...], Type[ScraperAdapter]]] = [
        (("bol.com", "bolcom", "bol com"), BolComAdapter),
        (("amazon netherlands", "amazon nl", "amazon.nl"), AmazonNLAdapter),
        (("amazon france", "amazon fr", "amazon.fr"), AmazonFRAdapter),
        (("house of niche", "houseofniche"), HouseOfNicheAdapter),
    ]

    @classmethod
    def get_adapter_class(cls, source: PriceScrapingSource) -> Optional[Type[ScraperAdapter]]:
        """
        Adapter class for a source.

        Sources without a dedicated adapter fall back to the generic selector
        adapter when their config carries a ``searchUrl`` selector.
        """
        name = source.name.lower()
        for aliases, adapter_class in cls._adapters:
            if any(alias in name for alias in aliases):
                return adapter_class
        if source.config.selectors.get("searchUrl"):
            return GenericSelectorAdapter
        return None

    @classmethod
    def create(cls, source: PriceScrapingSource) -> Optional[ScraperAdapter]:
        """New adapter instance for a source, or None if no implementation exists."""
        adapter_class = cls.get_adapter_class(source)
        if adapter_class is None:
            logger.warning(f"No scraper implementation for source: {source.name}")
            return None
        return adapter_class(source)

    @classmethod
    def list_supported(cls) -> list[str]:
        return [aliases[0] for aliases, _ in cls._adapters]
