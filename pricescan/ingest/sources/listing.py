"""Selector-driven parsing shared by the search-page adapters."""

import logging
from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus, urljoin

from selectolax.parser import HTMLParser, Node

from pricescan.domain import NormalizedProduct
from pricescan.ingest.base import Observation, ScraperAdapter
from pricescan.ingest.fetchers.static import (
    node_text,
    parse_price_text,
    parse_selectors,
    select_all,
    try_selectors,
)

logger = logging.getLogger(__name__)


class SearchListingAdapter(ScraperAdapter):
    """
    Adapter for sites whose search page lists products as repeated cards.

    Subclasses set the search URL template and selector lists. A source may
    override any selector list through ``config.selectors`` using the keys
    ``item``, ``title``, ``price``, ``link``, ``merchant``, ``availability``
    and ``shipping``.
    """

    site_url: str = ""
    search_url_template: str = ""  # "{query}" is replaced with the quoted search term
    currency: str = "EUR"
    default_merchant: str = ""
    price_incl_vat: Optional[bool] = True

    item_selectors: list[str] = []
    title_selectors: list[str] = []
    price_selectors: list[str] = []
    link_selectors: list[str] = ["a"]
    merchant_selectors: list[str] = []
    availability_selectors: list[str] = []
    shipping_selectors: list[str] = []

    # Availability text containing any of these marks the listing as unavailable
    unavailable_words = ["niet op voorraad", "uitverkocht", "out of stock", "indisponible", "rupture"]
    free_shipping_words = ["gratis verzending", "gratis bezorgd", "livraison gratuite", "free shipping"]

    def _selectors(self, key: str, default: list[str]) -> list[str]:
        override = self.config.selectors.get(key)
        return parse_selectors(override) if override else default

    @property
    def result_selectors(self) -> list[str]:
        return self._selectors("item", self.item_selectors)

    def search_url_for(self, query: str) -> str:
        template = self.config.selectors.get("searchUrl") or self.search_url_template
        return template.replace("{query}", quote_plus(query))

    def build_search_url(self, product: NormalizedProduct) -> str:
        return self.search_url_for(product.search_term)

    def parse_results(self, html: str) -> list[Observation]:
        parser = HTMLParser(html)
        items = select_all(parser, self.result_selectors)
        listings = []
        for item in items:
            listing = self.parse_item(item)
            if listing is not None:
                listings.append(listing)
        logger.debug(f"{self.name}: parsed {len(listings)} of {len(items)} result cards")
        return listings

    def parse_item(self, item: Node) -> Optional[Observation]:
        _, title_node = try_selectors(item, self._selectors("title", self.title_selectors))
        title = node_text(title_node)
        if not title:
            return None

        price = self.extract_price(item)
        if price is None:
            return None

        url = ""
        _, link_node = try_selectors(item, self._selectors("link", self.link_selectors))
        if link_node is not None:
            href = link_node.attributes.get("href") or ""
            url = urljoin(self.site_url or self.source.base_url, href) if href else ""

        merchant = self.default_merchant or self.name
        if self.merchant_selectors or self.config.selectors.get("merchant"):
            _, merchant_node = try_selectors(item, self._selectors("merchant", self.merchant_selectors))
            merchant = node_text(merchant_node) or merchant

        availability = True
        _, availability_node = try_selectors(
            item, self._selectors("availability", self.availability_selectors)
        )
        if availability_node is not None:
            text = node_text(availability_node).lower()
            availability = not any(word in text for word in self.unavailable_words)

        return Observation(
            title=title,
            price=price,
            url=url,
            merchant=merchant,
            currency=self.currency,
            price_incl_vat=self.price_incl_vat if self.config.include_vat else None,
            shipping_cost=self.extract_shipping(item) if self.config.include_shipping else None,
            availability=availability,
        )

    def extract_price(self, item: Node) -> Optional[Decimal]:
        _, price_node = try_selectors(item, self._selectors("price", self.price_selectors))
        if price_node is None:
            return None
        return parse_price_text(price_node.attributes.get("content") or node_text(price_node))

    def extract_shipping(self, item: Node) -> Optional[Decimal]:
        _, node = try_selectors(item, self._selectors("shipping", self.shipping_selectors))
        if node is None:
            return None
        text = node_text(node)
        if any(word in text.lower() for word in self.free_shipping_words):
            return Decimal("0.00")
        return parse_price_text(text)
