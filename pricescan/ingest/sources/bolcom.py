"""bol.com search adapter."""

import logging
import re
from decimal import Decimal
from typing import Optional

from selectolax.parser import Node

from pricescan.ingest.fetchers.static import node_text, parse_price_text, try_selectors
from pricescan.ingest.sources.listing import SearchListingAdapter

logger = logging.getLogger(__name__)


class BolComAdapter(SearchListingAdapter):
    """bol.com (NL) search results."""

    site_url = "https://www.bol.com"
    search_url_template = "https://www.bol.com/nl/nl/s/?searchtext={query}"
    default_merchant = "Bol.com"

    item_selectors = [
        '[data-testid="product-item"]',
        ".product-item",
        ".js_item_root",
        '[data-test="product-item"]',
        ".search-result-item",
    ]
    title_selectors = [
        '[data-testid="product-title"]',
        ".product-title",
        "h3 a",
        ".product-name",
        'a[data-test="title"]',
    ]
    price_selectors = [
        '[data-testid="price"]',
        "meta[itemprop='price']",
        ".promo-price",
        ".price",
        ".product-price",
        '[data-test="price"]',
    ]
    link_selectors = [
        'a[href*="/p/"]',
        "h3 a",
        ".product-title a",
        'a[data-test="title"]',
    ]
    merchant_selectors = ['[data-testid="seller"]', ".seller", ".merchant", ".product-seller__name"]
    availability_selectors = ['[data-testid="availability"]', ".availability", ".stock-status"]
    shipping_selectors = ['[data-testid="delivery"]', ".product-delivery"]

    def extract_price(self, item: Node) -> Optional[Decimal]:
        # bol.com renders "45<sup>99</sup>" for 45,99 and "45,-" for whole euros
        _, node = try_selectors(item, self._selectors("price", self.price_selectors))
        if node is None:
            return None
        if node.attributes.get("content"):
            return parse_price_text(node.attributes["content"])

        fraction = node.css_first("sup, .promo-price__fraction")
        if fraction is not None:
            whole = re.sub(r"\D", "", node_text(node).replace(node_text(fraction), "", 1))
            cents = re.sub(r"\D", "", node_text(fraction))
            if whole:
                cents = cents if cents else "00"
                return Decimal(f"{int(whole)}.{cents[:2].ljust(2, '0')}")
        return parse_price_text(node_text(node))
