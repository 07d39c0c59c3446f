"""Amazon search adapters (amazon.nl, amazon.fr)."""

import logging

from pricescan.ingest.sources.listing import SearchListingAdapter

logger = logging.getLogger(__name__)


class AmazonAdapter(SearchListingAdapter):
    """Amazon search results for one marketplace domain."""

    domain = "www.amazon.nl"

    item_selectors = [
        '[data-component-type="s-search-result"]',
        ".s-result-item[data-asin]",
        "[data-asin]",
    ]
    title_selectors = [
        "h2 a span",
        "h2 span",
        ".a-size-medium span",
        ".s-title-instructions-style span",
    ]
    price_selectors = [
        ".a-price .a-offscreen",
        'span[data-a-color="price"] .a-offscreen',
        ".a-price-current .a-offscreen",
        ".a-price .a-price-whole",
    ]
    link_selectors = [
        "h2 a",
        'a[href*="/dp/"]',
        'a[href*="/gp/product/"]',
        ".a-link-normal",
    ]
    availability_selectors = [".a-color-price"]
    shipping_selectors = [".a-size-base.a-color-secondary"]
    unavailable_words = SearchListingAdapter.unavailable_words + ["niet beschikbaar", "actuellement indisponible"]

    def __init__(self, source, domain: str | None = None, **kwargs):
        super().__init__(source, **kwargs)
        if domain:
            self.domain = domain
        self.site_url = f"https://{self.domain}"
        self.search_url_template = f"https://{self.domain}/s?k={{query}}"
        self.default_merchant = "Amazon"


class AmazonNLAdapter(AmazonAdapter):
    domain = "www.amazon.nl"


class AmazonFRAdapter(AmazonAdapter):
    domain = "www.amazon.fr"
