"""House of Niche search adapter."""

from pricescan.ingest.sources.listing import SearchListingAdapter


class HouseOfNicheAdapter(SearchListingAdapter):
    site_url = "https://www.houseofniche.com"
    search_url_template = "https://www.houseofniche.com/search?q={query}"
    default_merchant = "House of Niche"

    item_selectors = [".product-item", ".product-card", ".search-result-item"]
    title_selectors = ["h3", "h4", ".product-title", ".product-name"]
    price_selectors = [".price", ".product-price", ".current-price"]
    link_selectors = ["a"]
    availability_selectors = [".availability", ".stock-status", ".in-stock"]
    shipping_selectors = [".shipping-info", ".delivery-info"]
