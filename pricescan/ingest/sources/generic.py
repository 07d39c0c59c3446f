"""Adapter for any source described entirely by its configuration."""

from pricescan.ingest.base import ScraperInitError
from pricescan.ingest.sources.listing import SearchListingAdapter


class GenericSelectorAdapter(SearchListingAdapter):
    """
    Search-page adapter driven by ``config.selectors``.

    Requires ``searchUrl`` (with a ``{query}`` placeholder), ``item``,
    ``title`` and ``price``; ``link``, ``merchant``, ``availability`` and
    ``shipping`` are optional.
    """

    REQUIRED_KEYS = ("searchUrl", "item", "title", "price")

    def validate_config(self) -> None:
        missing = [key for key in self.REQUIRED_KEYS if not self.config.selectors.get(key)]
        if missing:
            raise ScraperInitError(self.name, f"missing selector config: {', '.join(missing)}")
        if "{query}" not in self.config.selectors["searchUrl"]:
            raise ScraperInitError(self.name, "searchUrl must contain a {query} placeholder")

    @property
    def site_url(self) -> str:
        return self.source.base_url

    @property
    def default_merchant(self) -> str:
        return self.source.name
