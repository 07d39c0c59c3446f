"""Static HTML fetching helpers for server-rendered search pages."""

import logging
import random
import re
from decimal import Decimal
from typing import List, Optional, Tuple, Union

import httpx
from selectolax.parser import HTMLParser, Node

from pricescan.config import settings
from pricescan.normalize.processor import DataNormalizer, NormalizationError

logger = logging.getLogger(__name__)

# User agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "nl-NL,nl;q=0.9,en-US;q=0.8,en;q=0.7",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

# Page content that means we were served a bot wall instead of results
CAPTCHA_INDICATORS = [
    "enter the characters",
    "prove you're not a robot",
    "robot check",
    "verify you are a human",
    "g-recaptcha",
    "/errors/validatecaptcha",
]

PRICE_TOKEN = re.compile(r"\d[\d.,]*")


def build_client(
    headers: dict[str, str] | None = None,
    proxy_url: str | None = None,
    timeout: float | None = None,
) -> httpx.AsyncClient:
    """Create an HTTP client with browser-like headers."""
    merged = {"User-Agent": random.choice(USER_AGENTS), **DEFAULT_HEADERS}
    merged.update(headers or {})
    return httpx.AsyncClient(
        timeout=timeout or settings.http_timeout_seconds,
        follow_redirects=True,
        headers=merged,
        proxy=proxy_url or None,
    )


def parse_selectors(selector_input: Union[str, List[str], None]) -> List[str]:
    """
    Parse selector input into a list of individual selectors.

    Args:
        selector_input: Single selector, comma-separated selectors, or list

    Returns:
        List of individual selectors
    """
    if selector_input is None:
        return []

    if isinstance(selector_input, list):
        return [s.strip() for s in selector_input if s.strip()]

    return [s.strip() for s in selector_input.split(",") if s.strip()]


def try_selectors(
    parser: Union[HTMLParser, Node],
    selectors: List[str],
) -> Tuple[Optional[str], Optional[Node]]:
    """
    Try multiple selectors and return the first one that matches.

    Returns:
        Tuple of (successful_selector, element) or (None, None)
    """
    for i, selector in enumerate(selectors):
        elem = parser.css_first(selector)
        if elem is not None:
            logger.debug(f"Selector {i+1}/{len(selectors)} matched: {selector[:50]}")
            return selector, elem
    return None, None


def select_all(parser: HTMLParser, selectors: List[str]) -> List[Node]:
    """Nodes for the first selector that matches anything."""
    for selector in selectors:
        nodes = parser.css(selector)
        if nodes:
            return nodes
    return []


def node_text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return " ".join(node.text(separator=" ", strip=True).split())


def parse_price_text(price_text: str) -> Optional[Decimal]:
    """
    Parse the first price in a text such as "€ 45,99" or "45.99 EUR".

    Returns:
        Decimal price, or None when no price is present
    """
    if not price_text:
        return None
    match = PRICE_TOKEN.search(price_text)
    if not match:
        return None
    try:
        price = DataNormalizer.parse_number(match.group(0).rstrip(".,"))
    except NormalizationError:
        return None
    if price <= 0:
        return None
    return price.quantize(Decimal("0.01"))


def looks_blocked(html: str) -> bool:
    """True when the page is a captcha or robot check."""
    lowered = html[:20000].lower()
    return any(indicator in lowered for indicator in CAPTCHA_INDICATORS)
