"""Confidence scoring of scraped listings against a normalized product."""

import logging
import re
import unicodedata
from dataclasses import dataclass
from difflib import SequenceMatcher

from pricescan.domain import NormalizedProduct

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PenaltyRule:
    pattern: str
    penalty: float


PENALTY_RULES = [
    PenaltyRule("tester", 0.3),
    PenaltyRule("gift set", 0.4),
    PenaltyRule("giftset", 0.4),
    PenaltyRule("bundle", 0.3),
    PenaltyRule("refill", 0.2),
    PenaltyRule("sample", 0.5),
    PenaltyRule("mini", 0.1),
    PenaltyRule("travel", 0.1),
]

# Words that carry no identity for a fragrance/cosmetics listing
COMMON_WORDS = {
    "the", "and", "for", "with", "de", "het", "een", "voor", "met", "en",
    "pour", "la", "le", "les", "edp", "edt", "eau", "parfum", "toilette",
    "spray", "vaporisateur", "ml",
}

EAN_BAND = (0.9, 1.0)
BRAND_BAND = (0.5, 0.8)
WEAK_CEILING = 0.49
SIZE_BONUS = 0.05


def _fold(text: str) -> str:
    """Lowercase and strip accents."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _words(text: str) -> list[str]:
    return re.findall(r"[a-z0-9]+", _fold(text))


def _tokens(text: str) -> list[str]:
    return [t for t in _words(text) if t not in COMMON_WORDS]


def title_similarity(product_name: str, listing_title: str) -> float:
    """
    Similarity in [0, 1] between a product name and a listing title.

    The larger of a sequence ratio over the cleaned strings and the share of
    product-name tokens that appear in the title.
    """
    name_tokens = _tokens(product_name)
    title_tokens = _tokens(listing_title)
    if not name_tokens or not title_tokens:
        return 0.0

    ratio = SequenceMatcher(None, " ".join(name_tokens), " ".join(title_tokens)).ratio()
    title_set = set(title_tokens)
    coverage = sum(1 for t in name_tokens if t in title_set) / len(name_tokens)
    return max(ratio, coverage)


def brand_matches(brand: str, listing_title: str) -> bool:
    brand_tokens = _tokens(brand) or _words(brand)
    if not brand_tokens:
        return False
    title = " ".join(_words(listing_title))
    if " ".join(brand_tokens) in title:
        return True
    # Tolerate small spelling differences
    title_words = title.split()
    window = len(brand_tokens)
    for i in range(len(title_words) - window + 1):
        candidate = " ".join(title_words[i:i + window])
        if SequenceMatcher(None, " ".join(brand_tokens), candidate).ratio() >= 0.85:
            return True
    return False


def ean_matches(ean: str | None, listing_title: str, url: str = "") -> bool:
    if not ean:
        return False
    digits = re.sub(r"\D", "", f"{listing_title} {url}")
    return ean in digits


def size_matches(variant_size: str | None, listing_title: str) -> bool:
    if not variant_size:
        return False
    match = re.match(r"(\d+(?:\.\d+)?)\s*([a-z]+)", variant_size.lower())
    if not match:
        return False
    number, unit = match.groups()
    pattern = rf"(?<![\d.,]){re.escape(number)}(?:[.,]0+)?\s*{re.escape(unit)}\b"
    return re.search(pattern, listing_title.lower()) is not None


def penalty_for(listing_title: str) -> float:
    lowered = listing_title.lower()
    return sum(rule.penalty for rule in PENALTY_RULES if rule.pattern in lowered)


def score_listing(product: NormalizedProduct, listing_title: str, url: str = "") -> float:
    """
    Confidence that a listing is the queried product.

    - EAN found in the title or URL: 0.9 to 1.0
    - Brand in the title plus a similar title: 0.5 to 0.8
    - Anything else: below 0.5

    A matching size raises the score within its band; penalty words (tester,
    sample, gift set and so on) lower it.
    """
    similarity = title_similarity(product.product_name, listing_title)

    if ean_matches(product.ean, listing_title, url):
        low, high = EAN_BAND
        return round(low + (high - low) * similarity, 4)

    sized = size_matches(product.variant_size, listing_title)
    penalty = penalty_for(listing_title)

    if brand_matches(product.brand, listing_title) and similarity >= 0.3:
        low, high = BRAND_BAND
        score = low + (high - low) * similarity
        if sized:
            score += SIZE_BONUS
        score = min(score, high) - penalty
    else:
        score = WEAK_CEILING * similarity
        if sized:
            score += SIZE_BONUS
        score = min(score, WEAK_CEILING) - penalty

    return round(max(0.0, min(1.0, score)), 4)
