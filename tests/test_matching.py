"""Tests for listing confidence scoring."""

from decimal import Decimal

import pytest

from pricescan.domain import NormalizedProduct
from pricescan.ingest.matching import (
    brand_matches,
    penalty_for,
    score_listing,
    size_matches,
    title_similarity,
)


@pytest.fixture
def product():
    return NormalizedProduct(
        brand="Dior",
        product_name="Sauvage Eau De Toilette",
        variant_size="100ml",
        ean="3348901250146",
        wholesale_price=Decimal("55.00"),
        currency="EUR",
    )


def test_ean_match_scores_highest(product):
    score = score_listing(product, "Dior Sauvage EDT 100 ml", "https://shop.nl/p/3348901250146")
    assert 0.9 <= score <= 1.0


def test_brand_and_title_match_is_mid_band(product):
    score = score_listing(product, "Dior Sauvage Eau de Toilette 100ml")
    assert 0.5 <= score <= 0.8


def test_unrelated_listing_scores_low(product):
    score = score_listing(product, "Hugo Boss Bottled Eau de Toilette 100ml")
    assert score < 0.5


def test_penalty_words_lower_the_score(product):
    plain = score_listing(product, "Dior Sauvage Eau de Toilette 100ml")
    tester = score_listing(product, "Dior Sauvage Eau de Toilette 100ml Tester")
    assert tester < plain
    assert penalty_for("Gift Set with mini sample") == pytest.approx(1.0)


def test_size_matching():
    assert size_matches("100ml", "Sauvage 100 ML spray")
    assert size_matches("100ml", "Sauvage 100,0ml")
    assert not size_matches("100ml", "Sauvage 1100ml")
    assert not size_matches(None, "Sauvage 100ml")


def test_brand_tolerates_small_typos():
    assert brand_matches("Yves Saint Laurent", "Yves Saint-Laurent Black Opium")
    assert brand_matches("Givenchy", "Givency L'Interdit")
    assert not brand_matches("Chanel", "Dior Sauvage")


def test_title_similarity_ignores_filler_words():
    assert title_similarity("Sauvage Eau De Toilette", "Sauvage EDT spray") == 1.0
    assert title_similarity("", "anything") == 0.0
