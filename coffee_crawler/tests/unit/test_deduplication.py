"""
Tests for roast-variant deduplication of product URLs.
"""

import pytest

from coffee_crawler.services.deduplication import (
    base_product_identities,
    base_product_identity,
    count_unique_products,
)


class TestBaseProductIdentity:
    """Tests for base_product_identity()."""

    @pytest.mark.parametrize(
        "url",
        [
            "https://roaster.com/products/brazil-santos-medium-roast-coffee-beans",
            "https://roaster.com/products/brazil-santos-dark-roast-coffee-beans",
            "https://roaster.com/products/brazil-santos-light-coffee-beans",
            "https://roaster.com/products/brazil-santos-whole-bean",
            "https://roaster.com/products/brazil-santos-ground",
            "https://roaster.com/products/brazil-santos-1kg",
            "https://roaster.com/products/brazil-santos?variant=123",
        ],
    )
    def test_variants_collapse_to_base(self, url):
        assert base_product_identity(url) == "brazil-santos"

    def test_plain_product_keeps_slug(self):
        url = "https://roaster.com/products/ethiopia-yirgacheffe"
        assert base_product_identity(url) == "ethiopia-yirgacheffe"

    def test_espresso_roast_suffix_removed(self):
        url = "https://roaster.com/products/house-blend-espresso-roast"
        assert base_product_identity(url) == "house-blend"

    def test_grind_then_size_suffixes(self):
        url = "https://roaster.com/products/colombia-huila-ground-250g"
        assert base_product_identity(url) == "colombia-huila"


class TestCountUniqueProducts:
    """Tests for count_unique_products()."""

    def test_counts_roast_variants_once(self):
        urls = [
            "https://roaster.com/products/brazil-santos-medium-roast-coffee-beans",
            "https://roaster.com/products/brazil-santos-dark-roast-coffee-beans",
            "https://roaster.com/products/kenya-kiambu-light-roast",
            "https://roaster.com/products/kenya-kiambu-medium-roast",
            "https://roaster.com/products/rwanda-huye",
        ]

        assert count_unique_products(urls) == 3

    def test_empty_list(self):
        assert count_unique_products([]) == 0

    def test_accepts_generator(self):
        urls = (f"https://roaster.com/products/coffee-{i}" for i in range(4))
        assert count_unique_products(urls) == 4

    def test_identities_set(self):
        identities = base_product_identities([
            "https://roaster.com/products/peru-cajamarca-500g",
            "https://roaster.com/products/peru-cajamarca-1kg",
        ])
        assert identities == {"peru-cajamarca"}
