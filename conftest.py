"""
Fixtures shared by both test trees (coffee_crawler/tests and tests).
"""

import pytest


@pytest.fixture
def coffee_brand(db):
    """Create an approved CoffeeBrand with a sitemap."""
    from coffee_crawler.models import CoffeeBrand

    return CoffeeBrand.objects.create(
        name="Test Roasters",
        website="https://testroasters.com",
        sitemap_url="https://testroasters.com/sitemap_products_1.xml",
        country="United Kingdom",
        approved=True,
    )
