"""
Shared fixtures for coffee_crawler unit tests.
"""

from decimal import Decimal

import pytest

from coffee_crawler.services.types import ExtractedRecord


@pytest.fixture
def coffee_product(coffee_brand):
    """Create a saved CoffeeProduct for the test brand."""
    from coffee_crawler.models import CoffeeProduct, CrawlStatus

    return CoffeeProduct.objects.create(
        brand=coffee_brand,
        product_name="Ethiopia Guji",
        origin="Ethiopia",
        process="Washed",
        tasting_notes=["Peach", "Jasmine"],
        price=Decimal("11.50"),
        seller_url="https://testroasters.com/products/ethiopia-guji",
        content_hash="a" * 64,
        crawl_status=CrawlStatus.DONE,
    )


@pytest.fixture
def complete_record():
    """An ExtractedRecord with every key field populated."""
    return ExtractedRecord(
        product_name="Colombia El Paraiso",
        origin="Colombia",
        region="Cauca",
        process="Anaerobic",
        producer="Diego Bermudez",
        variety="Castillo",
        altitude="1,900 MASL",
        tasting_notes=["Strawberry", "Rose"],
        price=Decimal("14.00"),
        in_stock=True,
        raw_description="Thermal-shock anaerobic lot from Finca El Paraiso.",
        product_url="https://testroasters.com/products/colombia-el-paraiso",
    )
