"""
Tests for save_extracted_product() and error placeholders.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from coffee_crawler.models import CoffeeProduct, CrawlError, CrawlStatus, ErrorType
from coffee_crawler.services.content_hash import record_fingerprint
from coffee_crawler.services.product_saver import (
    clean_origin,
    delete_products,
    save_error_placeholder,
    save_extracted_product,
)
from coffee_crawler.services.types import ExtractedRecord


class TestCleanOrigin:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Blend of Brazil and Colombia", "Blend"),
            ("blend", "Blend"),
            ("Mixed (Brazil, Colombia)", "Blend"),
            ("Single origin - varies", "Various"),
            ("  Ethiopia  ", "Ethiopia"),
            ("Colombia (Huila, Cauca)", "Colombia (Huila, Cauca)"),
            ("", None),
            (None, None),
        ],
    )
    def test_clean_origin(self, raw, expected):
        assert clean_origin(raw) == expected


@pytest.mark.django_db
class TestSaveExtractedProduct:

    def test_creates_new_product(self, coffee_brand, complete_record):
        outcome = save_extracted_product(coffee_brand, complete_record)

        assert outcome.succeeded
        assert outcome.created is True

        product = CoffeeProduct.objects.get(id=outcome.product_id)
        assert product.brand == coffee_brand
        assert product.product_name == "Colombia El Paraiso"
        assert product.tasting_notes == ["Strawberry", "Rose"]
        assert product.price == Decimal("14.00")
        assert product.seller_url == complete_record.product_url
        assert product.crawl_status == CrawlStatus.DONE
        assert product.last_update_date is not None

    def test_updates_by_seller_url(self, coffee_brand, coffee_product):
        record = ExtractedRecord(
            product_name="Ethiopia Guji Natural",
            origin="Ethiopia",
            price=Decimal("12.00"),
            product_url=coffee_product.seller_url,
        )

        outcome = save_extracted_product(coffee_brand, record)

        assert outcome.created is False
        assert outcome.product_id == str(coffee_product.id)
        coffee_product.refresh_from_db()
        assert coffee_product.product_name == "Ethiopia Guji Natural"
        assert coffee_product.price == Decimal("12.00")
        assert CoffeeProduct.objects.count() == 1

    def test_matches_by_brand_and_name(self, coffee_brand, coffee_product):
        record = ExtractedRecord(product_name="Ethiopia Guji", process="Natural")

        outcome = save_extracted_product(coffee_brand, record)

        assert outcome.product_id == str(coffee_product.id)
        coffee_product.refresh_from_db()
        assert coffee_product.process == "Natural"

    def test_existing_product_id_wins(self, coffee_brand, coffee_product, complete_record):
        outcome = save_extracted_product(
            coffee_brand,
            complete_record,
            existing_product_id=coffee_product.id,
            content_hash="b" * 64,
        )

        assert outcome.product_id == str(coffee_product.id)
        coffee_product.refresh_from_db()
        assert coffee_product.product_name == "Colombia El Paraiso"
        assert coffee_product.content_hash == "b" * 64

    def test_origin_cleaned_and_in_stock_defaults_true(self, coffee_brand):
        record = ExtractedRecord(product_name="House Blend", origin="Blend of Brazil, Peru")

        outcome = save_extracted_product(coffee_brand, record)

        product = CoffeeProduct.objects.get(id=outcome.product_id)
        assert product.origin == "Blend"
        assert product.in_stock is True

    def test_description_falls_back_to_raw_content(self, coffee_brand):
        record = ExtractedRecord(product_name="Peru Cajamarca")

        outcome = save_extracted_product(coffee_brand, record, raw_content="x" * 6000)

        product = CoffeeProduct.objects.get(id=outcome.product_id)
        assert len(product.raw_description) == 5000

    def test_nameless_record_saved_as_error(self, coffee_brand):
        record = ExtractedRecord(origin="Kenya")

        outcome = save_extracted_product(
            coffee_brand, record, url="https://testroasters.com/products/mystery"
        )

        assert outcome.status == CrawlStatus.ERROR
        product = CoffeeProduct.objects.get(id=outcome.product_id)
        assert product.crawl_status == CrawlStatus.ERROR
        assert product.product_name == "Unknown"
        assert product.seller_url == "https://testroasters.com/products/mystery"

    def test_placeholder_record_saved_as_error(self, coffee_brand):
        record = ExtractedRecord.placeholder("https://testroasters.com/products/broken")

        outcome = save_extracted_product(coffee_brand, record)

        assert outcome.succeeded is False
        assert CoffeeProduct.objects.get(id=outcome.product_id).crawl_status == CrawlStatus.ERROR

    def test_none_record_saved_as_error(self, coffee_brand):
        outcome = save_extracted_product(coffee_brand, None, url="https://testroasters.com/products/x")

        assert outcome.status == CrawlStatus.ERROR
        assert outcome.product_name == "Unknown"

    def test_database_error_leaves_placeholder(self, coffee_brand, complete_record):
        with patch.object(CoffeeProduct, "save", side_effect=[Exception("disk full"), None]):
            outcome = save_extracted_product(coffee_brand, complete_record)

        assert outcome.status == CrawlStatus.ERROR
        assert outcome.error_message == "disk full"

        error = CrawlError.objects.get(brand=coffee_brand)
        assert error.error_type == ErrorType.PERSISTENCE
        assert error.url == complete_record.product_url
        assert "disk full" in error.message

    def test_matching_fingerprint_leaves_product_untouched(self, coffee_brand, complete_record):
        fingerprint = record_fingerprint(complete_record)
        first = save_extracted_product(coffee_brand, complete_record, content_hash=fingerprint)
        stamp = CoffeeProduct.objects.get(id=first.product_id).last_update_date

        with patch("coffee_crawler.services.product_saver._queue_graph_sync") as queue_sync:
            second = save_extracted_product(coffee_brand, complete_record, content_hash=fingerprint)

        assert second.succeeded
        assert second.unchanged is True
        assert second.product_id == first.product_id
        queue_sync.assert_not_called()
        product = CoffeeProduct.objects.get(id=first.product_id)
        assert product.last_update_date == stamp
        assert product.content_hash == fingerprint

    def test_matching_fingerprint_on_error_product_saves(self, coffee_brand, coffee_product, complete_record):
        coffee_product.crawl_status = CrawlStatus.ERROR
        coffee_product.save()

        outcome = save_extracted_product(
            coffee_brand,
            complete_record,
            existing_product_id=coffee_product.id,
            content_hash=coffee_product.content_hash,
        )

        assert outcome.unchanged is False
        coffee_product.refresh_from_db()
        assert coffee_product.crawl_status == CrawlStatus.DONE
        assert coffee_product.product_name == "Colombia El Paraiso"

    def test_queues_graph_sync(self, coffee_brand, complete_record):
        with patch("coffee_crawler.tasks.sync_product_to_graph.delay") as mock_delay:
            outcome = save_extracted_product(coffee_brand, complete_record)

        mock_delay.assert_called_once_with(outcome.product_id)

    def test_graph_sync_failure_is_ignored(self, coffee_brand, complete_record):
        with patch(
            "coffee_crawler.tasks.sync_product_to_graph.delay",
            side_effect=ConnectionError("broker down"),
        ):
            outcome = save_extracted_product(coffee_brand, complete_record)

        assert outcome.succeeded


@pytest.mark.django_db
class TestSaveErrorPlaceholder:

    def test_marks_existing_product_as_error(self, coffee_brand, coffee_product):
        outcome = save_error_placeholder(
            coffee_brand,
            None,
            coffee_product.seller_url,
            "Render returned no text",
        )

        coffee_product.refresh_from_db()
        assert outcome.product_id == str(coffee_product.id)
        assert coffee_product.crawl_status == CrawlStatus.ERROR
        assert coffee_product.error_message == "Render returned no text"
        # Name is kept when an existing product fails
        assert coffee_product.product_name == "Ethiopia Guji"

    def test_never_raises(self, coffee_brand):
        with patch.object(CoffeeProduct, "save", side_effect=Exception("db gone")):
            outcome = save_error_placeholder(coffee_brand, "Kenya AA", None, "boom")

        assert outcome.status == CrawlStatus.ERROR
        assert outcome.product_id is None
        assert outcome.product_name == "Kenya AA"


@pytest.mark.django_db
class TestDeleteProducts:

    def test_deletes_batch(self, coffee_brand, coffee_product):
        other = CoffeeProduct.objects.create(brand=coffee_brand, product_name="Rwanda Huye")

        assert delete_products([coffee_product, other]) == 2
        assert CoffeeProduct.objects.count() == 0

    def test_empty_batch(self):
        assert delete_products([]) == 0
