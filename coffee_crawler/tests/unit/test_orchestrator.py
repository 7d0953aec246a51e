"""
Tests for the crawl orchestrator flows.

Collaborators (discovery, oracles, render service) are mocked; persistence
runs against the test database.
"""

import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from coffee_crawler.models import (
    CoffeeBrand,
    CoffeeProduct,
    CrawlError,
    CrawlMode,
    CrawlRun,
    CrawlRunStatus,
    CrawlStatus,
    ErrorType,
)
from coffee_crawler.services.content_hash import generate_hash
from coffee_crawler.services.oracles import BulkExtractionOracle, ChatCompletionClient, OracleError
from coffee_crawler.services.orchestrator import CrawlOrchestrator
from coffee_crawler.services.quality_gate import QualityGate
from coffee_crawler.services.sitemap_parser import SitemapParseError
from coffee_crawler.services.types import ExtractedRecord, RecordOutcome
from coffee_crawler.services.url_discovery import DiscoveryResult
from coffee_crawler.tests.factories import make_record

PRODUCT_URLS = [f"https://testroasters.com/products/coffee-{i}" for i in range(1, 6)]


def _discovery(urls):
    discovery = MagicMock()
    discovery.discover.return_value = DiscoveryResult(
        sitemap_url="https://testroasters.com/sitemap_products_1.xml",
        discovered=list(urls) + ["https://testroasters.com/pages/about"],
        candidates=list(urls),
        filtered=list(urls),
    )
    discovery.sitemap_product_urls.return_value = list(urls)
    return discovery


def _page_record(job):
    index = int(job.url.rsplit("-", 1)[1])
    return [make_record(index, product_url=job.url)]


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def bulk_oracle():
    oracle = MagicMock()
    oracle.extract.return_value = [make_record(i) for i in range(1, 6)]
    return oracle


@pytest.fixture
def page_oracle():
    oracle = MagicMock()
    oracle.extract.side_effect = _page_record
    return oracle


@pytest.fixture
def render_service():
    service = MagicMock()
    service.extract_product_text.side_effect = lambda url: f"Product page for {url}"
    return service


@pytest.fixture
def orchestrator(bulk_oracle, page_oracle, render_service, sleep):
    return CrawlOrchestrator(
        discovery=_discovery(PRODUCT_URLS),
        bulk_oracle=bulk_oracle,
        page_oracle=page_oracle,
        render_service=render_service,
        quality_gate=QualityGate(
            empty_percentage_threshold=70,
            min_extraction_rate=50,
            max_fallback_urls=100,
        ),
        retry_attempts=3,
        retry_backoff_seconds=2.0,
        chunk_size=2,
        sleep=sleep,
    )


@pytest.mark.django_db
class TestCrawlBrand:

    def test_unapproved_brand_skipped(self, orchestrator, coffee_brand):
        coffee_brand.approved = False
        coffee_brand.save()

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == "skipped"
        assert CrawlRun.objects.count() == 0
        orchestrator.discovery.discover.assert_not_called()

    def test_good_bulk_results_saved(self, orchestrator, coffee_brand, render_service):
        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == CrawlRunStatus.COMPLETED
        assert result.fallback_triggered is False
        assert result.records_saved == 5
        assert CoffeeProduct.objects.filter(brand=coffee_brand).count() == 5
        render_service.extract_product_text.assert_not_called()

        run = CrawlRun.objects.get(brand=coffee_brand)
        assert run.status == CrawlRunStatus.COMPLETED
        assert run.mode == CrawlMode.BULK
        assert run.urls_filtered == 5
        assert run.urls_discovered == 6
        assert run.extraction_rate == 100.0
        assert run.completed_at is not None

        coffee_brand.refresh_from_db()
        assert coffee_brand.last_crawl_status == CrawlRunStatus.COMPLETED
        assert coffee_brand.last_crawl_date is not None

    def test_nameless_bulk_records_not_saved(self, orchestrator, coffee_brand, bulk_oracle):
        bulk_oracle.extract.return_value = [make_record(i) for i in range(1, 5)] + [
            make_record(5, product_name=None)
        ]

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.records_saved == 4
        assert not CoffeeProduct.objects.filter(crawl_status=CrawlStatus.ERROR).exists()

    def test_mostly_empty_bulk_triggers_fallback(
        self, orchestrator, coffee_brand, bulk_oracle, render_service, page_oracle
    ):
        bulk_oracle.extract.return_value = [
            ExtractedRecord(product_name=f"Coffee {i}") for i in range(1, 6)
        ]

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == CrawlRunStatus.COMPLETED
        assert result.fallback_triggered is True
        assert render_service.extract_product_text.call_count == 5
        assert page_oracle.extract.call_count == 5
        assert result.records_saved == 5

        run = CrawlRun.objects.get(brand=coffee_brand)
        assert run.mode == CrawlMode.FALLBACK
        assert run.empty_percentage == 100.0

        product = CoffeeProduct.objects.get(seller_url=PRODUCT_URLS[0])
        assert product.origin == "Kenya"

    def test_fallback_aborts_on_first_failed_url(
        self, orchestrator, coffee_brand, bulk_oracle, render_service, page_oracle
    ):
        bulk_oracle.extract.return_value = []
        render_service.extract_product_text.side_effect = (
            lambda url: "" if url == PRODUCT_URLS[2] else f"Product page for {url}"
        )

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == CrawlRunStatus.ABORTED
        assert render_service.extract_product_text.call_count == 3
        assert page_oracle.extract.call_count == 2
        assert result.records_saved == 2
        assert PRODUCT_URLS[2] in result.abort_reason

        error = CrawlError.objects.get(brand=coffee_brand)
        assert error.error_type == ErrorType.EXTRACTION
        assert error.url == PRODUCT_URLS[2]

        coffee_brand.refresh_from_db()
        assert coffee_brand.last_crawl_date is not None
        assert coffee_brand.last_crawl_status == ""

        run = CrawlRun.objects.get(brand=coffee_brand)
        assert run.status == CrawlRunStatus.ABORTED
        assert run.abort_reason

    def test_invalid_page_extraction_aborts(
        self, orchestrator, coffee_brand, bulk_oracle, page_oracle
    ):
        bulk_oracle.extract.return_value = []
        page_oracle.extract.side_effect = None
        page_oracle.extract.return_value = []

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == CrawlRunStatus.ABORTED
        assert page_oracle.extract.call_count == 1
        assert result.records_saved == 0

    def test_bulk_retry_exhaustion_returns_placeholder(
        self, orchestrator, coffee_brand, bulk_oracle, sleep
    ):
        bulk_oracle.extract.side_effect = OracleError("Request timeout after 120s")

        result = orchestrator.crawl_brand(coffee_brand)

        assert bulk_oracle.extract.call_count == 3
        assert [call.args[0] for call in sleep.call_args_list] == [2.0, 4.0]
        # The placeholder is mostly empty, so the fallback recovers the products
        assert result.fallback_triggered is True
        assert result.status == CrawlRunStatus.COMPLETED

        api_error = CrawlError.objects.get(brand=coffee_brand, error_type=ErrorType.API)
        assert api_error.attempt == 3

    def test_bulk_retry_recovers(self, orchestrator, coffee_brand, bulk_oracle, sleep):
        records = [make_record(i) for i in range(1, 6)]
        bulk_oracle.extract.side_effect = [OracleError("HTTP error 502"), records]

        result = orchestrator.crawl_brand(coffee_brand)

        assert bulk_oracle.extract.call_count == 2
        sleep.assert_called_once_with(2.0)
        assert result.fallback_triggered is False
        assert result.records_saved == 5

    def test_sitemap_failure_marks_run_failed(self, orchestrator, coffee_brand):
        orchestrator.discovery.discover.side_effect = SitemapParseError("Invalid XML")

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == CrawlRunStatus.FAILED
        assert CrawlError.objects.get(brand=coffee_brand).error_type == ErrorType.PARSE

        coffee_brand.refresh_from_db()
        assert coffee_brand.last_crawl_date is not None
        assert coffee_brand.last_crawl_status == ""

    def test_unexpected_error_marks_run_failed(self, orchestrator, coffee_brand, bulk_oracle):
        bulk_oracle.extract.side_effect = KeyError("boom")

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == CrawlRunStatus.FAILED
        assert CrawlRun.objects.get(brand=coffee_brand).status == CrawlRunStatus.FAILED

    def test_no_product_urls_completes(self, orchestrator, coffee_brand, bulk_oracle):
        orchestrator.discovery = _discovery([])

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == CrawlRunStatus.COMPLETED
        bulk_oracle.extract.assert_not_called()

    def test_large_catalog_accepts_poor_bulk_results(
        self, orchestrator, coffee_brand, bulk_oracle, render_service
    ):
        urls = [f"https://testroasters.com/products/origin-{i}" for i in range(120)]
        orchestrator.discovery = _discovery(urls)
        bulk_oracle.extract.return_value = [make_record(i) for i in range(10)]

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.fallback_triggered is False
        assert result.records_saved == 10
        render_service.extract_product_text.assert_not_called()

    def test_records_persisted_in_chunks(self, coffee_brand, bulk_oracle, page_oracle, render_service):
        save_record = MagicMock(return_value=RecordOutcome(status=CrawlStatus.DONE))
        orchestrator = CrawlOrchestrator(
            discovery=_discovery(PRODUCT_URLS),
            bulk_oracle=bulk_oracle,
            page_oracle=page_oracle,
            render_service=render_service,
            quality_gate=QualityGate(70, 50, 100),
            save_record=save_record,
            chunk_size=2,
            sleep=MagicMock(),
        )

        result = orchestrator.crawl_brand(coffee_brand)

        assert save_record.call_count == 5
        assert result.records_saved == 5
        assert all(call.kwargs["content_hash"] for call in save_record.call_args_list)

    def test_second_crawl_reports_unchanged_records(self, orchestrator, coffee_brand):
        with patch("coffee_crawler.services.product_saver._queue_graph_sync") as queue_sync:
            first = orchestrator.crawl_brand(coffee_brand)
            stamps = dict(
                CoffeeProduct.objects.filter(brand=coffee_brand)
                .values_list("product_name", "last_update_date")
            )
            second = orchestrator.crawl_brand(coffee_brand)

        assert first.records_saved == 5
        assert first.records_unchanged == 0
        assert second.status == CrawlRunStatus.COMPLETED
        assert second.records_saved == 0
        assert second.records_unchanged == 5
        assert second.records_failed == 0
        assert queue_sync.call_count == 5

        products = CoffeeProduct.objects.filter(brand=coffee_brand)
        assert products.count() == 5
        for product in products:
            assert len(product.content_hash) == 64
            assert product.last_update_date == stamps[product.product_name]

    def test_changed_bulk_record_saved_again(self, orchestrator, coffee_brand, bulk_oracle):
        orchestrator.crawl_brand(coffee_brand)
        bulk_oracle.extract.return_value = [make_record(i) for i in range(1, 5)] + [
            make_record(5, price=Decimal("12.50"))
        ]

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.records_saved == 1
        assert result.records_unchanged == 4
        product = CoffeeProduct.objects.get(brand=coffee_brand, product_name="Coffee 5")
        assert product.price == Decimal("12.50")

    def test_scalar_tasting_notes_do_not_fail_crawl(self, orchestrator, coffee_brand, sleep):
        items = [
            {"product_name": f"Coffee {i}", "product_url": url, "origin": "Kenya",
             "process": "Washed", "tasting_notes": 5}
            for i, url in enumerate(PRODUCT_URLS, start=1)
        ]
        client = ChatCompletionClient(
            api_url="https://llm.test/chat/completions",
            api_key="test-key",
            model="test-model",
            system_prompt="system",
            timeout=5,
            provider="Test",
        )
        client.complete = MagicMock(return_value=json.dumps(items))
        orchestrator.bulk_oracle = BulkExtractionOracle(client=client)

        result = orchestrator.crawl_brand(coffee_brand)

        assert result.status == CrawlRunStatus.COMPLETED
        assert result.fallback_triggered is False
        assert result.records_saved == 5
        assert client.complete.call_count == 1
        product = CoffeeProduct.objects.get(brand=coffee_brand, product_name="Coffee 1")
        assert product.tasting_notes == ["5"]


class TestOrchestratorSettings:

    def test_explicit_single_attempt_kept(self, settings):
        settings.CRAWLER_RETRY_ATTEMPTS = 3

        orchestrator = CrawlOrchestrator(
            discovery=MagicMock(),
            bulk_oracle=MagicMock(),
            page_oracle=MagicMock(),
            render_service=MagicMock(),
            retry_attempts=1,
        )

        assert orchestrator.retry_attempts == 1

    @pytest.mark.parametrize("option", ["retry_attempts", "chunk_size"])
    def test_zero_rejected_instead_of_defaulted(self, option):
        with pytest.raises(ValueError, match=option):
            CrawlOrchestrator(
                discovery=MagicMock(),
                bulk_oracle=MagicMock(),
                page_oracle=MagicMock(),
                render_service=MagicMock(),
                **{option: 0},
            )

    def test_defaults_from_settings(self, settings):
        settings.CRAWLER_RETRY_ATTEMPTS = 4
        settings.CRAWLER_PLAYWRIGHT_CHUNK_SIZE = 7

        orchestrator = CrawlOrchestrator(
            discovery=MagicMock(),
            bulk_oracle=MagicMock(),
            page_oracle=MagicMock(),
            render_service=MagicMock(),
        )

        assert orchestrator.retry_attempts == 4
        assert orchestrator.chunk_size == 7


@pytest.mark.django_db
class TestCrawlAllBrands:

    def test_crawls_each_approved_brand(self, orchestrator, coffee_brand):
        CoffeeBrand.objects.create(
            name="Other Roasters", website="https://other.com", approved=True
        )
        CoffeeBrand.objects.create(
            name="Hidden Roasters", website="https://hidden.com", approved=False
        )

        statuses = orchestrator.crawl_all_brands()

        assert set(statuses) == {"Test Roasters", "Other Roasters"}

    def test_crawl_due_brands_queues_tasks(self, orchestrator, coffee_brand, settings):
        settings.CRAWLER_UPDATE_INTERVAL_DAYS = 14
        recent = CoffeeBrand.objects.create(
            name="Recent Roasters",
            website="https://recent.com",
            approved=True,
            last_crawl_date=timezone.now() - timedelta(days=2),
        )
        stale = CoffeeBrand.objects.create(
            name="Stale Roasters",
            website="https://stale.com",
            approved=True,
            last_crawl_date=timezone.now() - timedelta(days=30),
        )

        with patch("coffee_crawler.tasks.crawl_brand.delay") as mock_delay:
            queued = orchestrator.crawl_due_brands()

        assert set(queued) == {str(coffee_brand.id), str(stale.id)}
        assert str(recent.id) not in queued
        assert mock_delay.call_count == 2


@pytest.mark.django_db
class TestIncrementalSitemapCrawl:

    URLS = [
        "https://testroasters.com/products/ethiopia-guji",
        "https://testroasters.com/products/coffee-2",
        "https://testroasters.com/products/coffee-3",
    ]

    @pytest.fixture
    def sitemap_orchestrator(self, orchestrator):
        orchestrator.discovery = _discovery(self.URLS)
        return orchestrator

    def test_new_unchanged_updated_deleted(
        self, sitemap_orchestrator, coffee_brand, coffee_product, page_oracle
    ):
        vanished = CoffeeProduct.objects.create(
            brand=coffee_brand,
            product_name="Discontinued Blend",
            seller_url="https://testroasters.com/products/discontinued-blend",
        )
        changed = CoffeeProduct.objects.create(
            brand=coffee_brand,
            product_name="Coffee 2",
            seller_url=self.URLS[1],
            content_hash="0" * 64,
        )
        coffee_product.content_hash = generate_hash(f"Product page for {self.URLS[0]}")
        coffee_product.save()

        summary = sitemap_orchestrator.crawl_brand_from_sitemap(coffee_brand)

        assert summary.unchanged_products == 1
        assert summary.updated_products == 1
        assert summary.new_products == 1
        assert summary.deleted_products == 1
        assert summary.failed_products == 0
        assert summary.total_processed == 3
        assert summary.api_cost_saved == pytest.approx(0.0015)

        # Unchanged page never reaches the extraction oracle
        extracted_urls = [call.args[0].url for call in page_oracle.extract.call_args_list]
        assert extracted_urls == self.URLS[1:]

        assert not CoffeeProduct.objects.filter(id=vanished.id).exists()
        changed.refresh_from_db()
        assert changed.content_hash == generate_hash(f"Product page for {self.URLS[1]}")

        run = CrawlRun.objects.get(brand=coffee_brand, mode=CrawlMode.SITEMAP)
        assert run.status == CrawlRunStatus.COMPLETED
        assert run.summary["new_products"] == 1

        coffee_brand.refresh_from_db()
        assert coffee_brand.last_crawl_status == CrawlRunStatus.COMPLETED

    def test_empty_render_counts_as_failed(
        self, sitemap_orchestrator, coffee_brand, render_service
    ):
        render_service.extract_product_text.side_effect = lambda url: ""

        summary = sitemap_orchestrator.crawl_brand_from_sitemap(coffee_brand)

        assert summary.failed_products == 3
        assert summary.new_products == 0

    def test_brand_without_sitemap(self, sitemap_orchestrator, coffee_brand):
        coffee_brand.sitemap_url = ""
        coffee_brand.save()

        summary = sitemap_orchestrator.crawl_brand_from_sitemap(coffee_brand)

        assert summary.total_processed == 0
        assert CrawlRun.objects.count() == 0

    def test_sitemap_error(self, sitemap_orchestrator, coffee_brand, coffee_product):
        sitemap_orchestrator.discovery.sitemap_product_urls.side_effect = SitemapParseError(
            "Failed to fetch sitemap"
        )

        summary = sitemap_orchestrator.crawl_brand_from_sitemap(coffee_brand)

        assert summary.deleted_products == 0
        assert CoffeeProduct.objects.filter(id=coffee_product.id).exists()
        assert CrawlRun.objects.get(brand=coffee_brand).status == CrawlRunStatus.FAILED

        coffee_brand.refresh_from_db()
        assert coffee_brand.last_crawl_date is not None
        assert coffee_brand.last_crawl_status == ""


@pytest.mark.django_db
class TestCrawlProduct:

    def test_crawl_product_saves(self, orchestrator, coffee_brand):
        outcome = orchestrator.crawl_product(coffee_brand, PRODUCT_URLS[0])

        assert outcome.succeeded
        product = CoffeeProduct.objects.get(id=outcome.product_id)
        assert product.seller_url == PRODUCT_URLS[0]
        assert product.content_hash == generate_hash(f"Product page for {PRODUCT_URLS[0]}")

    def test_empty_render_saves_error_placeholder(self, orchestrator, coffee_brand, render_service):
        render_service.extract_product_text.side_effect = lambda url: ""

        outcome = orchestrator.crawl_product(coffee_brand, PRODUCT_URLS[0])

        assert outcome.status == CrawlStatus.ERROR
        product = CoffeeProduct.objects.get(id=outcome.product_id)
        assert product.error_message == "Render returned no text"

    def test_page_retry_exhaustion_saves_error(self, orchestrator, coffee_brand, page_oracle, sleep):
        page_oracle.extract.side_effect = OracleError("Connection error")

        outcome = orchestrator.crawl_product(coffee_brand, PRODUCT_URLS[0])

        assert page_oracle.extract.call_count == 3
        assert outcome.status == CrawlStatus.ERROR
        assert sleep.call_count == 2

    def test_retry_failed_products(self, orchestrator, coffee_brand):
        failed = CoffeeProduct.objects.create(
            brand=coffee_brand,
            product_name="Unknown",
            seller_url=PRODUCT_URLS[0],
            crawl_status=CrawlStatus.ERROR,
            error_message="Render returned no text",
        )
        CoffeeProduct.objects.create(
            brand=coffee_brand,
            product_name="No URL",
            crawl_status=CrawlStatus.ERROR,
        )

        counts = orchestrator.retry_failed_products()

        assert counts == {"retried": 1, "succeeded": 1, "failed": 0}
        failed.refresh_from_db()
        assert failed.crawl_status == CrawlStatus.DONE
        assert failed.product_name == "Coffee 1"
