"""
Crawl orchestrator.

Composes the pipeline stages into the brand and product crawl flows:

    crawl_brand:
        discovery -> bulk extraction (retried) -> quality gate
            -> accept bulk records, or sequential fallback (fail-fast)
            -> chunked persistence

    crawl_brand_from_sitemap:
        sitemap -> render each page -> fingerprint
            -> extract only new/changed pages -> delete vanished products

    crawl_product / retry_failed_products:
        render -> page extraction -> save

Oracle calls are wrapped in linear-backoff retry; when every attempt fails
a placeholder record is returned instead of raising. The brand's
last_crawl_date is updated after every terminal outcome; last_crawl_status
only when the crawl completed.
"""

import logging
import time
from datetime import timedelta
from functools import partial
from typing import Callable, Dict, List, Optional

from django.conf import settings
from django.utils import timezone

from coffee_crawler.fetchers.render import RenderService, get_render_service
from coffee_crawler.models import (
    CoffeeBrand,
    CoffeeProduct,
    CrawlMode,
    CrawlRun,
    CrawlRunStatus,
    CrawlStatus,
    ErrorType,
)
from coffee_crawler.monitoring import add_crawl_breadcrumb, log_error_with_context
from coffee_crawler.services.chunked_writer import ChunkedWriter
from coffee_crawler.services.content_hash import (
    generate_hash,
    has_content_changed,
    record_fingerprint,
)
from coffee_crawler.services.deduplication import count_unique_products
from coffee_crawler.services.fallback import FallbackAbortedError, FallbackRun
from coffee_crawler.services.oracles import (
    BulkExtractionOracle,
    ExtractionJob,
    ExtractionOracle,
    OracleError,
    PageExtractionOracle,
)
from coffee_crawler.services.product_saver import (
    delete_products,
    save_error_placeholder,
    save_extracted_product,
)
from coffee_crawler.services.quality_gate import QualityGate
from coffee_crawler.services.sitemap_parser import SitemapParseError
from coffee_crawler.services.types import (
    BrandCrawlResult,
    CrawlSummary,
    ExtractedRecord,
    RecordOutcome,
)
from coffee_crawler.services.url_discovery import UrlDiscoveryService

logger = logging.getLogger(__name__)


class CrawlOrchestrator:
    """
    End-to-end crawl flows for brands and single products.

    All collaborators are injectable; defaults come from settings.
    """

    def __init__(
        self,
        discovery: Optional[UrlDiscoveryService] = None,
        bulk_oracle: Optional[ExtractionOracle] = None,
        page_oracle: Optional[ExtractionOracle] = None,
        render_service: Optional[RenderService] = None,
        quality_gate: Optional[QualityGate] = None,
        save_record: Callable[..., RecordOutcome] = save_extracted_product,
        retry_attempts: Optional[int] = None,
        retry_backoff_seconds: Optional[float] = None,
        chunk_size: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.discovery = discovery or UrlDiscoveryService()
        self.bulk_oracle = bulk_oracle or BulkExtractionOracle()
        self.page_oracle = page_oracle or PageExtractionOracle()
        self.render_service = render_service or get_render_service()
        self.quality_gate = quality_gate or QualityGate()
        self.save_record = save_record

        self.retry_attempts = (
            retry_attempts
            if retry_attempts is not None
            else getattr(settings, "CRAWLER_RETRY_ATTEMPTS", 3)
        )
        self.retry_backoff_seconds = (
            retry_backoff_seconds
            if retry_backoff_seconds is not None
            else getattr(settings, "CRAWLER_RETRY_BACKOFF_SECONDS", 2.0)
        )
        self.chunk_size = (
            chunk_size
            if chunk_size is not None
            else getattr(settings, "CRAWLER_PLAYWRIGHT_CHUNK_SIZE", 10)
        )
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def _with_retry(
        self,
        call: Callable[[], List[ExtractedRecord]],
        brand: CoffeeBrand,
        url: Optional[str],
        stage: str,
    ) -> List[ExtractedRecord]:
        """
        Run an oracle call with linear backoff.

        Waits backoff * attempt seconds after each failed attempt. After the
        last attempt fails, returns a single placeholder record.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                return call()
            except OracleError as e:
                last_error = e
                logger.warning(
                    f"{stage} extraction failed for {brand.name} ({url or 'bulk'}), "
                    f"attempt {attempt}/{self.retry_attempts}: {e}"
                )
                if attempt < self.retry_attempts:
                    delay = self.retry_backoff_seconds * attempt
                    if delay > 0:
                        self._sleep(delay)

        logger.error(
            f"{stage} extraction exhausted {self.retry_attempts} attempts for "
            f"{brand.name} ({url or 'bulk'}), returning placeholder"
        )
        log_error_with_context(
            error=last_error,
            brand=brand,
            url=url,
            attempt=self.retry_attempts,
            stage=stage,
            error_type=ErrorType.API,
        )
        return [ExtractedRecord.placeholder(url)]

    def _extract_bulk(self, brand: CoffeeBrand, urls: List[str]) -> List[ExtractedRecord]:
        job = ExtractionJob(brand_name=brand.name, urls=urls)
        return self._with_retry(
            partial(self.bulk_oracle.extract, job), brand, None, "bulk"
        )

    def _extract_page(
        self, brand: CoffeeBrand, text: str, url: str
    ) -> Optional[ExtractedRecord]:
        job = ExtractionJob(brand_name=brand.name, text=text, url=url)
        records = self._with_retry(
            partial(self.page_oracle.extract, job), brand, url, "page"
        )
        return records[0] if records else None

    def _save_for(self, brand: CoffeeBrand) -> Callable[[ExtractedRecord], RecordOutcome]:
        return lambda record: self.save_record(
            brand, record, content_hash=record_fingerprint(record)
        )

    # ------------------------------------------------------------------
    # Brand crawl: discovery -> bulk -> gate -> fallback -> persistence
    # ------------------------------------------------------------------

    def crawl_brand(self, brand: CoffeeBrand) -> BrandCrawlResult:
        """
        Crawl one brand through the adaptive pipeline.

        Never raises; failures end the run with status "failed" or
        "aborted" and are recorded as CrawlError rows.
        """
        if not brand.approved:
            logger.warning(f"Skipping crawl for unapproved brand: {brand.name}")
            return BrandCrawlResult(brand_name=brand.name, status="skipped")

        logger.info(f"Starting crawl for brand: {brand.name}")
        run = CrawlRun.objects.create(brand=brand, mode=CrawlMode.BULK)
        result = BrandCrawlResult(brand_name=brand.name, status=CrawlRunStatus.RUNNING)

        try:
            self._run_pipeline(brand, run, result)
        except SitemapParseError as e:
            logger.error(f"Sitemap discovery failed for {brand.name}: {e}")
            log_error_with_context(
                error=e,
                brand=brand,
                url=brand.sitemap_url or brand.website,
                stage="discovery",
                error_type=ErrorType.PARSE,
            )
            result.status = CrawlRunStatus.FAILED
            result.abort_reason = str(e)
        except Exception as e:
            logger.error(f"Error crawling brand {brand.name}: {e}", exc_info=True)
            log_error_with_context(error=e, brand=brand, stage="crawl")
            result.status = CrawlRunStatus.FAILED
            result.abort_reason = str(e)

        self._finish_run(run, result)

        brand.touch_crawl_date(
            status=result.status if result.status == CrawlRunStatus.COMPLETED else ""
        )

        logger.info(
            f"Crawl for {brand.name} finished with status {result.status}: "
            f"{result.records_saved} saved, {result.records_unchanged} unchanged, "
            f"{result.records_failed} failed"
        )
        return result

    def _run_pipeline(self, brand: CoffeeBrand, run: CrawlRun, result: BrandCrawlResult):
        add_crawl_breadcrumb(brand.name, brand.website, "discovery", "Discovering product URLs")
        discovery = self.discovery.discover(brand)
        urls = discovery.filtered

        result.urls_discovered = len(discovery.discovered)
        result.urls_filtered = len(urls)

        if not urls:
            logger.warning(f"No coffee product URLs found for brand: {brand.name}")
            result.status = CrawlRunStatus.COMPLETED
            return

        result.unique_products = count_unique_products(urls)

        add_crawl_breadcrumb(brand.name, brand.website, "bulk", "Bulk extraction")
        records = self._extract_bulk(brand, urls)

        assessment = self.quality_gate.assess(records, urls, result.unique_products)
        result.quality = assessment.metrics

        writer = ChunkedWriter(
            save_record=self._save_for(brand),
            chunk_size=self.chunk_size,
            label=brand.name,
        )

        if assessment.fallback_required:
            result.fallback_triggered = True
            run.mode = CrawlMode.FALLBACK
            logger.info(
                f"Falling back to per-page extraction for {brand.name}: "
                f"{'; '.join(assessment.reasons)}"
            )
            self._run_fallback(brand, urls, writer, result)
        else:
            accepted = [r for r in records if r.is_valid and not r.is_placeholder]
            skipped = len(records) - len(accepted)
            if skipped:
                logger.info(f"Skipping {skipped} bulk records without a product name")
            for record in accepted:
                writer.push(record)
            writer.flush_remainder()
            result.status = CrawlRunStatus.COMPLETED

        result.records_saved = writer.success_count
        result.records_unchanged = writer.unchanged_count
        result.records_failed = writer.error_count

    def _run_fallback(
        self,
        brand: CoffeeBrand,
        urls: List[str],
        writer: ChunkedWriter,
        result: BrandCrawlResult,
    ):
        add_crawl_breadcrumb(brand.name, brand.website, "fallback", "Per-page fallback")
        fallback = FallbackRun(
            render=self.render_service.extract_product_text,
            extract=partial(self._extract_page, brand),
            writer=writer,
            brand_name=brand.name,
        )
        fallback.run(urls)

        try:
            fallback.raise_for_abort()
        except FallbackAbortedError as e:
            log_error_with_context(
                error=e,
                brand=brand,
                url=e.url,
                stage="fallback",
                error_type=ErrorType.EXTRACTION,
            )
            result.status = CrawlRunStatus.ABORTED
            result.abort_reason = str(e)
            return

        result.status = CrawlRunStatus.COMPLETED

    def _finish_run(self, run: CrawlRun, result: BrandCrawlResult):
        run.urls_discovered = result.urls_discovered
        run.urls_filtered = result.urls_filtered
        run.unique_products = result.unique_products
        run.fallback_triggered = result.fallback_triggered
        run.records_saved = result.records_saved
        run.records_failed = result.records_failed
        if result.quality is not None:
            run.candidates = result.quality.total_candidates
            run.empty_percentage = result.quality.empty_percentage
            run.extraction_rate = result.quality.extraction_rate
        run.summary = result.to_dict()
        run.finish(result.status, abort_reason=result.abort_reason or "")

    def crawl_all_brands(self) -> Dict[str, str]:
        """Crawl every approved brand; one brand's failure does not stop the rest."""
        statuses = {}
        for brand in CoffeeBrand.objects.approved():
            try:
                statuses[brand.name] = self.crawl_brand(brand).status
            except Exception as e:
                logger.error(f"Unexpected error crawling {brand.name}: {e}", exc_info=True)
                statuses[brand.name] = CrawlRunStatus.FAILED
        return statuses

    def crawl_due_brands(self) -> List[str]:
        """
        Queue a crawl task for each approved brand not crawled within the
        update interval.

        Returns:
            IDs of the brands queued
        """
        from coffee_crawler.tasks import crawl_brand as crawl_brand_task

        interval_days = getattr(settings, "CRAWLER_UPDATE_INTERVAL_DAYS", 14)
        cutoff = timezone.now() - timedelta(days=interval_days)

        queued = []
        for brand in CoffeeBrand.objects.needing_crawl(cutoff):
            crawl_brand_task.delay(str(brand.id))
            queued.append(str(brand.id))

        logger.info(f"Queued {len(queued)} brands due for crawl (interval {interval_days} days)")
        return queued

    # ------------------------------------------------------------------
    # Incremental sitemap crawl
    # ------------------------------------------------------------------

    def crawl_brand_from_sitemap(self, brand: CoffeeBrand) -> CrawlSummary:
        """
        Re-crawl a brand's sitemap, extracting only new or changed pages.

        Products whose URL is no longer in the sitemap are deleted.
        """
        summary = CrawlSummary(brand_name=brand.name)

        if not brand.sitemap_url:
            logger.error(f"Brand {brand.name} has no sitemap URL")
            return summary

        logger.info(
            f"Starting incremental sitemap crawl for brand: {brand.name} "
            f"from {brand.sitemap_url}"
        )
        run = CrawlRun.objects.create(brand=brand, mode=CrawlMode.SITEMAP)

        try:
            urls = self.discovery.sitemap_product_urls(brand)
        except SitemapParseError as e:
            logger.error(f"Error crawling sitemap for brand {brand.name}: {e}")
            log_error_with_context(
                error=e,
                brand=brand,
                url=brand.sitemap_url,
                stage="sitemap",
                error_type=ErrorType.PARSE,
            )
            run.finish(CrawlRunStatus.FAILED, abort_reason=str(e))
            brand.touch_crawl_date()
            return summary

        existing_by_url = {
            product.seller_url: product
            for product in CoffeeProduct.objects.filter(brand=brand).exclude(seller_url="")
        }

        for url in urls:
            summary.total_processed += 1
            existing = existing_by_url.get(url)

            text = self.render_service.extract_product_text(url)
            if not text:
                logger.warning(f"No text extracted from {url}, skipping")
                summary.failed_products += 1
                continue

            new_hash = generate_hash(text)
            if existing is not None and not has_content_changed(new_hash, existing.content_hash):
                logger.debug(f"Unchanged: {url}")
                summary.unchanged_products += 1
                continue

            record = self._extract_page(brand, text, url)
            outcome = self.save_record(
                brand,
                record,
                raw_content=text,
                url=url,
                existing_product_id=existing.id if existing is not None else None,
                content_hash=new_hash,
            )

            if not outcome.succeeded:
                summary.failed_products += 1
            elif existing is not None:
                summary.updated_products += 1
            else:
                summary.new_products += 1

        in_sitemap = set(urls)
        vanished = [
            product for url, product in existing_by_url.items() if url not in in_sitemap
        ]
        if vanished:
            for product in vanished:
                logger.info(f"Deleting product not in sitemap: {product.product_name} ({product.id})")
            summary.deleted_products = delete_products(vanished)

        run.records_saved = summary.new_products + summary.updated_products
        run.records_failed = summary.failed_products
        run.urls_discovered = len(urls)
        run.summary = summary.to_dict()
        run.finish(CrawlRunStatus.COMPLETED)
        brand.touch_crawl_date(status=CrawlRunStatus.COMPLETED)

        logger.info(
            f"Sitemap crawl for {brand.name} complete: {summary.new_products} new, "
            f"{summary.updated_products} updated, {summary.unchanged_products} unchanged, "
            f"{summary.deleted_products} deleted, {summary.failed_products} failed "
            f"(saved ~${summary.api_cost_saved:.4f} in extraction calls)"
        )
        return summary

    # ------------------------------------------------------------------
    # Single product
    # ------------------------------------------------------------------

    def crawl_product(
        self,
        brand: CoffeeBrand,
        url: str,
        existing_product_id=None,
    ) -> RecordOutcome:
        """
        Render, extract and save one product page.

        Failures are saved as an error placeholder so they remain retryable.
        """
        logger.info(f"Crawling product for {brand.name}: {url}")

        text = self.render_service.extract_product_text(url)
        if not text:
            return save_error_placeholder(
                brand,
                None,
                url,
                "Render returned no text",
                existing_product_id=existing_product_id,
            )

        record = self._extract_page(brand, text, url)
        return self.save_record(
            brand,
            record,
            raw_content=text,
            url=url,
            existing_product_id=existing_product_id,
            content_hash=generate_hash(text),
        )

    def retry_failed_products(self) -> Dict[str, int]:
        """
        Re-run the single-product crawl for every product in error status.

        Returns:
            {"retried", "succeeded", "failed"} counts
        """
        failed_products = (
            CoffeeProduct.objects.filter(crawl_status=CrawlStatus.ERROR)
            .exclude(seller_url="")
            .select_related("brand")
        )

        counts = {"retried": 0, "succeeded": 0, "failed": 0}
        for product in failed_products:
            counts["retried"] += 1
            try:
                outcome = self.crawl_product(
                    product.brand, product.seller_url, existing_product_id=product.id
                )
            except Exception as e:
                logger.error(f"Retry failed for product {product.id}: {e}", exc_info=True)
                counts["failed"] += 1
                continue

            if outcome.succeeded:
                counts["succeeded"] += 1
            else:
                counts["failed"] += 1

        logger.info(
            f"Retried {counts['retried']} failed products: "
            f"{counts['succeeded']} succeeded, {counts['failed']} still failing"
        )
        return counts


def get_crawl_orchestrator() -> CrawlOrchestrator:
    """Factory function returning an orchestrator configured from settings."""
    return CrawlOrchestrator()
