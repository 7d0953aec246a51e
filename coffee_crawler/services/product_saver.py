"""
Product persistence for extracted records.

save_extracted_product() is the single entry point used by every crawl flow
(bulk, fallback, sitemap, single product). It matches an existing product,
writes the cleaned fields, and returns a RecordOutcome. Failures never
raise: they leave an error-status placeholder row so the product shows up
in retry_failed_products.

A done product whose stored fingerprint matches content_hash is left
untouched and reported as unchanged.

After a successful save the knowledge-graph sync task is queued; a failure
to queue is logged and ignored.
"""

import logging
from typing import Iterable, Optional

from django.db import transaction
from django.utils import timezone

from coffee_crawler.models import CoffeeBrand, CoffeeProduct, CrawlStatus, ErrorType
from coffee_crawler.monitoring import log_error_with_context
from coffee_crawler.services.content_hash import has_content_changed
from coffee_crawler.services.types import (
    PLACEHOLDER_PRODUCT_NAME,
    ExtractedRecord,
    RecordOutcome,
)

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 5000


def clean_origin(origin: Optional[str]) -> Optional[str]:
    """
    Normalize an origin string.

    "Blend of ..." and "Mixed (Brazil, Colombia)" become "Blend";
    "Single origin - varies" becomes "Various"; anything else is trimmed.
    """
    if origin is None or not origin.strip():
        return None

    trimmed = origin.strip()
    lowered = trimmed.lower()

    if lowered.startswith("blend"):
        return "Blend"

    if "single origin" in lowered and "varies" in lowered:
        return "Various"

    if "(" in trimmed and "," in trimmed:
        prefix = lowered.split("(", 1)[0]
        if "blend" in prefix or "mixed" in prefix:
            return "Blend"

    return trimmed


def _find_existing_product(
    brand: CoffeeBrand,
    record: ExtractedRecord,
    seller_url: Optional[str],
    existing_product_id=None,
) -> Optional[CoffeeProduct]:
    if existing_product_id is not None:
        product = CoffeeProduct.objects.filter(id=existing_product_id).first()
        if product is not None:
            return product
        logger.warning(f"Product {existing_product_id} not found, creating new product")
        return None

    if seller_url:
        product = CoffeeProduct.objects.filter(brand=brand, seller_url=seller_url).first()
        if product is not None:
            return product

    if record.product_name:
        return CoffeeProduct.objects.filter(
            brand=brand, product_name=record.product_name
        ).first()

    return None


def _apply_record(
    product: CoffeeProduct,
    record: ExtractedRecord,
    raw_content: str,
    seller_url: Optional[str],
):
    product.product_name = record.product_name
    product.origin = clean_origin(record.origin)
    product.region = record.region
    product.process = record.process
    product.producer = record.producer
    product.variety = record.variety
    product.altitude = record.altitude
    product.tasting_notes = list(record.tasting_notes)
    product.price = record.price
    product.in_stock = record.in_stock if record.in_stock is not None else True

    if seller_url:
        product.seller_url = seller_url

    description = record.raw_description or raw_content or ""
    product.raw_description = description[:MAX_DESCRIPTION_CHARS]

    product.crawl_status = CrawlStatus.DONE
    product.error_message = ""
    product.last_update_date = timezone.now()


def save_extracted_product(
    brand: CoffeeBrand,
    record: Optional[ExtractedRecord],
    raw_content: str = "",
    url: Optional[str] = None,
    existing_product_id=None,
    content_hash: Optional[str] = None,
) -> RecordOutcome:
    """
    Create or update a product from an extracted record.

    Lookup order: existing_product_id, then brand + seller URL, then
    brand + product name; otherwise a new product is created.

    Args:
        brand: Owning brand
        record: Extracted record (invalid or None records are saved as errors)
        raw_content: Page text used when the record has no description
        url: Product page URL (defaults to record.product_url)
        existing_product_id: Update this product instead of matching
        content_hash: Fingerprint of the page text or record to store

    Returns:
        RecordOutcome with status "done" or "error"; unchanged is set when
        the stored fingerprint already matched
    """
    seller_url = url or (record.product_url if record else None)

    if record is None or not record.is_valid or record.is_placeholder:
        return save_error_placeholder(
            brand,
            record.product_name if record else None,
            seller_url,
            "Extraction returned no product name",
            existing_product_id=existing_product_id,
        )

    try:
        with transaction.atomic():
            product = _find_existing_product(brand, record, seller_url, existing_product_id)
            created = product is None
            if not created and _is_unchanged(product, content_hash):
                logger.debug(f"Product unchanged, skipping save: {product.product_name}")
                return RecordOutcome(
                    status=CrawlStatus.DONE,
                    product_id=str(product.id),
                    product_name=product.product_name,
                    unchanged=True,
                )
            if created:
                product = CoffeeProduct(brand=brand)

            _apply_record(product, record, raw_content, seller_url)
            if content_hash:
                product.content_hash = content_hash
            product.save()

    except Exception as e:
        logger.error(
            f"Error saving product {record.product_name} for {brand.name} "
            f"({seller_url}): {e}",
            exc_info=True,
        )
        log_error_with_context(
            error=e,
            brand=brand,
            url=seller_url,
            stage="persistence",
            error_type=ErrorType.PERSISTENCE,
        )
        return save_error_placeholder(
            brand,
            record.product_name,
            seller_url,
            str(e),
            existing_product_id=existing_product_id,
        )

    logger.info(
        f"{'Created' if created else 'Updated'} product: {product.product_name} "
        f"(ID: {product.id})"
    )
    _queue_graph_sync(product)

    return RecordOutcome(
        status=CrawlStatus.DONE,
        product_id=str(product.id),
        product_name=product.product_name,
        created=created,
    )


def _is_unchanged(product: CoffeeProduct, content_hash: Optional[str]) -> bool:
    if not content_hash or product.crawl_status != CrawlStatus.DONE:
        return False
    return not has_content_changed(content_hash, product.content_hash)


def save_error_placeholder(
    brand: CoffeeBrand,
    product_name: Optional[str],
    seller_url: Optional[str],
    error_message: str,
    existing_product_id=None,
) -> RecordOutcome:
    """
    Persist a minimal error-status row so the failure can be retried.

    Never raises; if even the placeholder cannot be written the error is
    logged and an unsaved outcome is returned.
    """
    name = product_name or PLACEHOLDER_PRODUCT_NAME

    try:
        with transaction.atomic():
            product = None
            if existing_product_id is not None:
                product = CoffeeProduct.objects.filter(id=existing_product_id).first()
            elif seller_url:
                product = CoffeeProduct.objects.filter(
                    brand=brand, seller_url=seller_url
                ).first()

            if product is None:
                product = CoffeeProduct(brand=brand, product_name=name)
                if seller_url:
                    product.seller_url = seller_url

            product.crawl_status = CrawlStatus.ERROR
            product.error_message = error_message
            product.last_update_date = timezone.now()
            product.save()

    except Exception as e:
        logger.error(f"Failed to save error placeholder for {name}: {e}")
        return RecordOutcome(
            status=CrawlStatus.ERROR,
            product_name=name,
            error_message=error_message,
        )

    logger.warning(f"Saved error placeholder for {name} ({seller_url}): {error_message}")
    return RecordOutcome(
        status=CrawlStatus.ERROR,
        product_id=str(product.id),
        product_name=name,
        error_message=error_message,
    )


def delete_products(products: Iterable[CoffeeProduct]) -> int:
    """
    Delete a batch of products.

    Returns:
        Number of products deleted
    """
    ids = [product.id for product in products]
    if not ids:
        return 0

    deleted, _ = CoffeeProduct.objects.filter(id__in=ids).delete()
    logger.info(f"Deleted {deleted} products")
    return deleted


def _queue_graph_sync(product: CoffeeProduct):
    """Queue knowledge-graph sync; best effort."""
    try:
        from coffee_crawler.tasks import sync_product_to_graph

        sync_product_to_graph.delay(str(product.id))
    except Exception as e:
        logger.error(f"Failed to queue graph sync for product {product.id}: {e}")
