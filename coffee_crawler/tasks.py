"""
Celery tasks for the coffee crawler.

Brand crawls run on the crawl queue, one task per brand, so brands are
processed in parallel across workers while each brand's fallback stage
stays sequential. Knowledge-graph sync runs on the sync queue.

When crawls run is decided outside this service (cron, beat, or the API);
crawl_due_brands is the entry point such a trigger calls.
"""

import logging
from typing import Any, Dict

from celery import shared_task
from django.core.exceptions import ValidationError

from coffee_crawler.models import CoffeeBrand, CoffeeProduct

logger = logging.getLogger(__name__)


def _load_brand(brand_id: str):
    try:
        return CoffeeBrand.objects.get(id=brand_id)
    except (CoffeeBrand.DoesNotExist, ValidationError, ValueError):
        logger.error(f"Brand {brand_id} not found")
        return None


@shared_task(name="coffee_crawler.tasks.crawl_due_brands")
def crawl_due_brands() -> Dict[str, Any]:
    """
    Queue crawl_brand for every approved brand past its update interval.

    Returns:
        Dict with the number of brands queued
    """
    from coffee_crawler.services.orchestrator import get_crawl_orchestrator

    logger.info("Checking for brands due for crawl...")
    queued = get_crawl_orchestrator().crawl_due_brands()
    return {"status": "completed", "brands_queued": len(queued), "brand_ids": queued}


@shared_task(name="coffee_crawler.tasks.crawl_brand", bind=True)
def crawl_brand(self, brand_id: str) -> Dict[str, Any]:
    """
    Crawl one brand through discovery, bulk extraction and fallback.

    Args:
        brand_id: UUID of the CoffeeBrand

    Returns:
        Dict with the crawl result
    """
    from coffee_crawler.services.orchestrator import get_crawl_orchestrator

    brand = _load_brand(brand_id)
    if brand is None:
        return {"error": "Brand not found", "status": "failed"}

    logger.info(f"Task {self.request.id}: crawling brand {brand.name}")
    result = get_crawl_orchestrator().crawl_brand(brand)
    return result.to_dict()


@shared_task(name="coffee_crawler.tasks.crawl_brand_sitemap", bind=True)
def crawl_brand_sitemap(self, brand_id: str) -> Dict[str, Any]:
    """Incremental sitemap crawl for one brand."""
    from coffee_crawler.services.orchestrator import get_crawl_orchestrator

    brand = _load_brand(brand_id)
    if brand is None:
        return {"error": "Brand not found", "status": "failed"}

    logger.info(f"Task {self.request.id}: incremental sitemap crawl for {brand.name}")
    summary = get_crawl_orchestrator().crawl_brand_from_sitemap(brand)
    return {"status": "completed", **summary.to_dict()}


@shared_task(name="coffee_crawler.tasks.crawl_product")
def crawl_product(brand_id: str, url: str, product_id: str = None) -> Dict[str, Any]:
    """Render, extract and save a single product page."""
    from coffee_crawler.services.orchestrator import get_crawl_orchestrator

    brand = _load_brand(brand_id)
    if brand is None:
        return {"error": "Brand not found", "status": "failed"}

    outcome = get_crawl_orchestrator().crawl_product(brand, url, existing_product_id=product_id)
    return {
        "status": outcome.status,
        "product_id": outcome.product_id,
        "product_name": outcome.product_name,
        "created": outcome.created,
        "error_message": outcome.error_message,
    }


@shared_task(name="coffee_crawler.tasks.retry_failed_products")
def retry_failed_products() -> Dict[str, Any]:
    """Re-crawl every product in error status."""
    from coffee_crawler.services.orchestrator import get_crawl_orchestrator

    counts = get_crawl_orchestrator().retry_failed_products()
    return {"status": "completed", **counts}


@shared_task(name="coffee_crawler.tasks.sync_product_to_graph")
def sync_product_to_graph(product_id: str) -> Dict[str, Any]:
    """
    Push a product to the knowledge graph.

    Failures are logged and reported in the result; they never propagate.
    """
    from coffee_crawler.services.graph_sync import GraphSyncError, sync_product

    try:
        product = CoffeeProduct.objects.select_related("brand").get(id=product_id)
    except (CoffeeProduct.DoesNotExist, ValidationError, ValueError):
        logger.error(f"Product {product_id} not found for graph sync")
        return {"status": "failed", "error": "Product not found"}

    try:
        synced = sync_product(product)
    except GraphSyncError as e:
        logger.error(f"Failed to sync product {product_id} to knowledge graph: {e}")
        return {"status": "failed", "error": str(e)}

    return {"status": "synced" if synced else "skipped", "product_id": product_id}
