"""
Knowledge-graph sync.

Pushes a saved product to the external knowledge-graph service. Best effort:
callers log failures and carry on.
"""

import logging
from typing import Any, Dict

import httpx
from django.conf import settings

from coffee_crawler.models import CoffeeProduct

logger = logging.getLogger(__name__)


class GraphSyncError(Exception):
    pass


def product_payload(product: CoffeeProduct) -> Dict[str, Any]:
    return {
        "id": str(product.id),
        "brand": product.brand.name,
        "product_name": product.product_name,
        "origin": product.origin,
        "region": product.region,
        "process": product.process,
        "producer": product.producer,
        "variety": product.variety,
        "altitude": product.altitude,
        "tasting_notes": product.tasting_notes,
        "price": str(product.price) if product.price is not None else None,
        "in_stock": product.in_stock,
        "seller_url": product.seller_url,
    }


def sync_product(product: CoffeeProduct) -> bool:
    """
    POST a product to the knowledge-graph service.

    Returns:
        False if no sync URL is configured, True once accepted

    Raises:
        GraphSyncError: On transport or HTTP failure
    """
    sync_url = getattr(settings, "KNOWLEDGE_GRAPH_SYNC_URL", "")
    if not sync_url:
        logger.debug("Knowledge graph sync disabled, no KNOWLEDGE_GRAPH_SYNC_URL")
        return False

    headers = {"Content-Type": "application/json"}
    token = getattr(settings, "KNOWLEDGE_GRAPH_SYNC_TOKEN", "")
    if token:
        headers["Authorization"] = f"Bearer {token}"

    timeout = getattr(settings, "CRAWLER_REQUEST_TIMEOUT", 30)

    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(sync_url, json=product_payload(product), headers=headers)
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise GraphSyncError(f"HTTP error {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise GraphSyncError(f"Request error: {e}") from e

    logger.info(f"Synced product {product.id} to knowledge graph")
    return True
