"""
Product URL discovery and filtering.

Reads a brand's sitemap and narrows it to coffee bean product pages in two
passes: a free keyword filter, then the semantic UrlFilterOracle.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from coffee_crawler.services.oracles import UrlFilterOracle
from coffee_crawler.services.sitemap_parser import (
    discover_sitemap_url,
    fetch_sitemap_urls,
)

logger = logging.getLogger(__name__)

# Shopify /products/ and WooCommerce /product/ pages
PRODUCT_PATH_PATTERN = re.compile(r"/products?/[^/?#]+")

EXCLUDED_KEYWORDS = (
    "grinder",
    "machine",
    "kettle",
    "scale",
    "filter-paper",
    "paper-filter",
    "mug",
    "cups",
    "tool",
    "equipment",
    "urnex",
    "cafiza",
    "pallo",
    "cleaner",
    "acaia",
    "wilfa",
    "hario",
    "kalita",
    "gift-card",
    "giftcard",
    "voucher",
    "subscription",
    "merch",
    "t-shirt",
    "tote",
)


def is_candidate_product_url(url: str) -> bool:
    """
    Keyword pre-filter.

    Keeps product detail pages and drops obvious equipment, accessory and
    gift URLs before anything is sent to the semantic filter.
    """
    if not PRODUCT_PATH_PATTERN.search(url):
        return False

    lowered = url.lower()
    return not any(keyword in lowered for keyword in EXCLUDED_KEYWORDS)


def coarse_filter(urls: List[str]) -> List[str]:
    filtered = [url for url in urls if is_candidate_product_url(url)]
    logger.info(f"Keyword filter kept {len(filtered)} of {len(urls)} sitemap URLs")
    return filtered


@dataclass
class DiscoveryResult:
    """URLs found for a brand at each filtering stage."""

    sitemap_url: Optional[str]
    discovered: List[str] = field(default_factory=list)
    candidates: List[str] = field(default_factory=list)
    filtered: List[str] = field(default_factory=list)


class UrlDiscoveryService:
    """Sitemap -> keyword filter -> semantic filter."""

    def __init__(self, url_filter: Optional[UrlFilterOracle] = None):
        self.url_filter = url_filter or UrlFilterOracle()

    def resolve_sitemap_url(self, brand) -> Optional[str]:
        if brand.sitemap_url:
            return brand.sitemap_url
        if brand.website:
            return discover_sitemap_url(brand.website)
        return None

    def discover(self, brand) -> DiscoveryResult:
        """
        Discover and filter product URLs for a brand.

        Raises:
            SitemapParseError: If the root sitemap cannot be fetched
        """
        sitemap_url = self.resolve_sitemap_url(brand)
        if not sitemap_url:
            logger.warning(f"Brand {brand.name} has no sitemap URL or website")
            return DiscoveryResult(sitemap_url=None)

        discovered = fetch_sitemap_urls(sitemap_url)
        candidates = coarse_filter(discovered)

        if candidates:
            filtered = self.url_filter.filter_urls(candidates, brand.name)
        else:
            filtered = []

        logger.info(
            f"URL discovery for {brand.name}: {len(discovered)} discovered, "
            f"{len(candidates)} candidates, {len(filtered)} coffee products"
        )
        return DiscoveryResult(
            sitemap_url=sitemap_url,
            discovered=discovered,
            candidates=candidates,
            filtered=filtered,
        )

    def sitemap_product_urls(self, brand) -> List[str]:
        """Keyword-filtered sitemap URLs, used by the incremental crawl."""
        sitemap_url = self.resolve_sitemap_url(brand)
        if not sitemap_url:
            return []
        return coarse_filter(fetch_sitemap_urls(sitemap_url))


def get_url_discovery_service() -> UrlDiscoveryService:
    return UrlDiscoveryService()
