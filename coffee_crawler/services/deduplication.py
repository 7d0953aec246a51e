"""
Roast-variant deduplication for product URLs.

Roasters often list one coffee under several URLs that differ only by roast
level, grind, or bag size. Collapsing those variants to a base product gives
the real number of products a bulk extraction should have returned.

Example:
    /products/brazil-santos-medium-roast-coffee-beans -> brazil-santos
    /products/brazil-santos-dark-roast-coffee-beans   -> brazil-santos
"""

import logging
import re
from typing import Iterable, Set

logger = logging.getLogger(__name__)

# Applied in order; later patterns assume earlier suffixes are gone.
VARIANT_PATTERNS = [
    (re.compile(r".*/products/"), ""),
    (re.compile(r"-(light|medium|medium-dark|dark|omni|espresso)(-roast)?"), ""),
    (re.compile(r"-(whole-bean|ground|filter|espresso-grind)"), ""),
    (re.compile(r"-(250g|500g|1kg|2kg|5kg)"), ""),
    (re.compile(r"-coffee-beans?"), ""),
    (re.compile(r"-beans?"), ""),
    (re.compile(r"\?.*"), ""),
]


def base_product_identity(url: str) -> str:
    """
    Strip roast, grind, size and packaging suffixes from a product URL.

    Args:
        url: Product URL or path

    Returns:
        Base product identity string
    """
    identity = url
    for pattern, replacement in VARIANT_PATTERNS:
        identity = pattern.sub(replacement, identity)
    return identity


def base_product_identities(urls: Iterable[str]) -> Set[str]:
    return {base_product_identity(url) for url in urls}


def count_unique_products(urls: Iterable[str]) -> int:
    """
    Count unique base products in a URL list.

    Args:
        urls: Product URLs from the sitemap

    Returns:
        Number of distinct base identities
    """
    urls = list(urls)
    unique = len(base_product_identities(urls))

    logger.info(
        f"Deduplication: {len(urls)} URLs -> {unique} unique base products "
        f"(removed {len(urls) - unique} variants)"
    )
    return unique
