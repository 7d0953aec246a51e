"""
Sentry reporting for crawl failures.

The SDK itself is initialised in config/settings/base.py when SENTRY_DSN is
set; without a DSN these calls are no-ops inside sentry_sdk.

Usage:
    from coffee_crawler.monitoring import capture_crawl_error

    try:
        ...
    except Exception as e:
        capture_crawl_error(error=e, brand=brand, url=url, stage="fallback")
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk

logger = logging.getLogger(__name__)

# Keys whose values never leave the process
SENSITIVE_FIELDS = {
    "cookie",
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "password",
    "secret",
    "token",
}


def _filter_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Replace values of sensitive keys with "[Filtered]", recursively."""
    if not isinstance(data, dict):
        return data

    filtered = {}
    for key, value in data.items():
        key_lower = str(key).lower()

        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            filtered[key] = "[Filtered]"
        elif isinstance(value, dict):
            filtered[key] = _filter_sensitive_data(value)
        else:
            filtered[key] = value

    return filtered


def add_crawl_breadcrumb(
    brand_name: str,
    url: str,
    stage: str,
    message: str = "Crawl operation",
    level: str = "info",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Add a crawl breadcrumb.

    Args:
        brand_name: Brand being crawled
        url: URL being processed
        stage: Pipeline stage (discovery, bulk, fallback, sitemap, single)
        message: Description of the operation
        level: Breadcrumb level
        extra_data: Additional context (filtered for sensitive keys)
    """
    data = {"brand": brand_name, "url": url, "stage": stage}
    if extra_data:
        data.update(_filter_sensitive_data(extra_data))

    try:
        sentry_sdk.add_breadcrumb(category="crawl", message=message, level=level, data=data)
    except Exception as e:
        logger.warning(f"Failed to add Sentry breadcrumb: {e}")


def capture_crawl_error(
    error: Exception,
    brand=None,
    url: Optional[str] = None,
    stage: Optional[str] = None,
    extra_context: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Capture a crawl exception with brand, URL and stage tags.
    """
    brand_name = brand.name if brand else "Unknown"

    add_crawl_breadcrumb(
        brand_name=brand_name,
        url=url or "Unknown",
        stage=stage or "unknown",
        message=f"Error: {type(error).__name__}",
        level="error",
        extra_data=extra_context,
    )

    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("crawler.brand", brand_name)
            scope.set_tag("crawler.stage", stage or "unknown")

            if brand is not None:
                scope.set_extra("brand_id", str(brand.id))
            if url:
                scope.set_extra("crawl_url", url)
            if extra_context:
                scope.set_extra("crawl_context", _filter_sensitive_data(extra_context))

            sentry_sdk.capture_exception(error)

    except Exception as e:
        logger.warning(f"Failed to capture exception to Sentry: {e}")
