"""
Persistent error records for crawl failures.

Every failure the pipeline survives (persistence errors, fallback aborts,
exhausted retries) gets a CrawlError row with brand, URL and attempt, so
that it can be reviewed and retried manually.

Usage:
    from coffee_crawler.monitoring import log_error_with_context

    log_error_with_context(error=e, brand=brand, url=url, attempt=3, stage="bulk")
"""

import logging
import traceback
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def create_crawl_error_record(
    brand,
    url: str,
    error_type: str,
    message: str,
    attempt: Optional[int] = None,
    stack_trace: Optional[str] = None,
):
    """
    Create a CrawlError row.

    Unknown error_type values are stored as "unknown".

    Returns:
        CrawlError instance, or None if the row could not be written
    """
    from coffee_crawler.models import CrawlError, ErrorType

    if error_type not in ErrorType.values:
        error_type = ErrorType.UNKNOWN

    try:
        error_record = CrawlError.objects.create(
            brand=brand,
            url=url or "",
            error_type=error_type,
            message=message,
            attempt=attempt,
            stack_trace=stack_trace or "",
        )
    except Exception as e:
        logger.error(f"Failed to create CrawlError record: {e}")
        return None

    logger.debug(f"Created CrawlError record {error_record.id} for {url}: {error_type}")
    return error_record


def log_error_with_context(
    error: Exception,
    brand=None,
    url: Optional[str] = None,
    attempt: Optional[int] = None,
    stage: Optional[str] = None,
    error_type: Optional[str] = None,
    extra_context: Optional[Dict[str, Any]] = None,
):
    """
    Record an error in the database and report it to Sentry.

    Args:
        error: The exception
        brand: CoffeeBrand the error belongs to
        url: URL being processed
        attempt: Attempt number, if retried
        stage: Pipeline stage
        error_type: Explicit ErrorType value (classified from the error if None)
        extra_context: Additional context for Sentry

    Returns:
        CrawlError instance or None
    """
    from .sentry_integration import capture_crawl_error

    error_type = error_type or _classify_error(error)

    stack_trace = "".join(
        traceback.format_exception(type(error), error, error.__traceback__)
    )

    error_record = create_crawl_error_record(
        brand=brand,
        url=url or "",
        error_type=error_type,
        message=str(error),
        attempt=attempt,
        stack_trace=stack_trace,
    )

    capture_crawl_error(
        error=error,
        brand=brand,
        url=url,
        stage=stage,
        extra_context={"error_type": error_type, "attempt": attempt, **(extra_context or {})},
    )

    return error_record


def _classify_error(error: Exception) -> str:
    """Map an exception to an ErrorType value."""
    from coffee_crawler.models import ErrorType

    error_class = type(error).__name__.lower()
    error_message = str(error).lower()

    if "timeout" in error_class or "timeout" in error_message:
        return ErrorType.TIMEOUT

    if "429" in error_message or "rate limit" in error_message:
        return ErrorType.RATE_LIMIT

    if any(term in error_class for term in ("connection", "connect", "network")):
        return ErrorType.CONNECTION

    if "render" in error_class:
        return ErrorType.RENDER

    if "fallbackaborted" in error_class:
        return ErrorType.EXTRACTION

    if any(term in error_class for term in ("parse", "json", "decode")):
        return ErrorType.PARSE

    if "integrity" in error_class or "database" in error_class:
        return ErrorType.PERSISTENCE

    if "oracle" in error_class or "api" in error_message:
        return ErrorType.API

    return ErrorType.UNKNOWN
