"""
Monitoring for the coffee crawler.

- Sentry error capture with brand/URL/stage context
- CrawlError records for failures that need manual retry
"""

from .sentry_integration import capture_crawl_error, add_crawl_breadcrumb
from .error_logger import create_crawl_error_record, log_error_with_context

__all__ = [
    "capture_crawl_error",
    "add_crawl_breadcrumb",
    "create_crawl_error_record",
    "log_error_with_context",
]
