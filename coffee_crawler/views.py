"""
Health check endpoint for monitoring and load balancer checks.
"""

from django.db import connection
from django.http import JsonResponse

from coffee_crawler.models import CrawlRun
from coffee_crawler.services.rate_limiter import get_rate_limiter


def get_celery_worker_count():
    """
    Get the count of active Celery workers.

    Returns:
        int: Number of active workers, 0 if Celery not available.
    """
    try:
        from config.celery import app as celery_app

        active = celery_app.control.inspect(timeout=1.0).active()
        if active:
            return len(active)
        return 0
    except Exception:
        return 0


def health_check(request):
    """
    Health check for the crawler service.

    Endpoint: GET /api/health/ (also /api/v1/health/)
    No authentication required.

    Response fields:
        - status: "healthy" or "unhealthy"
        - database: "connected" or "error"
        - redis: "connected" or "unavailable" (rate limiter store)
        - celery_workers: active worker count
        - last_crawl: ISO timestamp of the latest crawl run
        - last_crawl_status: status of the latest crawl run

    Returns:
        HTTP 200 when healthy, HTTP 503 when the database is unreachable
    """
    status = "healthy"
    http_status = 200

    database_status = "connected"
    try:
        connection.ensure_connection()
    except Exception:
        database_status = "error"
        status = "unhealthy"
        http_status = 503

    # Redis is optional: the rate limiter fails open without it
    redis_status = "unavailable"
    try:
        redis_client = get_rate_limiter().redis_client
        if redis_client is not None and redis_client.ping():
            redis_status = "connected"
    except Exception:
        redis_status = "unavailable"

    last_crawl = None
    last_crawl_status = None
    if database_status == "connected":
        latest_run = CrawlRun.objects.order_by("-started_at").first()
        if latest_run is not None:
            last_crawl = latest_run.started_at.isoformat()
            last_crawl_status = latest_run.status

    response_data = {
        "status": status,
        "database": database_status,
        "redis": redis_status,
        "celery_workers": get_celery_worker_count(),
        "last_crawl": last_crawl,
        "last_crawl_status": last_crawl_status,
    }

    return JsonResponse(response_data, status=http_status)
