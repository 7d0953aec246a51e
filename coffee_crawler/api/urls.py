"""
URL patterns for the coffee crawler REST API.

Endpoints:
- POST /api/v1/crawl/brands/<brand_id>/  - Queue brand crawl
- POST /api/v1/crawl/retry-failed/       - Queue retry of failed products
- GET  /api/v1/geocode/                  - Resolve coordinates
- GET  /api/v1/rate-limit/status/        - Caller's rate limit counters
"""

from django.urls import path

from coffee_crawler.api.views import (
    geocode_location,
    rate_limit_status,
    trigger_brand_crawl,
    trigger_retry_failed,
)

app_name = 'coffee_crawler_api'

urlpatterns = [
    # Crawl endpoints
    path('crawl/brands/<str:brand_id>/', trigger_brand_crawl, name='trigger_brand_crawl'),
    path('crawl/retry-failed/', trigger_retry_failed, name='trigger_retry_failed'),

    # Geocoding
    path('geocode/', geocode_location, name='geocode_location'),

    # Rate limit
    path('rate-limit/status/', rate_limit_status, name='rate_limit_status'),
]
