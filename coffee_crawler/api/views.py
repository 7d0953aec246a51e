"""
REST API views for crawl management, geocoding and rate limit status.

Endpoints:
- POST /api/v1/crawl/brands/<brand_id>/   Queue a brand crawl
- POST /api/v1/crawl/retry-failed/        Queue a retry of failed products
- GET  /api/v1/geocode/                   Resolve coordinates (cache-first)
- GET  /api/v1/rate-limit/status/         Caller's rate limit counters

Crawl endpoints require authentication. Geocode and status endpoints are
public and guarded by DualWindowThrottle.
"""

import logging

from django.core.exceptions import ValidationError
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from coffee_crawler.api.throttling import DualWindowThrottle
from coffee_crawler.models import CoffeeBrand
from coffee_crawler.services.rate_limiter import get_rate_limiter

logger = logging.getLogger(__name__)


def _get_geocode_resolver():
    """Get GeocodeResolver instance (lazy import)."""
    from coffee_crawler.services.geocoding import get_geocode_resolver
    return get_geocode_resolver()


# ============================================================
# Crawl Endpoints
# ============================================================

@extend_schema(
    tags=['Crawl'],
    summary='Queue a brand crawl',
    description='''
    Queue a crawl for an approved brand.

    mode=adaptive (default) runs discovery, bulk extraction and, when the
    quality gate requires it, per-page fallback. mode=sitemap runs the
    incremental sitemap crawl, extracting only new or changed pages.
    ''',
    parameters=[
        OpenApiParameter('mode', OpenApiTypes.STR, enum=['adaptive', 'sitemap'], required=False),
    ],
    responses={
        202: {'description': 'Crawl queued'},
        400: {'description': 'Invalid mode or brand not approved'},
        404: {'description': 'Brand not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def trigger_brand_crawl(request, brand_id):
    from coffee_crawler.tasks import crawl_brand, crawl_brand_sitemap

    try:
        brand = CoffeeBrand.objects.get(id=brand_id)
    except (CoffeeBrand.DoesNotExist, ValidationError):
        return Response({'error': 'Brand not found'}, status=status.HTTP_404_NOT_FOUND)

    if not brand.approved:
        return Response(
            {'error': f'Brand {brand.name} is not approved for crawling'},
            status=status.HTTP_400_BAD_REQUEST,
        )

    mode = request.query_params.get('mode') or request.data.get('mode') or 'adaptive'
    if mode == 'adaptive':
        task = crawl_brand.delay(str(brand.id))
    elif mode == 'sitemap':
        if not brand.sitemap_url:
            return Response(
                {'error': f'Brand {brand.name} has no sitemap URL'},
                status=status.HTTP_400_BAD_REQUEST,
            )
        task = crawl_brand_sitemap.delay(str(brand.id))
    else:
        return Response(
            {'error': f'Invalid mode: {mode}. Valid modes: adaptive, sitemap'},
            status=status.HTTP_400_BAD_REQUEST,
        )

    logger.info(f"Queued {mode} crawl for brand {brand.name} (task {task.id})")
    return Response(
        {
            'status': 'queued',
            'brand_id': str(brand.id),
            'brand_name': brand.name,
            'mode': mode,
            'task_id': task.id,
        },
        status=status.HTTP_202_ACCEPTED,
    )


@extend_schema(
    tags=['Crawl'],
    summary='Retry failed products',
    description='Queue a single-product re-crawl for every product in error status.',
    responses={202: {'description': 'Retry queued'}},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def trigger_retry_failed(request):
    from coffee_crawler.tasks import retry_failed_products

    task = retry_failed_products.delay()
    return Response(
        {'status': 'queued', 'task_id': task.id},
        status=status.HTTP_202_ACCEPTED,
    )


# ============================================================
# Geocoding
# ============================================================

@extend_schema(
    tags=['Geocoding'],
    summary='Resolve coordinates for a location',
    description='''
    Cache-first lookup. Misses go to the geocoding service (1 request per
    second, process-wide) and then to an LLM fallback.
    ''',
    parameters=[
        OpenApiParameter('country', OpenApiTypes.STR, required=True),
        OpenApiParameter('location', OpenApiTypes.STR, required=False),
        OpenApiParameter('region', OpenApiTypes.STR, required=False),
    ],
    responses={
        200: {'description': 'Coordinates found'},
        400: {'description': 'Missing country'},
        404: {'description': 'Location could not be resolved'},
        429: {'description': 'Rate limit exceeded'},
    },
)
@api_view(['GET'])
@permission_classes([AllowAny])
@throttle_classes([DualWindowThrottle])
def geocode_location(request):
    country = (request.query_params.get('country') or '').strip()
    if not country:
        return Response({'error': 'country is required'}, status=status.HTTP_400_BAD_REQUEST)

    location = (request.query_params.get('location') or '').strip() or None
    region = (request.query_params.get('region') or '').strip() or None

    resolver = _get_geocode_resolver()
    if location is None and region is None:
        coordinates = resolver.resolve_country(country)
    else:
        coordinates = resolver.resolve(location or country, country, region)

    if coordinates is None:
        return Response(
            {'error': 'Location could not be resolved'},
            status=status.HTTP_404_NOT_FOUND,
        )

    return Response({
        'location_name': coordinates.location_name,
        'country': coordinates.country,
        'region': coordinates.region,
        'latitude': coordinates.latitude,
        'longitude': coordinates.longitude,
        'bounding_box': coordinates.bounding_box,
        'source': coordinates.source,
    })


# ============================================================
# Rate Limit Status
# ============================================================

@extend_schema(
    tags=['Rate Limit'],
    summary='Rate limit status for the caller',
    description='Reads the caller\'s minute and day counters without incrementing them.',
    responses={200: {'description': 'Current counters and ceilings'}},
)
@api_view(['GET'])
@permission_classes([AllowAny])
def rate_limit_status(request):
    client = DualWindowThrottle().get_ident(request)
    limiter_status = get_rate_limiter().get_status(client)

    return Response({
        'client': client,
        'current_minute_requests': limiter_status.current_minute_requests,
        'max_minute_requests': limiter_status.max_minute_requests,
        'minute_remaining': limiter_status.minute_remaining,
        'current_daily_requests': limiter_status.current_daily_requests,
        'max_daily_requests': limiter_status.max_daily_requests,
        'daily_remaining': limiter_status.daily_remaining,
    })
