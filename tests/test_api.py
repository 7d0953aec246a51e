"""
Tests for the crawler REST API and health check endpoints.
"""

import uuid
from unittest.mock import MagicMock, patch

import pytest
from django.urls import reverse

from coffee_crawler.models import CrawlRun, CrawlRunStatus, GeocodeSource, LocationCoordinates
from coffee_crawler.services.rate_limiter import RateLimiter, reset_rate_limiter


class CounterRedis:
    """Minimal in-memory Redis for INCR/EXPIRE/GET."""

    def __init__(self):
        self.values = {}

    def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    def expire(self, key, ttl):
        return True

    def get(self, key):
        value = self.values.get(key)
        return str(value).encode() if value is not None else None

    def ping(self):
        return True


@pytest.fixture
def counter_redis():
    redis_client = CounterRedis()
    reset_rate_limiter()
    with patch(
        "coffee_crawler.services.rate_limiter._get_redis_client",
        return_value=redis_client,
    ):
        yield redis_client
    reset_rate_limiter()


@pytest.fixture
def no_redis():
    reset_rate_limiter()
    with patch("coffee_crawler.services.rate_limiter._get_redis_client", return_value=None):
        yield
    reset_rate_limiter()


def _queued_task(task_id="task-123"):
    task = MagicMock()
    task.id = task_id
    return task


@pytest.mark.django_db
class TestTriggerBrandCrawl:
    """Tests for POST /api/v1/crawl/brands/<brand_id>/."""

    def _url(self, brand_id):
        return reverse("coffee_crawler:coffee_crawler_api:trigger_brand_crawl", args=[brand_id])

    def test_adaptive_crawl_queued(self, authenticated_client, coffee_brand):
        with patch("coffee_crawler.tasks.crawl_brand.delay", return_value=_queued_task()) as mock_delay:
            response = authenticated_client.post(self._url(coffee_brand.id))

        assert response.status_code == 202
        assert response.data["status"] == "queued"
        assert response.data["mode"] == "adaptive"
        assert response.data["task_id"] == "task-123"
        mock_delay.assert_called_once_with(str(coffee_brand.id))

    def test_sitemap_crawl_queued(self, authenticated_client, coffee_brand):
        with patch(
            "coffee_crawler.tasks.crawl_brand_sitemap.delay", return_value=_queued_task()
        ) as mock_delay:
            response = authenticated_client.post(f"{self._url(coffee_brand.id)}?mode=sitemap")

        assert response.status_code == 202
        assert response.data["mode"] == "sitemap"
        mock_delay.assert_called_once_with(str(coffee_brand.id))

    def test_sitemap_mode_requires_sitemap_url(self, authenticated_client, coffee_brand):
        coffee_brand.sitemap_url = ""
        coffee_brand.save()

        with patch("coffee_crawler.tasks.crawl_brand_sitemap.delay") as mock_delay:
            response = authenticated_client.post(f"{self._url(coffee_brand.id)}?mode=sitemap")

        assert response.status_code == 400
        mock_delay.assert_not_called()

    def test_invalid_mode(self, authenticated_client, coffee_brand):
        response = authenticated_client.post(f"{self._url(coffee_brand.id)}?mode=turbo")

        assert response.status_code == 400
        assert "Invalid mode" in response.data["error"]

    def test_unapproved_brand_rejected(self, authenticated_client, unapproved_brand):
        with patch("coffee_crawler.tasks.crawl_brand.delay") as mock_delay:
            response = authenticated_client.post(self._url(unapproved_brand.id))

        assert response.status_code == 400
        assert "not approved" in response.data["error"]
        mock_delay.assert_not_called()

    def test_unknown_brand(self, authenticated_client):
        response = authenticated_client.post(self._url(uuid.uuid4()))

        assert response.status_code == 404

    def test_malformed_brand_id(self, authenticated_client):
        response = authenticated_client.post(self._url("not-a-uuid"))

        assert response.status_code == 404

    def test_requires_authentication(self, api_client, coffee_brand):
        with patch("coffee_crawler.tasks.crawl_brand.delay") as mock_delay:
            response = api_client.post(self._url(coffee_brand.id))

        assert response.status_code == 403
        mock_delay.assert_not_called()


@pytest.mark.django_db
class TestTriggerRetryFailed:

    def test_retry_queued(self, authenticated_client):
        url = reverse("coffee_crawler:coffee_crawler_api:trigger_retry_failed")

        with patch(
            "coffee_crawler.tasks.retry_failed_products.delay",
            return_value=_queued_task("retry-1"),
        ):
            response = authenticated_client.post(url)

        assert response.status_code == 202
        assert response.data == {"status": "queued", "task_id": "retry-1"}

    def test_requires_authentication(self, api_client):
        response = api_client.post(reverse("coffee_crawler:coffee_crawler_api:trigger_retry_failed"))

        assert response.status_code == 403


@pytest.mark.django_db
class TestGeocodeEndpoint:
    """Tests for GET /api/v1/geocode/."""

    URL = "/api/v1/geocode/"

    @pytest.fixture
    def resolver(self):
        resolver = MagicMock()
        with patch("coffee_crawler.api.views._get_geocode_resolver", return_value=resolver):
            yield resolver

    def test_country_required(self, api_client, no_redis, resolver):
        response = api_client.get(self.URL, {"location": "Yirgacheffe"})

        assert response.status_code == 400
        resolver.resolve.assert_not_called()

    def test_location_resolved(self, api_client, no_redis, resolver):
        resolver.resolve.return_value = LocationCoordinates(
            location_name="Yirgacheffe",
            country="Ethiopia",
            region="Sidama",
            latitude=6.16,
            longitude=38.2,
            source=GeocodeSource.GEOCODE_API,
        )

        response = api_client.get(
            self.URL, {"location": "Yirgacheffe", "country": "Ethiopia", "region": "Sidama"}
        )

        assert response.status_code == 200
        assert response.data["latitude"] == 6.16
        assert response.data["source"] == "geocode-api"
        resolver.resolve.assert_called_once_with("Yirgacheffe", "Ethiopia", "Sidama")

    def test_country_only_lookup(self, api_client, no_redis, resolver):
        resolver.resolve_country.return_value = LocationCoordinates(
            location_name="Kenya", country="Kenya", latitude=0.02, longitude=37.9,
        )

        response = api_client.get(self.URL, {"country": "Kenya"})

        assert response.status_code == 200
        resolver.resolve_country.assert_called_once_with("Kenya")

    def test_unresolved_location(self, api_client, no_redis, resolver):
        resolver.resolve.return_value = None

        response = api_client.get(self.URL, {"location": "Atlantis", "country": "Nowhere"})

        assert response.status_code == 404

    def test_eleventh_request_throttled(self, api_client, counter_redis, resolver):
        resolver.resolve_country.return_value = None

        codes = [api_client.get(self.URL, {"country": "Kenya"}).status_code for _ in range(11)]

        assert codes[:10] == [404] * 10
        assert codes[10] == 429
        assert resolver.resolve_country.call_count == 10


@pytest.mark.django_db
class TestRateLimitStatus:

    URL = "/api/v1/rate-limit/status/"

    def test_status_fields(self, api_client, counter_redis):
        response = api_client.get(self.URL)

        assert response.status_code == 200
        assert response.data["current_minute_requests"] == 0
        assert response.data["max_minute_requests"] == 10
        assert response.data["minute_remaining"] == 10
        assert response.data["max_daily_requests"] == 200
        assert response.data["daily_remaining"] == 200

    def test_status_does_not_count(self, api_client, counter_redis):
        api_client.get(self.URL)
        response = api_client.get(self.URL)

        assert response.data["current_minute_requests"] == 0

    def test_status_reflects_geocode_traffic(self, api_client, counter_redis):
        with patch("coffee_crawler.api.views._get_geocode_resolver") as mock_factory:
            mock_factory.return_value.resolve_country.return_value = None
            api_client.get("/api/v1/geocode/", {"country": "Kenya"})
            api_client.get("/api/v1/geocode/", {"country": "Kenya"})

        response = api_client.get(self.URL)

        assert response.data["current_minute_requests"] == 2
        assert response.data["current_daily_requests"] == 2
        assert response.data["minute_remaining"] == 8

    def test_limiter_built_from_settings(self, counter_redis, settings):
        from coffee_crawler.services.rate_limiter import get_rate_limiter

        settings.RATE_LIMIT_PER_MINUTE = 3
        reset_rate_limiter()

        limiter = get_rate_limiter()

        assert isinstance(limiter, RateLimiter)
        assert limiter.requests_per_minute == 3
        assert limiter.redis_client is counter_redis


@pytest.mark.django_db
class TestHealthCheck:
    """Tests for the health check endpoint."""

    @pytest.fixture(autouse=True)
    def no_workers(self):
        with patch("coffee_crawler.views.get_celery_worker_count", return_value=0):
            yield

    def test_health_check_returns_200(self, api_client, no_redis):
        response = api_client.get("/api/health/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["redis"] == "unavailable"
        assert data["celery_workers"] == 0
        assert data["last_crawl"] is None

    def test_versioned_path(self, api_client, counter_redis):
        response = api_client.get("/api/v1/health/")

        assert response.status_code == 200
        assert response.json()["redis"] == "connected"

    def test_latest_crawl_reported(self, api_client, no_redis, coffee_brand):
        run = CrawlRun.objects.create(brand=coffee_brand, mode="bulk")
        run.finish(CrawlRunStatus.COMPLETED)

        data = api_client.get("/api/health/").json()

        assert data["last_crawl_status"] == CrawlRunStatus.COMPLETED
        assert data["last_crawl"] is not None

    def test_database_failure_returns_503(self, api_client, no_redis):
        with patch("coffee_crawler.views.connection.ensure_connection", side_effect=Exception("down")):
            response = api_client.get("/api/health/")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
