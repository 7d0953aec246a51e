"""
Django models for the coffee crawler.

Models: CoffeeBrand, CoffeeProduct, LocationCoordinates, CrawlRun, CrawlError

Brands are registered externally (admin or import) and crawled periodically.
Products are created and updated by the crawl pipeline, one row per product
page. Location coordinates form the geocoding cache.
"""

import uuid

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone


class CrawlStatus(models.TextChoices):
    """Crawl status of a single product record."""

    PENDING = "pending", "Pending"
    IN_PROGRESS = "in_progress", "In Progress"
    DONE = "done", "Done"
    ERROR = "error", "Error"


class CrawlMode(models.TextChoices):
    """Which pipeline produced a crawl run."""

    BULK = "bulk", "Bulk Extraction"
    FALLBACK = "fallback", "Per-Page Fallback"
    SITEMAP = "sitemap", "Incremental Sitemap"
    SINGLE = "single", "Single Product"


class CrawlRunStatus(models.TextChoices):
    """Status of a crawl run."""

    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    ABORTED = "aborted", "Aborted"
    FAILED = "failed", "Failed"


class GeocodeSource(models.TextChoices):
    """Where a cached coordinate pair came from."""

    CACHE_ORIGIN = "cache-origin", "Origin Cache"
    GEOCODE_API = "geocode-api", "Geocoding API"
    LLM_FALLBACK = "llm-fallback", "LLM Fallback"
    SEEDED = "seeded", "Seeded"


class ErrorType(models.TextChoices):
    """Types of crawl errors."""

    CONNECTION = "connection", "Connection Error"
    TIMEOUT = "timeout", "Timeout"
    RATE_LIMIT = "rate_limit", "Rate Limited"
    PARSE = "parse", "Parse Error"
    API = "api", "API Error"
    RENDER = "render", "Render Failed"
    EXTRACTION = "extraction", "Extraction Failed"
    PERSISTENCE = "persistence", "Persistence Error"
    UNKNOWN = "unknown", "Unknown Error"


class CoffeeBrandQuerySet(models.QuerySet):
    """Query helpers for brand scheduling."""

    def approved(self):
        return self.filter(approved=True)

    def needing_crawl(self, cutoff):
        """
        Approved brands never crawled or last crawled before the cutoff.

        Args:
            cutoff: datetime; brands crawled at or after it are skipped
        """
        return self.approved().filter(
            Q(last_crawl_date__isnull=True) | Q(last_crawl_date__lt=cutoff)
        )


class CoffeeBrand(models.Model):
    """
    A coffee roaster whose website is crawled for products.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    website = models.URLField(max_length=500)
    sitemap_url = models.URLField(max_length=500, blank=True)
    country = models.CharField(max_length=100, blank=True)

    approved = models.BooleanField(
        default=False,
        help_text="Only approved brands are crawled",
    )

    # Crawl bookkeeping
    last_crawl_date = models.DateTimeField(null=True, blank=True)
    last_crawl_status = models.CharField(
        max_length=20,
        choices=CrawlRunStatus.choices,
        blank=True,
        help_text="Set only when a crawl completes successfully",
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = CoffeeBrandQuerySet.as_manager()

    class Meta:
        db_table = "coffee_brands"
        ordering = ["name"]
        indexes = [
            models.Index(
                fields=["approved", "last_crawl_date"],
                name="coffee_bran_approve_5c1f0e_idx",
            ),
        ]

    def __str__(self):
        return self.name

    def touch_crawl_date(self, status: str = ""):
        """Record a crawl attempt; status is only stored when given."""
        self.last_crawl_date = timezone.now()
        fields = ["last_crawl_date", "updated_at"]
        if status:
            self.last_crawl_status = status
            fields.append("last_crawl_status")
        self.save(update_fields=fields)


class CoffeeProduct(models.Model):
    """
    A coffee product as extracted from a brand's product page.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    brand = models.ForeignKey(
        CoffeeBrand, on_delete=models.CASCADE, related_name="products"
    )
    product_name = models.CharField(max_length=500)

    # Coffee attributes
    origin = models.CharField(max_length=255, blank=True, null=True)
    region = models.CharField(max_length=255, blank=True, null=True)
    process = models.CharField(max_length=255, blank=True, null=True)
    producer = models.CharField(max_length=255, blank=True, null=True)
    variety = models.CharField(max_length=255, blank=True, null=True)
    altitude = models.CharField(max_length=255, blank=True, null=True)
    tasting_notes = models.JSONField(default=list, blank=True)

    # Commerce
    price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    in_stock = models.BooleanField(default=True)
    seller_url = models.URLField(max_length=2000, blank=True, db_index=True)

    raw_description = models.TextField(blank=True)

    # Change detection
    content_hash = models.CharField(max_length=64, blank=True)

    # Crawl state
    crawl_status = models.CharField(
        max_length=20, choices=CrawlStatus.choices, default=CrawlStatus.PENDING
    )
    error_message = models.TextField(blank=True)

    created_at = models.DateTimeField(default=timezone.now)
    last_update_date = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "coffee_products"
        ordering = ["brand", "product_name"]
        indexes = [
            models.Index(
                fields=["brand", "product_name"],
                name="coffee_prod_brand_i_8d2a41_idx",
            ),
            models.Index(
                fields=["crawl_status"],
                name="coffee_prod_crawl_s_3e7b90_idx",
            ),
        ]

    def __str__(self):
        return f"{self.product_name} ({self.brand.name})"


class LocationCoordinates(models.Model):
    """
    Geocoding cache entry.

    One row per (location_name, country, region). Rows are created once and
    never overwritten; the first successful resolution wins.
    """

    id = models.BigAutoField(primary_key=True)
    location_name = models.CharField(max_length=255)
    country = models.CharField(max_length=100)
    region = models.CharField(max_length=255, blank=True, default="")

    latitude = models.FloatField()
    longitude = models.FloatField()
    bounding_box = models.JSONField(null=True, blank=True)

    source = models.CharField(max_length=20, choices=GeocodeSource.choices)
    created_date = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "location_coordinates"
        constraints = [
            models.UniqueConstraint(
                fields=["location_name", "country", "region"],
                name="unique_location_key",
            ),
        ]
        indexes = [
            models.Index(
                fields=["country"],
                name="location_co_country_a41c2d_idx",
            ),
        ]

    def __str__(self):
        return f"{self.location_name} ({self.latitude}, {self.longitude}) [{self.source}]"

    @staticmethod
    def coordinates_valid(latitude, longitude) -> bool:
        """Check latitude/longitude are within legal bounds."""
        try:
            lat = float(latitude)
            lon = float(longitude)
        except (TypeError, ValueError):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0

    def clean(self):
        if not self.coordinates_valid(self.latitude, self.longitude):
            raise ValidationError(
                f"Coordinates out of range: lat={self.latitude}, lon={self.longitude}"
            )

    def save(self, *args, **kwargs):
        self.clean()
        super().save(*args, **kwargs)


class CrawlRun(models.Model):
    """
    Tracks one brand crawl through the pipeline.

    Holds the quality metrics that drove the fallback decision and the
    final summary counts.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    brand = models.ForeignKey(
        CoffeeBrand, on_delete=models.CASCADE, related_name="crawl_runs"
    )
    mode = models.CharField(
        max_length=20, choices=CrawlMode.choices, default=CrawlMode.BULK
    )
    status = models.CharField(
        max_length=20, choices=CrawlRunStatus.choices, default=CrawlRunStatus.RUNNING
    )

    # Discovery
    urls_discovered = models.IntegerField(default=0)
    urls_filtered = models.IntegerField(default=0)
    unique_products = models.IntegerField(default=0)

    # Quality metrics of the bulk pass
    candidates = models.IntegerField(default=0)
    empty_percentage = models.FloatField(null=True, blank=True)
    extraction_rate = models.FloatField(null=True, blank=True)
    fallback_triggered = models.BooleanField(default=False)

    # Persistence
    records_saved = models.IntegerField(default=0)
    records_failed = models.IntegerField(default=0)

    abort_reason = models.TextField(blank=True)
    summary = models.JSONField(default=dict, blank=True)

    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "crawl_runs"
        ordering = ["-started_at"]
        indexes = [
            models.Index(
                fields=["brand", "started_at"],
                name="crawl_runs_brand_i_6f0d13_idx",
            ),
            models.Index(
                fields=["status"],
                name="crawl_runs_status_b72e55_idx",
            ),
        ]

    def __str__(self):
        return f"Run {self.id} - {self.brand.name} ({self.mode}, {self.status})"

    @property
    def duration_seconds(self):
        """Calculate run duration."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def finish(self, status: str, abort_reason: str = ""):
        """Mark the run terminal with the given status."""
        self.status = status
        self.completed_at = timezone.now()
        if abort_reason:
            self.abort_reason = abort_reason
        self.save()


class CrawlError(models.Model):
    """
    Persistent error logging for crawl failures.

    Each row carries enough context (brand, URL, attempt) for a manual retry.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    brand = models.ForeignKey(
        CoffeeBrand,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="errors",
    )
    url = models.URLField(max_length=2000, blank=True, help_text="URL that caused the error")

    error_type = models.CharField(
        max_length=20,
        choices=ErrorType.choices,
        help_text="Category of error",
    )
    message = models.TextField(help_text="Error message")
    stack_trace = models.TextField(blank=True, help_text="Full stack trace if available")
    attempt = models.IntegerField(
        null=True,
        blank=True,
        help_text="Attempt number when the error occurred",
    )

    timestamp = models.DateTimeField(default=timezone.now)
    resolved = models.BooleanField(default=False)

    class Meta:
        db_table = "crawl_errors"
        ordering = ["-timestamp"]
        indexes = [
            models.Index(
                fields=["brand", "timestamp"],
                name="crawl_error_brand_i_0c9a7e_idx",
            ),
            models.Index(
                fields=["error_type", "timestamp"],
                name="crawl_error_error_t_51d8b3_idx",
            ),
            models.Index(
                fields=["resolved"],
                name="crawl_error_resolve_e94f26_idx",
            ),
        ]

    def __str__(self):
        return f"{self.error_type}: {self.message[:50]}... ({self.timestamp})"
