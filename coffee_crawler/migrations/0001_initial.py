"""
Initial schema: brands, products, geocoding cache, crawl runs and errors.
"""

import uuid
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


CRAWL_RUN_STATUS_CHOICES = [
    ("running", "Running"),
    ("completed", "Completed"),
    ("aborted", "Aborted"),
    ("failed", "Failed"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CoffeeBrand",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("name", models.CharField(max_length=255, unique=True)),
                ("website", models.URLField(max_length=500)),
                ("sitemap_url", models.URLField(blank=True, max_length=500)),
                ("country", models.CharField(blank=True, max_length=100)),
                (
                    "approved",
                    models.BooleanField(
                        default=False,
                        help_text="Only approved brands are crawled",
                    ),
                ),
                ("last_crawl_date", models.DateTimeField(blank=True, null=True)),
                (
                    "last_crawl_status",
                    models.CharField(
                        blank=True,
                        choices=CRAWL_RUN_STATUS_CHOICES,
                        help_text="Set only when a crawl completes successfully",
                        max_length=20,
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "coffee_brands",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="LocationCoordinates",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("location_name", models.CharField(max_length=255)),
                ("country", models.CharField(max_length=100)),
                ("region", models.CharField(blank=True, default="", max_length=255)),
                ("latitude", models.FloatField()),
                ("longitude", models.FloatField()),
                ("bounding_box", models.JSONField(blank=True, null=True)),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("cache-origin", "Origin Cache"),
                            ("geocode-api", "Geocoding API"),
                            ("llm-fallback", "LLM Fallback"),
                            ("seeded", "Seeded"),
                        ],
                        max_length=20,
                    ),
                ),
                ("created_date", models.DateTimeField(default=django.utils.timezone.now)),
            ],
            options={
                "db_table": "location_coordinates",
            },
        ),
        migrations.CreateModel(
            name="CoffeeProduct",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("product_name", models.CharField(max_length=500)),
                ("origin", models.CharField(blank=True, max_length=255, null=True)),
                ("region", models.CharField(blank=True, max_length=255, null=True)),
                ("process", models.CharField(blank=True, max_length=255, null=True)),
                ("producer", models.CharField(blank=True, max_length=255, null=True)),
                ("variety", models.CharField(blank=True, max_length=255, null=True)),
                ("altitude", models.CharField(blank=True, max_length=255, null=True)),
                ("tasting_notes", models.JSONField(blank=True, default=list)),
                (
                    "price",
                    models.DecimalField(
                        blank=True, decimal_places=2, max_digits=10, null=True
                    ),
                ),
                ("in_stock", models.BooleanField(default=True)),
                (
                    "seller_url",
                    models.URLField(blank=True, db_index=True, max_length=2000),
                ),
                ("raw_description", models.TextField(blank=True)),
                ("content_hash", models.CharField(blank=True, max_length=64)),
                (
                    "crawl_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("in_progress", "In Progress"),
                            ("done", "Done"),
                            ("error", "Error"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("error_message", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("last_update_date", models.DateTimeField(blank=True, null=True)),
                (
                    "brand",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="products",
                        to="coffee_crawler.coffeebrand",
                    ),
                ),
            ],
            options={
                "db_table": "coffee_products",
                "ordering": ["brand", "product_name"],
            },
        ),
        migrations.CreateModel(
            name="CrawlRun",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "mode",
                    models.CharField(
                        choices=[
                            ("bulk", "Bulk Extraction"),
                            ("fallback", "Per-Page Fallback"),
                            ("sitemap", "Incremental Sitemap"),
                            ("single", "Single Product"),
                        ],
                        default="bulk",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=CRAWL_RUN_STATUS_CHOICES,
                        default="running",
                        max_length=20,
                    ),
                ),
                ("urls_discovered", models.IntegerField(default=0)),
                ("urls_filtered", models.IntegerField(default=0)),
                ("unique_products", models.IntegerField(default=0)),
                ("candidates", models.IntegerField(default=0)),
                ("empty_percentage", models.FloatField(blank=True, null=True)),
                ("extraction_rate", models.FloatField(blank=True, null=True)),
                ("fallback_triggered", models.BooleanField(default=False)),
                ("records_saved", models.IntegerField(default=0)),
                ("records_failed", models.IntegerField(default=0)),
                ("abort_reason", models.TextField(blank=True)),
                ("summary", models.JSONField(blank=True, default=dict)),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "brand",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="crawl_runs",
                        to="coffee_crawler.coffeebrand",
                    ),
                ),
            ],
            options={
                "db_table": "crawl_runs",
                "ordering": ["-started_at"],
            },
        ),
        migrations.CreateModel(
            name="CrawlError",
            fields=[
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "url",
                    models.URLField(
                        blank=True,
                        help_text="URL that caused the error",
                        max_length=2000,
                    ),
                ),
                (
                    "error_type",
                    models.CharField(
                        choices=[
                            ("connection", "Connection Error"),
                            ("timeout", "Timeout"),
                            ("rate_limit", "Rate Limited"),
                            ("parse", "Parse Error"),
                            ("api", "API Error"),
                            ("render", "Render Failed"),
                            ("extraction", "Extraction Failed"),
                            ("persistence", "Persistence Error"),
                            ("unknown", "Unknown Error"),
                        ],
                        help_text="Category of error",
                        max_length=20,
                    ),
                ),
                ("message", models.TextField(help_text="Error message")),
                (
                    "stack_trace",
                    models.TextField(blank=True, help_text="Full stack trace if available"),
                ),
                (
                    "attempt",
                    models.IntegerField(
                        blank=True,
                        help_text="Attempt number when the error occurred",
                        null=True,
                    ),
                ),
                ("timestamp", models.DateTimeField(default=django.utils.timezone.now)),
                ("resolved", models.BooleanField(default=False)),
                (
                    "brand",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="errors",
                        to="coffee_crawler.coffeebrand",
                    ),
                ),
            ],
            options={
                "db_table": "crawl_errors",
                "ordering": ["-timestamp"],
            },
        ),
        migrations.AddIndex(
            model_name="coffeebrand",
            index=models.Index(
                fields=["approved", "last_crawl_date"],
                name="coffee_bran_approve_5c1f0e_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="coffeeproduct",
            index=models.Index(
                fields=["brand", "product_name"],
                name="coffee_prod_brand_i_8d2a41_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="coffeeproduct",
            index=models.Index(
                fields=["crawl_status"],
                name="coffee_prod_crawl_s_3e7b90_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="locationcoordinates",
            index=models.Index(
                fields=["country"],
                name="location_co_country_a41c2d_idx",
            ),
        ),
        migrations.AddConstraint(
            model_name="locationcoordinates",
            constraint=models.UniqueConstraint(
                fields=("location_name", "country", "region"),
                name="unique_location_key",
            ),
        ),
        migrations.AddIndex(
            model_name="crawlrun",
            index=models.Index(
                fields=["brand", "started_at"],
                name="crawl_runs_brand_i_6f0d13_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="crawlrun",
            index=models.Index(
                fields=["status"],
                name="crawl_runs_status_b72e55_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="crawlerror",
            index=models.Index(
                fields=["brand", "timestamp"],
                name="crawl_error_brand_i_0c9a7e_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="crawlerror",
            index=models.Index(
                fields=["error_type", "timestamp"],
                name="crawl_error_error_t_51d8b3_idx",
            ),
        ),
        migrations.AddIndex(
            model_name="crawlerror",
            index=models.Index(
                fields=["resolved"],
                name="crawl_error_resolve_e94f26_idx",
            ),
        ),
    ]
