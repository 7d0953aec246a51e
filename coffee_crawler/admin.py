"""
Django admin configuration for coffee crawler models.

Brands can be approved and queued for crawling from the changelist; crawl
runs and errors are read-only views for diagnosing failed crawls.
"""

from django.contrib import admin
from django.utils.html import format_html

from coffee_crawler.models import (
    CoffeeBrand,
    CoffeeProduct,
    CrawlError,
    CrawlRun,
    CrawlRunStatus,
    CrawlStatus,
    LocationCoordinates,
)
from coffee_crawler.tasks import crawl_brand, crawl_brand_sitemap, crawl_product

STATUS_COLORS = {
    CrawlStatus.DONE: "green",
    CrawlStatus.ERROR: "red",
    CrawlStatus.PENDING: "gray",
    CrawlStatus.IN_PROGRESS: "orange",
    CrawlRunStatus.COMPLETED: "green",
    CrawlRunStatus.ABORTED: "orange",
    CrawlRunStatus.FAILED: "red",
    CrawlRunStatus.RUNNING: "blue",
}


def _badge(value, label):
    color = STATUS_COLORS.get(value, "gray")
    return format_html('<span style="color: {};">{}</span>', color, label)


@admin.register(CoffeeBrand)
class CoffeeBrandAdmin(admin.ModelAdmin):
    list_display = [
        "name",
        "country",
        "approved",
        "last_crawl_date",
        "last_crawl_status",
        "product_count",
    ]
    list_filter = ["approved", "country", "last_crawl_status"]
    search_fields = ["name", "website"]
    readonly_fields = ["id", "last_crawl_date", "last_crawl_status", "created_at", "updated_at"]
    actions = ["approve_brands", "trigger_crawl", "trigger_sitemap_crawl"]

    def product_count(self, obj):
        return obj.products.count()

    product_count.short_description = "Products"

    @admin.action(description="Approve selected brands")
    def approve_brands(self, request, queryset):
        count = queryset.update(approved=True)
        self.message_user(request, f"Approved {count} brand(s).")

    @admin.action(description="Trigger crawl now")
    def trigger_crawl(self, request, queryset):
        count = 0
        for brand in queryset.filter(approved=True):
            crawl_brand.delay(str(brand.id))
            count += 1
        self.message_user(request, f"Queued crawl for {count} approved brand(s).")

    @admin.action(description="Trigger incremental sitemap crawl")
    def trigger_sitemap_crawl(self, request, queryset):
        count = 0
        for brand in queryset.filter(approved=True).exclude(sitemap_url=""):
            crawl_brand_sitemap.delay(str(brand.id))
            count += 1
        self.message_user(request, f"Queued sitemap crawl for {count} brand(s).")


@admin.register(CoffeeProduct)
class CoffeeProductAdmin(admin.ModelAdmin):
    list_display = [
        "product_name",
        "brand",
        "origin",
        "process",
        "price",
        "in_stock",
        "crawl_status_badge",
        "last_update_date",
    ]
    list_filter = ["crawl_status", "in_stock", "brand", "origin"]
    search_fields = ["product_name", "origin", "region", "producer", "seller_url"]
    readonly_fields = ["id", "content_hash", "created_at", "last_update_date"]
    actions = ["recrawl_products"]

    fieldsets = (
        ("Product", {
            "fields": ("id", "brand", "product_name", "seller_url", "price", "in_stock"),
        }),
        ("Coffee", {
            "fields": ("origin", "region", "process", "producer", "variety", "altitude", "tasting_notes"),
        }),
        ("Description", {
            "fields": ("raw_description",),
            "classes": ("collapse",),
        }),
        ("Crawl", {
            "fields": ("crawl_status", "error_message", "content_hash", "created_at", "last_update_date"),
        }),
    )

    def crawl_status_badge(self, obj):
        return _badge(obj.crawl_status, obj.get_crawl_status_display())

    crawl_status_badge.short_description = "Status"

    @admin.action(description="Re-crawl selected products")
    def recrawl_products(self, request, queryset):
        count = 0
        for product in queryset.exclude(seller_url=""):
            crawl_product.delay(str(product.brand_id), product.seller_url, str(product.id))
            count += 1
        self.message_user(request, f"Queued re-crawl for {count} product(s).")


@admin.register(LocationCoordinates)
class LocationCoordinatesAdmin(admin.ModelAdmin):
    list_display = ["location_name", "country", "region", "latitude", "longitude", "source", "created_date"]
    list_filter = ["source", "country"]
    search_fields = ["location_name", "country", "region"]


@admin.register(CrawlRun)
class CrawlRunAdmin(admin.ModelAdmin):
    list_display = [
        "brand",
        "mode",
        "status_badge",
        "urls_filtered",
        "candidates",
        "empty_percentage",
        "extraction_rate",
        "fallback_triggered",
        "records_saved",
        "records_failed",
        "started_at",
    ]
    list_filter = ["status", "mode", "fallback_triggered", "brand"]
    readonly_fields = [field.name for field in CrawlRun._meta.fields]
    ordering = ["-started_at"]

    def status_badge(self, obj):
        return _badge(obj.status, obj.get_status_display())

    status_badge.short_description = "Status"

    def has_add_permission(self, request):
        return False


@admin.register(CrawlError)
class CrawlErrorAdmin(admin.ModelAdmin):
    list_display = ["timestamp", "brand", "url_truncated", "error_type", "attempt", "resolved"]
    list_filter = ["error_type", "resolved", "brand", ("timestamp", admin.DateFieldListFilter)]
    search_fields = ["url", "message"]
    readonly_fields = ["id", "brand", "url", "error_type", "message", "stack_trace", "attempt", "timestamp"]
    ordering = ["-timestamp"]
    actions = ["mark_resolved", "mark_unresolved"]

    def url_truncated(self, obj):
        max_length = 50
        if len(obj.url) > max_length:
            return obj.url[:max_length] + "..."
        return obj.url

    url_truncated.short_description = "URL"

    @admin.action(description="Mark as resolved")
    def mark_resolved(self, request, queryset):
        count = queryset.update(resolved=True)
        self.message_user(request, f"Marked {count} error(s) as resolved.")

    @admin.action(description="Mark as unresolved")
    def mark_unresolved(self, request, queryset):
        count = queryset.update(resolved=False)
        self.message_user(request, f"Marked {count} error(s) as unresolved.")
