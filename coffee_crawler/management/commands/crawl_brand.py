"""
Management command to crawl one brand synchronously.

Usage:
    python manage.py crawl_brand "Sweven Coffee"
    python manage.py crawl_brand 3f0c...-uuid --sitemap
"""

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from coffee_crawler.models import CoffeeBrand
from coffee_crawler.services.orchestrator import get_crawl_orchestrator


class Command(BaseCommand):
    help = 'Crawl a brand by name or ID (adaptive pipeline, or incremental sitemap crawl)'

    def add_arguments(self, parser):
        parser.add_argument('brand', type=str, help='Brand name or UUID')
        parser.add_argument(
            '--sitemap',
            action='store_true',
            help='Run the incremental sitemap crawl instead of the adaptive pipeline'
        )

    def handle(self, *args, **options):
        brand = self._get_brand(options['brand'])
        orchestrator = get_crawl_orchestrator()

        if options['sitemap']:
            summary = orchestrator.crawl_brand_from_sitemap(brand)
            self.stdout.write(f"Sitemap crawl for {brand.name}:")
            self.stdout.write(f"  New: {summary.new_products}")
            self.stdout.write(f"  Updated: {summary.updated_products}")
            self.stdout.write(f"  Unchanged: {summary.unchanged_products}")
            self.stdout.write(f"  Deleted: {summary.deleted_products}")
            self.stdout.write(f"  Failed: {summary.failed_products}")
            self.stdout.write(f"  Estimated cost saved: ${summary.api_cost_saved:.4f}")
            return

        result = orchestrator.crawl_brand(brand)
        style = self.style.SUCCESS if result.status == 'completed' else self.style.WARNING
        self.stdout.write(style(f"Crawl for {brand.name}: {result.status}"))
        self.stdout.write(f"  URLs discovered: {result.urls_discovered}")
        self.stdout.write(f"  URLs filtered: {result.urls_filtered}")
        self.stdout.write(f"  Unique products: {result.unique_products}")
        self.stdout.write(f"  Fallback triggered: {result.fallback_triggered}")
        self.stdout.write(f"  Saved: {result.records_saved}")
        self.stdout.write(f"  Unchanged: {result.records_unchanged}")
        self.stdout.write(f"  Failed: {result.records_failed}")
        if result.abort_reason:
            self.stdout.write(self.style.ERROR(f"  Reason: {result.abort_reason}"))

    def _get_brand(self, identifier):
        brand = CoffeeBrand.objects.filter(name__iexact=identifier).first()
        if brand is not None:
            return brand

        try:
            return CoffeeBrand.objects.get(id=identifier)
        except (CoffeeBrand.DoesNotExist, ValidationError):
            raise CommandError(f"Brand not found: {identifier}")
