"""
Management command to re-crawl every product in error status.

Usage:
    python manage.py retry_failed_products
"""

from django.core.management.base import BaseCommand

from coffee_crawler.services.orchestrator import get_crawl_orchestrator


class Command(BaseCommand):
    help = 'Re-run the single-product crawl for all products with crawl_status=error'

    def handle(self, *args, **options):
        counts = get_crawl_orchestrator().retry_failed_products()

        self.stdout.write(f"Retried: {counts['retried']}")
        self.stdout.write(self.style.SUCCESS(f"Succeeded: {counts['succeeded']}"))
        if counts['failed']:
            self.stdout.write(self.style.ERROR(f"Still failing: {counts['failed']}"))
