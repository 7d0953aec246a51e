"""
Coffee crawler application configuration.
"""

from django.apps import AppConfig


class CoffeeCrawlerConfig(AppConfig):
    """Configuration for the coffee_crawler Django application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "coffee_crawler"
    verbose_name = "Coffee Crawler"
