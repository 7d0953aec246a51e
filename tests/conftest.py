"""
Pytest configuration and fixtures for the coffee crawler test suite.
"""

import pytest


@pytest.fixture(scope="session")
def django_db_setup(django_db_blocker):
    """Configure the test database and run migrations."""
    from django.core.management import call_command

    with django_db_blocker.unblock():
        call_command("migrate", "--run-syncdb", verbosity=0)


@pytest.fixture
def api_client():
    """Create a test API client."""
    from rest_framework.test import APIClient

    return APIClient()


@pytest.fixture
def authenticated_client(db, api_client):
    """API client logged in as a staff user."""
    from django.contrib.auth import get_user_model

    user = get_user_model().objects.create_user(
        username="crawler-admin",
        password="test-password",
        is_staff=True,
    )
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def unapproved_brand(db):
    """Create a CoffeeBrand that has not been approved for crawling."""
    from coffee_crawler.models import CoffeeBrand

    return CoffeeBrand.objects.create(
        name="Pending Roasters",
        website="https://pendingroasters.com",
        sitemap_url="https://pendingroasters.com/sitemap.xml",
        approved=False,
    )
