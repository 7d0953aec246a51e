"""
Coffee crawler URL configuration.
"""

from django.urls import include, path

from . import views

app_name = "coffee_crawler"

urlpatterns = [
    path("health/", views.health_check, name="health-check"),
    path("", include("coffee_crawler.api.urls")),
]
