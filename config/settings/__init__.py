"""
Settings loader for the BeansFinder crawler service.

DJANGO_ENV selects the module: "production", "test", or anything else for
development. Celery workers and manage.py both point at config.settings.
"""

import os

DJANGO_ENV = os.getenv("DJANGO_ENV", "development").lower()

if DJANGO_ENV in ("production", "prod"):
    from .production import *
elif DJANGO_ENV == "test":
    from .test import *
else:
    from .development import *
