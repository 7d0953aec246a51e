"""
API throttling backed by the dual-window rate limiter.
"""

from rest_framework.throttling import BaseThrottle

from coffee_crawler.services.rate_limiter import get_rate_limiter


class DualWindowThrottle(BaseThrottle):
    """
    Per-client throttle: 10 requests per minute and 200 per day by default.

    Counters live in Redis so every API process shares them. Limits come
    from RATE_LIMIT_PER_MINUTE and RATE_LIMIT_PER_DAY.
    """

    def allow_request(self, request, view):
        self.client = self.get_ident(request)
        return get_rate_limiter().allow_request(self.client)

    def wait(self):
        # Either window may be the one exhausted; the minute window is the shorter
        return 60
