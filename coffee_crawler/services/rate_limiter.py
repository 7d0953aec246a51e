"""
Dual-window rate limiter backed by Redis counters.

Each client key has two self-expiring counters:
- ratelimit:minute:{client}         expires 60 seconds after first request
- ratelimit:daily:{client}:{date}   expires 24 hours after first request

INCR is atomic in Redis, so concurrent workers never lose an increment.
The day counter is only incremented once the minute check has passed.

Usage:
    from coffee_crawler.services.rate_limiter import get_rate_limiter

    limiter = get_rate_limiter()
    if not limiter.allow_request(client_ip):
        ...  # reject
"""

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from django.conf import settings

logger = logging.getLogger(__name__)

DEFAULT_REQUESTS_PER_MINUTE = 10
DEFAULT_REQUESTS_PER_DAY = 200

MINUTE_WINDOW_SECONDS = 60
DAY_WINDOW_SECONDS = 86400
DEFAULT_RECONNECT_SECONDS = 30.0


@dataclass
class RateLimitStatus:
    """Current counter values for a client."""

    current_minute_requests: int
    max_minute_requests: int
    current_daily_requests: int
    max_daily_requests: int

    @property
    def minute_remaining(self) -> int:
        return max(self.max_minute_requests - self.current_minute_requests, 0)

    @property
    def daily_remaining(self) -> int:
        return max(self.max_daily_requests - self.current_daily_requests, 0)


class RateLimiter:
    """
    Per-client admission control with minute and day windows.

    Fails open when Redis is unavailable: crawling must not stop because the
    counter store is down, and the failure is logged.

    When built with a client_factory, a missing connection is retried at most
    once per reconnect_seconds.
    """

    def __init__(
        self,
        redis_client=None,
        requests_per_minute: int = DEFAULT_REQUESTS_PER_MINUTE,
        requests_per_day: int = DEFAULT_REQUESTS_PER_DAY,
        key_prefix: str = "ratelimit",
        today: Callable[[], date] = date.today,
        client_factory: Optional[Callable[[], object]] = None,
        reconnect_seconds: float = DEFAULT_RECONNECT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            redis_client: Redis client instance
            requests_per_minute: Ceiling for the minute window
            requests_per_day: Ceiling for the day window
            key_prefix: Redis key prefix
            today: Clock used to build the daily key
            client_factory: Called to (re)connect while redis_client is None
            reconnect_seconds: Minimum gap between reconnect attempts
            clock: Monotonic clock for reconnect pacing
        """
        self.redis_client = redis_client
        self.requests_per_minute = requests_per_minute
        self.requests_per_day = requests_per_day
        self.key_prefix = key_prefix
        self._today = today
        self.client_factory = client_factory
        self.reconnect_seconds = reconnect_seconds
        self._clock = clock
        self._next_reconnect_at: Optional[float] = None

    def _connected_client(self):
        """Current client, reconnecting through client_factory when due."""
        if self.redis_client is not None or self.client_factory is None:
            return self.redis_client

        now = self._clock()
        if self._next_reconnect_at is not None and now < self._next_reconnect_at:
            return None

        self._next_reconnect_at = now + self.reconnect_seconds
        self.redis_client = self.client_factory()
        if self.redis_client is not None:
            logger.info("Reconnected to Redis, rate limiting enabled")
        return self.redis_client

    def _minute_key(self, client: str) -> str:
        return f"{self.key_prefix}:minute:{client}"

    def _daily_key(self, client: str) -> str:
        return f"{self.key_prefix}:daily:{client}:{self._today().isoformat()}"

    def _increment(self, redis_client, key: str, ttl: int) -> int:
        count = redis_client.incr(key)

        # Set TTL on first request in the window
        if count == 1:
            redis_client.expire(key, ttl)

        return int(count)

    def allow_request(self, client: str) -> bool:
        """
        Count a request and decide whether it is admitted.

        Args:
            client: Client identity (e.g. IP address)

        Returns:
            True if allowed, False if either window is exhausted
        """
        redis_client = self._connected_client()
        if redis_client is None:
            logger.warning("Redis client not available, rate limiting disabled")
            return True

        try:
            minute_count = self._increment(
                redis_client, self._minute_key(client), MINUTE_WINDOW_SECONDS
            )

            if minute_count > self.requests_per_minute:
                logger.warning(
                    f"Rate limit exceeded for {client}: {minute_count} requests "
                    f"in last minute (limit: {self.requests_per_minute})"
                )
                return False

            daily_count = self._increment(
                redis_client, self._daily_key(client), DAY_WINDOW_SECONDS
            )

            if daily_count > self.requests_per_day:
                logger.warning(
                    f"Daily rate limit exceeded for {client}: {daily_count} requests "
                    f"today (limit: {self.requests_per_day})"
                )
                return False

        except Exception as e:
            logger.warning(f"Failed to update rate limit counters in Redis: {e}")
            return True

        logger.debug(
            f"Request allowed for {client}: {minute_count}/min, {daily_count}/day"
        )
        return True

    def get_status(self, client: str) -> RateLimitStatus:
        """
        Read both counters without incrementing them.

        Args:
            client: Client identity

        Returns:
            RateLimitStatus (counts are 0 if Redis is unavailable)
        """
        minute_count = 0
        daily_count = 0

        redis_client = self._connected_client()
        if redis_client is not None:
            try:
                minute_value = redis_client.get(self._minute_key(client))
                daily_value = redis_client.get(self._daily_key(client))
                minute_count = int(minute_value) if minute_value else 0
                daily_count = int(daily_value) if daily_value else 0
            except Exception as e:
                logger.warning(f"Failed to read rate limit counters from Redis: {e}")

        return RateLimitStatus(
            current_minute_requests=minute_count,
            max_minute_requests=self.requests_per_minute,
            current_daily_requests=daily_count,
            max_daily_requests=self.requests_per_day,
        )


# Singleton instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """
    Get the global rate limiter instance.

    Creates the limiter on first call. If Redis is unreachable then, the
    limiter keeps retrying the connection instead of staying disabled.

    Returns:
        RateLimiter instance
    """
    global _rate_limiter

    if _rate_limiter is None:
        _rate_limiter = RateLimiter(
            redis_client=_get_redis_client(),
            requests_per_minute=getattr(
                settings, "RATE_LIMIT_PER_MINUTE", DEFAULT_REQUESTS_PER_MINUTE
            ),
            requests_per_day=getattr(
                settings, "RATE_LIMIT_PER_DAY", DEFAULT_REQUESTS_PER_DAY
            ),
            client_factory=_get_redis_client,
            reconnect_seconds=getattr(
                settings, "RATE_LIMIT_REDIS_RETRY_SECONDS", DEFAULT_RECONNECT_SECONDS
            ),
        )

    return _rate_limiter


def reset_rate_limiter() -> None:
    """Drop the global instance so the next call rebuilds it from settings."""
    global _rate_limiter
    _rate_limiter = None


def _get_redis_client():
    """
    Get a Redis client for rate limit counters.

    Returns:
        Redis client or None if connection fails
    """
    try:
        import redis

        redis_url = getattr(settings, "RATE_LIMIT_REDIS_URL", "redis://localhost:6379/3")
        client = redis.from_url(redis_url)
        client.ping()
        return client

    except Exception as e:
        logger.warning(f"Failed to connect to Redis for rate limiting: {e}")
        return None
