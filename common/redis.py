from functools import lru_cache

from django.conf import settings

from redis import Redis


@lru_cache(maxsize=1)
def get_redis_connection() -> Redis | None:
    """
    Shared Redis connection, or None when ``REDIS_URL`` is not configured.
    """
    if not settings.REDIS_URL:
        return None
    return Redis.from_url(settings.REDIS_URL)
