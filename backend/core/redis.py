from __future__ import annotations

from functools import lru_cache

import redis
from django.conf import settings


@lru_cache(maxsize=1)
def get_redis_client() -> "redis.Redis":
    """
    Return a Redis client configured from settings.REDIS_URL.
    Safe to call from views and Celery tasks.
    """
    url = getattr(settings, "REDIS_URL", None)
    if not url:
        raise RuntimeError("REDIS_URL is not configured")
    return redis.Redis.from_url(url)
