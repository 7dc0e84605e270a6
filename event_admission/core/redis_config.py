import redis

from event_admission.core.settings import settings


def get_redis_url():
    return settings.redis_url


def get_redis_client() -> redis.Redis:
    """Get Redis client for locking, caching and fan-out."""
    return redis.from_url(get_redis_url(), decode_responses=True)
