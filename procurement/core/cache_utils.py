"""
Caching utilities for expensive aggregate queries
Uses Redis when configured, local memory otherwise
"""
from django.core.cache import cache
from functools import wraps
import hashlib
import logging

logger = logging.getLogger(__name__)

# Cache TTLs (in seconds)
SYSTEM_HEALTH_CACHE_TTL = 60
DASHBOARD_STATS_CACHE_TTL = 300
REPORTS_CACHE_TTL = 600

# Every key written through cached_query is prefixed with one of these
CACHE_PREFIXES = ('system_health', 'dashboard_stats', 'recent_updates')


def make_cache_key(prefix, *args, **kwargs):
    """Generate a unique cache key from arguments"""
    key_data = f"{prefix}:{args}:{sorted(kwargs.items())}"
    key_hash = hashlib.md5(key_data.encode()).hexdigest()
    return f"{prefix}:{key_hash}"


def cached_query(cache_ttl=60, key_prefix="query"):
    """
    Decorator to cache expensive queries

    Usage:
        @cached_query(cache_ttl=120, key_prefix="dashboard_stats")
        def get_dashboard_stats():
            # expensive query here
            return data

    The wrapped function gains a ``refresh`` keyword: ``refresh=True`` skips
    the cached value and stores a fresh one.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, refresh=False, **kwargs):
            cache_key = make_cache_key(key_prefix, *args, **kwargs)

            if not refresh:
                cached_data = cache.get(cache_key)
                if cached_data is not None:
                    logger.debug(f"Cache HIT for {key_prefix}: {cache_key}")
                    return cached_data

            logger.debug(f"Cache MISS for {key_prefix}: {cache_key}")
            result = func(*args, **kwargs)
            cache.set(cache_key, result, cache_ttl)
            _remember_key(key_prefix, cache_key, cache_ttl)
            return result
        wrapper.cache_prefix = key_prefix
        return wrapper
    return decorator


def _registry_key(prefix):
    return f"cache_registry:{prefix}"


def _remember_key(prefix, cache_key, ttl):
    keys = cache.get(_registry_key(prefix)) or set()
    keys.add(cache_key)
    cache.set(_registry_key(prefix), keys, max(ttl, REPORTS_CACHE_TTL))


def invalidate_cache_pattern(pattern):
    """
    Invalidate all cache keys matching a pattern
    Uses Redis SCAN when available, falls back to the key registry
    """
    try:
        from django_redis import get_redis_connection
        redis_conn = get_redis_connection("default")

        keys = []
        cursor = 0
        while True:
            cursor, partial_keys = redis_conn.scan(cursor, match=f"*{pattern}*", count=100)
            keys.extend(partial_keys)
            if cursor == 0:
                break

        if keys:
            redis_conn.delete(*keys)
            logger.info(f"Invalidated {len(keys)} cache keys matching pattern: {pattern}")
        return
    except NotImplementedError:
        # Not a Redis cache backend
        pass
    except Exception as e:
        logger.warning(f"Could not invalidate cache pattern {pattern} via Redis: {str(e)}")

    keys = cache.get(_registry_key(pattern)) or set()
    if keys:
        cache.delete_many(list(keys))
    cache.delete(_registry_key(pattern))


def invalidate_report_caches():
    """Invalidate health, dashboard and recent-update caches"""
    for prefix in CACHE_PREFIXES:
        invalidate_cache_pattern(prefix)
    logger.info("Invalidated report caches")
