"""
Read-through caching for company display data.

Company lists and details are read far more often than they change. The
cached copies are for display only; ledger writes always read the locked
database row, never these entries.

Keys carry a generation number. Invalidation bumps the generation with an
atomic `cache.incr` instead of deleting keys, so a reader that loaded the
database before a commit and stores its payload afterwards writes under
the superseded generation, where nobody looks any more. Callers take the
key before reading the database and store under that same key.
"""
from django.core.cache import cache
import logging
import time

logger = logging.getLogger(__name__)

# Cache key prefixes
COMPANY_KEY_PREFIX = 'company:'
COMPANY_LIST_KEY_PREFIX = 'company_list:'
COMPANY_GENERATION_PREFIX = 'company_gen:'
COMPANY_LIST_GENERATION_KEY = 'company_list_gen'

# Cache TTL (Time To Live) in seconds
COMPANY_CACHE_TTL = 600  # 10 minutes
COMPANY_LIST_CACHE_TTL = 300  # 5 minutes


def _new_generation() -> int:
    # Counters that were evicted restart above any value they held before
    return time.time_ns()


def _get_generation(key: str) -> int:
    generation = cache.get(key)
    if generation is None:
        cache.add(key, _new_generation(), None)
        generation = cache.get(key)
    return generation


def _bump_generation(key: str):
    try:
        cache.incr(key)
    except ValueError:
        cache.set(key, _new_generation(), None)


def get_company_cache_key(company_id) -> str:
    """Get the current cache key for a company detail payload"""
    generation = _get_generation(f"{COMPANY_GENERATION_PREFIX}{company_id}")
    return f"{COMPANY_KEY_PREFIX}{company_id}:v{generation}"


def get_company_list_cache_key(search_query: str = '') -> str:
    """Get the current cache key for a company list payload"""
    generation = _get_generation(COMPANY_LIST_GENERATION_KEY)
    return f"{COMPANY_LIST_KEY_PREFIX}v{generation}:{search_query or 'all'}"


def get_cached_company(cache_key: str):
    cached_data = cache.get(cache_key)
    if cached_data:
        logger.debug(f"Cache hit: {cache_key}")
    return cached_data


def cache_company_data(cache_key: str, payload, ttl: int = None):
    cache.set(cache_key, payload, ttl or COMPANY_CACHE_TTL)


def get_cached_company_list(cache_key: str):
    return cache.get(cache_key)


def cache_company_list(cache_key: str, payload, ttl: int = None):
    cache.set(cache_key, payload, ttl or COMPANY_LIST_CACHE_TTL)


def invalidate_company_cache(company_id):
    """Retire the cached detail for one company and every cached list"""
    _bump_generation(COMPANY_LIST_GENERATION_KEY)
    if company_id is not None:
        _bump_generation(f"{COMPANY_GENERATION_PREFIX}{company_id}")
    logger.debug(f"Invalidated company cache (ID: {company_id})")
