"""In-process caches backed by aiocache.

Everything cached here lives in memory for the lifetime of the process.
"""

from logging import getLogger
from typing import Any

from aiocache import caches
from aiocache.base import BaseCache

from pulseboard.settings import settings

logger = getLogger(__name__)

CACHE_ALIASES = ("default", "memory")


def configure_caches() -> None:
    """Register the in-memory cache aliases with aiocache."""
    config: dict[str, Any] = {}
    for alias in CACHE_ALIASES:
        config[alias] = {
            "cache": "aiocache.SimpleMemoryCache",
            "serializer": {"class": "aiocache.serializers.NullSerializer"},
            "ttl": settings.cache_default_ttl,
        }
    caches.set_config(config)
    logger.debug(f"Configured caches: {', '.join(CACHE_ALIASES)}")


def get_cache(alias: str = "default") -> BaseCache:
    """Return the cache registered under ``alias``, configuring caches on first use."""
    if "memory" not in caches.get_config():
        configure_caches()
    cache: BaseCache = caches.get(alias)
    return cache


async def get_cached(key: str, alias: str = "default") -> Any:
    """Read a cached value, or None when caching is disabled or the key is missing."""
    if not settings.cache_enabled:
        return None
    return await get_cache(alias).get(key)


async def set_cached(key: str, value: Any, ttl: int | None = None, alias: str = "default") -> None:
    """Store a value unless caching is disabled."""
    if not settings.cache_enabled:
        return
    await get_cache(alias).set(key, value, ttl=ttl)
