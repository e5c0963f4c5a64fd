"""
Cache-aside store for book views and listings.

Backed by Redis when ``REDIS_URL`` is configured and reachable; an in-process
memory cache serves when Redis is absent or a Redis call fails.
Every entry is best-effort: a failing backend is logged and treated as a miss.
"""

import json
import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import redis

from book_network.config import settings

logger = logging.getLogger(__name__)

MAX_MEMORY_ENTRIES = 1000


class CacheManager:
    """Redis cache with an in-memory fallback, keyed under a common prefix."""

    def __init__(self, redis_url: Optional[str] = None, key_prefix: str = "book_network",
                 default_ttl: Optional[int] = None):
        self.redis_client = None
        self.key_prefix = key_prefix
        self.default_ttl = default_ttl if default_ttl is not None else settings.cache_ttl
        self.memory_cache: Dict[str, tuple] = {}
        self.memory_cache_lock = threading.RLock()
        # Bumped by every invalidation; see set(generation=...)
        self.generation = 0
        self.cache_stats = {
            'hits': 0,
            'misses': 0,
            'redis_hits': 0,
            'memory_hits': 0
        }

        self._init_redis(settings.redis_url if redis_url is None else redis_url)

    def _init_redis(self, redis_url: str):
        """Connect to Redis if a URL is configured."""
        if not redis_url:
            logger.info("No REDIS_URL configured, using the in-memory cache only")
            return

        try:
            self.redis_client = redis.from_url(
                redis_url,
                decode_responses=False,
                socket_connect_timeout=1,
                socket_timeout=1,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.redis_client.ping()
            logger.info("Redis cache initialised")
        except redis.RedisError as e:
            logger.warning(f"Could not initialise Redis: {e}. Using the memory cache only.")
            self.redis_client = None

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    @staticmethod
    def _serialize_value(value: Any) -> bytes:
        return json.dumps(value, default=str, ensure_ascii=False).encode('utf-8')

    @staticmethod
    def _deserialize_value(data: bytes) -> Any:
        return json.loads(data.decode('utf-8'))

    def get(self, key: str) -> Optional[Any]:
        cache_key = self._make_key(key)

        # A reachable Redis is authoritative; other workers invalidate there
        if self.redis_client:
            try:
                data = self.redis_client.get(cache_key)
            except redis.RedisError as e:
                logger.warning(f"Redis get error: {e}")
            else:
                if data is not None:
                    self.cache_stats['hits'] += 1
                    self.cache_stats['redis_hits'] += 1
                    logger.debug(f"Cache hit (redis): {key}")
                    return self._deserialize_value(data)
                self.cache_stats['misses'] += 1
                logger.debug(f"Cache miss: {key}")
                return None

        with self.memory_cache_lock:
            cache_entry = self.memory_cache.get(key)
            if cache_entry:
                value, expires_at = cache_entry
                if datetime.now() < expires_at:
                    self.cache_stats['hits'] += 1
                    self.cache_stats['memory_hits'] += 1
                    logger.debug(f"Cache hit (memory): {key}")
                    return value
                else:
                    del self.memory_cache[key]

        self.cache_stats['misses'] += 1
        logger.debug(f"Cache miss: {key}")
        return None

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None,
            generation: Optional[int] = None) -> bool:
        """Store a JSON-serialisable value for ``ttl_seconds``.

        When ``generation`` is given the write is skipped if any invalidation
        ran since that generation was read, so a value loaded before a
        concurrent update never overwrites the eviction.
        """
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        cache_key = self._make_key(key)

        with self.memory_cache_lock:
            if generation is not None and generation != self.generation:
                logger.debug(f"Skipping stale cache write: {key}")
                return False

            if self.redis_client:
                try:
                    self.redis_client.setex(cache_key, ttl, self._serialize_value(value))
                    return True
                except redis.RedisError as e:
                    logger.warning(f"Redis set error: {e}")

            expires_at = datetime.now() + timedelta(seconds=ttl)
            self.memory_cache[key] = (value, expires_at)

            # Keep the memory cache bounded: drop the 10% closest to expiry
            if len(self.memory_cache) > MAX_MEMORY_ENTRIES:
                sorted_items = sorted(
                    self.memory_cache.items(),
                    key=lambda x: x[1][1]
                )
                for k, _ in sorted_items[:MAX_MEMORY_ENTRIES // 10]:
                    self.memory_cache.pop(k, None)

        return True

    def _next_generation(self) -> None:
        with self.memory_cache_lock:
            self.generation += 1

    def delete(self, key: str) -> bool:
        cache_key = self._make_key(key)
        self._next_generation()

        redis_deleted = False
        if self.redis_client:
            try:
                redis_deleted = bool(self.redis_client.delete(cache_key))
            except redis.RedisError as e:
                logger.warning(f"Redis delete error: {e}")

        with self.memory_cache_lock:
            memory_deleted = key in self.memory_cache
            self.memory_cache.pop(key, None)

        return redis_deleted or memory_deleted

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key matching ``pattern``; only a trailing ``*`` is supported in memory."""
        count = 0
        self._next_generation()

        if self.redis_client:
            try:
                keys = list(self.redis_client.scan_iter(match=self._make_key(pattern)))
                if keys:
                    count += self.redis_client.delete(*keys)
            except redis.RedisError as e:
                logger.warning(f"Redis pattern invalidation error: {e}")

        with self.memory_cache_lock:
            prefix = pattern.replace('*', '')
            keys_to_remove = [key for key in self.memory_cache if key.startswith(prefix)]
            for key in keys_to_remove:
                self.memory_cache.pop(key, None)
                count += 1

        if count:
            logger.debug(f"Invalidated {count} cache entries for {pattern}")
        return count

    def clear(self) -> None:
        self._next_generation()
        if self.redis_client:
            try:
                keys = list(self.redis_client.scan_iter(match=self._make_key("*")))
                if keys:
                    self.redis_client.delete(*keys)
            except redis.RedisError as e:
                logger.warning(f"Redis clear error: {e}")

        with self.memory_cache_lock:
            self.memory_cache.clear()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.cache_stats.copy()
        stats['redis_available'] = self.redis_client is not None
        stats['memory_cache_size'] = len(self.memory_cache)

        if stats['hits'] + stats['misses'] > 0:
            stats['hit_ratio'] = stats['hits'] / (stats['hits'] + stats['misses'])
        else:
            stats['hit_ratio'] = 0.0

        return stats


# ------------------------- Key layout ------------------------- #

def book_key(book_id: int) -> str:
    return f"book:{book_id}"


def listing_key(listing: str, page: int, size: int, caller_id: int) -> str:
    return f"{listing}:{page}:{size}:{caller_id}"


VISIBLE_BOOKS = "books"
OWNED_BOOKS = "books_by_owner"
BORROWED_BOOKS = "borrowed_books"
RETURNED_BOOKS = "returned_books"


def invalidate_book(cache: CacheManager, book_id: int) -> None:
    cache.delete(book_key(book_id))


def invalidate_book_listings(cache: CacheManager) -> None:
    # "books*" covers both the visible and the per-owner listings
    cache.invalidate_pattern(f"{VISIBLE_BOOKS}*")


def invalidate_history_listings(cache: CacheManager) -> None:
    cache.invalidate_pattern(f"{BORROWED_BOOKS}*")
    cache.invalidate_pattern(f"{RETURNED_BOOKS}*")
