"""Read-through cache for submitted attempt results.

Only submitted results are stored; they never change afterwards, so entries
just expire. The attempt store stays authoritative: any backend failure is
logged and treated as a miss.
"""
import json
import logging
import threading
import time
from typing import Any, Dict, Optional

import redis

from config import RESULT_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)

KEY_PREFIX = "attempt-result:"


class MemoryCacheBackend:
    """TTL cache used when Redis is not configured or unreachable."""

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._items: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if time.monotonic() > expires_at:
                del self._items[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            if key not in self._items and len(self._items) >= self.max_entries:
                self._evict()
            self._items[key] = (value, time.monotonic() + ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def _evict(self):
        now = time.monotonic()
        expired = [k for k, (_, expires_at) in self._items.items() if expires_at < now]
        for k in expired:
            del self._items[k]
        if len(self._items) >= self.max_entries:
            # dicts keep insertion order: drop the oldest
            del self._items[next(iter(self._items))]


class RedisCacheBackend:
    def __init__(self, client: redis.Redis):
        self.client = client

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(key)
        return json.loads(raw) if raw else None

    def set(self, key: str, value: Any, ttl: int) -> None:
        self.client.setex(key, ttl, json.dumps(value))

    def delete(self, key: str) -> None:
        self.client.delete(key)


def make_cache_backend(redis_url: str):
    if not redis_url:
        logger.debug("REDIS_URL not set, using in-memory result cache")
        return MemoryCacheBackend()
    try:
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        client.ping()
    except redis.RedisError as e:
        logger.warning("Redis connection failed (using in-memory result cache): %s", e)
        return MemoryCacheBackend()
    logger.info("Redis result cache connected")
    return RedisCacheBackend(client)


class ResultCache:
    def __init__(self, backend, ttl: int = RESULT_CACHE_TTL_SECONDS):
        self.backend = backend
        self.ttl = ttl

    @staticmethod
    def key(test_id: str) -> str:
        return KEY_PREFIX + test_id

    def get(self, test_id: str) -> Optional[Dict[str, Any]]:
        """Cached entry: ownership fields plus the submitted ``view``."""
        try:
            entry = self.backend.get(self.key(test_id))
        except Exception as e:
            logger.warning("Result cache GET failed for %s: %s", test_id, e)
            return None
        if not isinstance(entry, dict) or "view" not in entry:
            return None
        return entry

    def put(self, attempt: Dict[str, Any], view: Dict[str, Any]) -> None:
        entry = {
            "testId": attempt["testId"],
            "ownerId": attempt.get("ownerId"),
            "sessionId": attempt.get("sessionId"),
            "view": view,
        }
        try:
            self.backend.set(self.key(attempt["testId"]), entry, self.ttl)
        except Exception as e:
            logger.warning("Result cache SET failed for %s: %s", attempt["testId"], e)

    def evict(self, test_id: str) -> None:
        try:
            self.backend.delete(self.key(test_id))
        except Exception as e:
            logger.warning("Result cache DELETE failed for %s: %s", test_id, e)
