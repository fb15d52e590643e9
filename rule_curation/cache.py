"""TTL cache for quality evaluations."""

import threading
import time
from typing import Callable

from cachetools import TTLCache

from .models import QualityEvaluation

CacheKey = tuple[str, int, int]  # (rule content hash, config version, assessor revision)


class EvaluationCache:
    """Thread-safe TTL cache of quality evaluations keyed by rule content, config and check set.

    Only quality is cached: it depends on nothing but the rule and the
    config. Duplicate checks depend on the live corpus and always run.
    """

    def __init__(
        self,
        ttl: float = 3600,
        maxsize: int = 2048,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: CacheKey) -> QualityEvaluation | None:
        with self._lock:
            value = self._cache.get(key)
            if value is None:
                self._misses += 1
            else:
                self._hits += 1
            return value

    def put(self, key: CacheKey, value: QualityEvaluation) -> None:
        with self._lock:
            self._cache[key] = value

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def stats(self) -> dict[str, float]:
        with self._lock:
            self._cache.expire()
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "ttl": self._cache.ttl,
            }

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)
