"""
Cache-Aside Layer
Deterministic keys, timeout-bounded remote reads/writes and advisory invalidation.

The cache is strictly an optimization: every remote call is bounded by a timeout
and any failure degrades to "absent", so an unreachable store only removes the
performance benefit and never fails a request.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Sequence, Tuple, TypeVar
import asyncio
import fnmatch
import json
import logging
import time

from services.obs.metrics import MetricsCollector, metrics_collector

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 300
DEFAULT_TIMEOUT_SECONDS = 1.5


def canonical_param(value: Any) -> str:
    """Stable string form of one key parameter; objects use sorted-key compact JSON."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def build_cache_key(prefix: str, key_params: Sequence[Any]) -> str:
    return prefix + ":" + ":".join(canonical_param(p) for p in key_params)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    async def delete(self, key: str) -> int:
        ...

    async def delete_pattern(self, pattern: str) -> int:
        ...


class InMemoryKeyValueStore:
    """Process-local TTL store with glob pattern deletes; used for local runs and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: Dict[str, Tuple[Optional[float], str]] = {}

    def _alive(self, key: str) -> bool:
        entry = self._store.get(key)
        if entry is None:
            return False
        expires_at, _ = entry
        if expires_at is not None and expires_at < self._clock():
            self._store.pop(key, None)
            return False
        return True

    async def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        return self._store[key][1]

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._store[key] = (expires_at, value)

    async def delete(self, key: str) -> int:
        return 1 if self._store.pop(key, None) is not None else 0

    async def delete_pattern(self, pattern: str) -> int:
        doomed = [k for k in list(self._store) if fnmatch.fnmatchcase(k, pattern)]
        for key in doomed:
            self._store.pop(key, None)
        return len(doomed)

    def keys(self):
        return [k for k in list(self._store) if self._alive(k)]


class RedisKeyValueStore:
    """Remote store backed by ``redis.asyncio``; pattern deletes use SCAN, never KEYS."""

    def __init__(self, url: str, client: Any = None) -> None:
        if client is None:
            import redis.asyncio as redis_asyncio

            client = redis_asyncio.Redis.from_url(url, decode_responses=True)
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        value = await self.client.get(key)
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8", errors="ignore")
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        if ttl:
            await self.client.set(key, value, ex=int(ttl))
        else:
            await self.client.set(key, value)

    async def delete(self, key: str) -> int:
        return int(await self.client.delete(key) or 0)

    async def delete_pattern(self, pattern: str) -> int:
        deleted = 0
        batch = []
        async for key in self.client.scan_iter(match=pattern, count=500):
            batch.append(key)
            if len(batch) >= 500:
                deleted += int(await self.client.delete(*batch) or 0)
                batch = []
        if batch:
            deleted += int(await self.client.delete(*batch) or 0)
        return deleted

    async def close(self) -> None:
        await self.client.aclose()


class CacheLayer:
    """Cache-aside wrapper around a KeyValueStore"""

    def __init__(
        self,
        store: Optional[KeyValueStore],
        namespace: str = "",
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics or metrics_collector

    def _storage_key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    async def _bounded(self, operation: str, awaitable: Awaitable[Any]) -> Tuple[bool, Any]:
        """Run a store call under the timeout; returns (ok, result) and never raises."""
        try:
            return True, await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"CACHE: {operation} timed out after {self.timeout_seconds}s")
            self.metrics.record_cache_event("timeout")
            return False, None
        except Exception as e:
            logger.warning(f"CACHE: {operation} failed: {e}")
            self.metrics.record_cache_event("error")
            return False, None

    async def get(self, key: str) -> Optional[Any]:
        if self.store is None:
            return None
        ok, raw = await self._bounded(f"get {key}", self.store.get(self._storage_key(key)))
        if not ok or raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"CACHE: undecodable payload for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if self.store is None:
            return False
        try:
            payload = json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"CACHE: value for {key} is not serializable: {e}")
            return False
        ok, _ = await self._bounded(
            f"set {key}", self.store.set(self._storage_key(key), payload, ttl=ttl or self.ttl_seconds)
        )
        if not ok:
            self.metrics.record_cache_event("write_failure")
        return ok

    async def delete(self, key: str) -> bool:
        if self.store is None:
            return False
        ok, _ = await self._bounded(f"delete {key}", self.store.delete(self._storage_key(key)))
        return ok

    async def cache(
        self,
        prefix: str,
        key_params: Sequence[Any],
        fetch_fn: Callable[[], Awaitable[T]],
        bypass: bool = False,
        ttl: Optional[int] = None,
    ) -> T:
        """
        Return the cached value for ``prefix``/``key_params`` or compute it with ``fetch_fn``.

        ``fetch_fn`` must be free of side effects on external state: concurrent misses on
        the same key are not coalesced, so both callers may fetch and write (last write wins).
        """
        key = build_cache_key(prefix, key_params)

        if not bypass:
            cached = await self.get(key)
            if cached is not None:
                logger.debug(f"Cache hit for {key}")
                self.metrics.record_cache_event("hit")
                return cached

        logger.debug(f"Cache {'bypass' if bypass else 'miss'} for {key}")
        self.metrics.record_cache_event("bypass" if bypass else "miss")
        data = await fetch_fn()
        await self.set(key, data, ttl=ttl)
        return data

    async def invalidate_pattern(self, pattern: str) -> bool:
        """Bulk delete keys matching a glob. Advisory: False on timeout or error."""
        if self.store is None:
            return False
        ok, deleted = await self._bounded(
            f"invalidate {pattern}", self.store.delete_pattern(self._storage_key(pattern))
        )
        if ok:
            logger.info(f"CACHE: invalidated {deleted} keys for pattern {pattern}")
            self.metrics.record_cache_event("invalidation")
        return ok
