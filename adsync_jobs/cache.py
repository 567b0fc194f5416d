"""Tenant-scoped in-process cache with per-entry TTL."""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from cachetools import TLRUCache

from adsync_jobs import context
from adsync_jobs.errors import TenantContextError

logger = logging.getLogger(__name__)

T = TypeVar("T")

GLOBAL_PREFIX = "global:"
TENANT_PREFIX = "tenant:"


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    tenant_id: Optional[str] = None


def _entry_expiry(_key: str, entry: CacheEntry, _now: float) -> float:
    return entry.expires_at


class TenantCache:
    """
    Key/value cache partitioned by tenant.

    Keys are stored as ``tenant:<id>:<key>`` or ``global:<key>``. The
    tenant is taken from the ``tenant_id`` argument, else from the current
    task's tenant context. With neither, operations raise
    TenantContextError unless the cache was built with
    ``global_fallback=True``, in which case they log a warning and use
    global scope.

    Entries live in a ``cachetools.TLRUCache`` whose time-to-use is each
    entry's own TTL. Scoped scans (pattern deletes, tenant clears, key
    listings, stats) select entries by their owning tenant rather than by
    key prefix, so a tenant id containing ``:`` never reaches into another
    tenant's keys.

    Entries expire lazily on read, through a timer scheduled at ``set``
    when an event loop is running, and through :meth:`cleanup`.

    Example:
        ```python
        cache = TenantCache(default_ttl=300)
        await cache.set("customers:42", customer, tenant_id="t1")
        customer = await cache.get("customers:42", tenant_id="t1")
        ```
    """

    def __init__(
        self,
        default_ttl: int = 300,
        global_fallback: bool = False,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 10000,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl: TTL in seconds applied when ``set`` gets none
            global_fallback: Use global scope instead of raising when no
                tenant is resolvable
            clock: Time source in seconds, injectable for tests
            max_entries: Capacity; least recently used entries are evicted
                beyond it
        """
        self.default_ttl = default_ttl
        self.global_fallback = global_fallback
        self._clock = clock
        self._entries: TLRUCache = TLRUCache(
            maxsize=max_entries, ttu=_entry_expiry, timer=clock
        )
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    def build_key(
        self,
        key: str,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> Tuple[str, Optional[str]]:
        """Resolve the storage key and owning tenant for ``key``."""
        if global_:
            return f"{GLOBAL_PREFIX}{key}", None

        resolved = tenant_id or context.get_tenant_id()
        if resolved:
            if ":" in resolved:
                raise ValueError(f"Tenant id may not contain ':': {resolved!r}")
            return f"{TENANT_PREFIX}{resolved}:{key}", resolved

        if self.global_fallback:
            logger.warning(f"No tenant context for cache key {key!r}, using global scope")
            return f"{GLOBAL_PREFIX}{key}", None

        raise TenantContextError(f"No tenant context for cache key {key!r}")

    def _lookup(self, cache_key: str, tenant_id: Optional[str]) -> Optional[CacheEntry]:
        entry = self._entries.get(cache_key)
        if entry is None:
            return None

        if entry.tenant_id is not None and entry.tenant_id != tenant_id:
            logger.warning(
                f"Tenant isolation violation: cache key {cache_key!r} requested "
                f"by tenant {tenant_id}"
            )
            return None

        return entry

    def _scoped(self, tenant_id: Optional[str]) -> List[Tuple[str, CacheEntry]]:
        """Live entries owned by ``tenant_id`` (None selects global entries)."""
        self._entries.expire()
        scoped = []
        for cache_key in list(self._entries):
            entry = self._entries.get(cache_key)
            if entry is not None and entry.tenant_id == tenant_id:
                scoped.append((cache_key, entry))
        return scoped

    def _remove(self, cache_key: str) -> bool:
        timer = self._timers.pop(cache_key, None)
        if timer is not None:
            timer.cancel()
        return self._entries.pop(cache_key, None) is not None

    def _expire(self, cache_key: str, entry: CacheEntry) -> None:
        current = self._entries.get(cache_key)
        if current is not None and current is not entry:
            # replaced by a newer set, which scheduled its own timer
            return
        self._timers.pop(cache_key, None)
        self._entries.pop(cache_key, None)
        self._entries.expire()

    async def get(
        self,
        key: str,
        *,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> Optional[Any]:
        """Get a value, or None when missing, expired or owned by another tenant."""
        cache_key, resolved = self.build_key(key, tenant_id, global_)
        entry = self._lookup(cache_key, resolved)
        return entry.value if entry else None

    async def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: Optional[int] = None,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> None:
        """Store a value for ``ttl`` seconds (default TTL when omitted)."""
        cache_key, resolved = self.build_key(key, tenant_id, global_)
        ttl = self.default_ttl if ttl is None else ttl
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl, tenant_id=resolved)

        self._remove(cache_key)
        self._entries[cache_key] = entry

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[cache_key] = loop.call_later(ttl, self._expire, cache_key, entry)

    async def delete(
        self,
        key: str,
        *,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> bool:
        cache_key, _ = self.build_key(key, tenant_id, global_)
        return self._remove(cache_key)

    async def delete_many(
        self,
        keys: Iterable[str],
        *,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> int:
        deleted = 0
        for key in keys:
            if await self.delete(key, tenant_id=tenant_id, global_=global_):
                deleted += 1
        return deleted

    async def delete_pattern(
        self,
        pattern: str,
        *,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> int:
        """
        Delete every entry in scope whose key matches a ``*`` glob.

        The glob is anchored and matched against the key with its scope
        prefix stripped. Entries of other tenants are never touched.

        Returns:
            Number of entries deleted
        """
        prefix, resolved = self.build_key("", tenant_id, global_)
        regex = re.compile(
            "^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$"
        )

        matches = [
            cache_key
            for cache_key, _ in self._scoped(resolved)
            if regex.match(cache_key[len(prefix):])
        ]
        for cache_key in matches:
            self._remove(cache_key)

        if matches:
            logger.debug(f"Deleted {len(matches)} cache entries matching {pattern!r}")
        return len(matches)

    async def has(
        self,
        key: str,
        *,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> bool:
        cache_key, resolved = self.build_key(key, tenant_id, global_)
        return self._lookup(cache_key, resolved) is not None

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        *,
        ttl: Optional[int] = None,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> T:
        """
        Cache-aside read.

        Concurrent misses on the same key may each call ``factory``; the
        last write wins.
        """
        cache_key, resolved = self.build_key(key, tenant_id, global_)
        entry = self._lookup(cache_key, resolved)
        if entry is not None:
            return entry.value

        value = await factory()
        await self.set(key, value, ttl=ttl, tenant_id=resolved, global_=resolved is None)
        return value

    def wrap(
        self,
        fn: Callable[..., Awaitable[T]],
        key_builder: Callable[..., str],
        *,
        ttl: Optional[int] = None,
        global_: bool = False,
    ) -> Callable[..., Awaitable[T]]:
        """
        Return a cached version of ``fn``.

        ``key_builder`` receives the call arguments and returns the cache
        key. The tenant is resolved from the caller's context at call time.
        """

        async def cached(*args: Any, **kwargs: Any) -> T:
            return await self.get_or_set(
                key_builder(*args, **kwargs),
                lambda: fn(*args, **kwargs),
                ttl=ttl,
                global_=global_,
            )

        cached.__name__ = getattr(fn, "__name__", "cached")
        cached.__doc__ = getattr(fn, "__doc__", None)
        return cached

    async def clear_tenant(self, tenant_id: Optional[str] = None) -> int:
        """Remove every entry of a tenant (the current one when omitted)."""
        tenant_id = tenant_id or context.get_tenant_id()
        if not tenant_id:
            raise TenantContextError("No tenant id given for cache clear")

        keys = [cache_key for cache_key, _ in self._scoped(tenant_id)]
        for cache_key in keys:
            self._remove(cache_key)

        logger.info(f"Cleared {len(keys)} cache entries for tenant {tenant_id}")
        return len(keys)

    async def clear_all(self) -> int:
        size = len(self._entries)
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._entries.clear()
        logger.info(f"Cleared all {size} cache entries")
        return size

    async def cleanup(self) -> int:
        """Remove every expired entry."""
        expired = self._entries.expire()
        for cache_key, _ in expired:
            timer = self._timers.pop(cache_key, None)
            if timer is not None:
                timer.cancel()

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    async def get_stats(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Report entry counts.

        Expired entries found here are purged, and counted in
        ``expired_entries`` and ``total_entries`` for this report.
        """
        tenant_id = tenant_id or context.get_tenant_id()
        expired = self._entries.expire()
        live = self._scoped(tenant_id) if tenant_id else []
        expired_for_tenant = sum(
            1 for _, entry in expired if tenant_id and entry.tenant_id == tenant_id
        )

        return {
            "total_entries": len(self._entries) + len(expired),
            "tenant_entries": len(live) + expired_for_tenant,
            "expired_entries": len(expired),
            "tenant_id": tenant_id,
        }

    async def get_keys(
        self,
        *,
        tenant_id: Optional[str] = None,
        global_: bool = False,
    ) -> List[str]:
        """List live keys in scope, without their scope prefix."""
        prefix, resolved = self.build_key("", tenant_id, global_)
        return [cache_key[len(prefix):] for cache_key, _ in self._scoped(resolved)]

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await self.cleanup()
            except asyncio.CancelledError:
                logger.info("Cache cleanup loop cancelled")
                break
            except Exception as e:
                logger.error(f"Error in cache cleanup loop: {e}", exc_info=True)

    def start_periodic_cleanup(self, interval_seconds: float = 60) -> None:
        if self._cleanup_task is not None and not self._cleanup_task.done():
            logger.warning("Cache cleanup loop is already running")
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(interval_seconds))

    async def stop_periodic_cleanup(self) -> None:
        if self._cleanup_task is None:
            return
        self._cleanup_task.cancel()
        await asyncio.gather(self._cleanup_task, return_exceptions=True)
        self._cleanup_task = None
