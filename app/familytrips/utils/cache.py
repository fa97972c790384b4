"""In-process response cache with TTL expiry and pattern invalidation."""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0

KeyMatcher = Callable[[str], bool]


@dataclass
class CacheEntry:
    """A cached payload and the moment it was stored."""
    key: str
    value: Any
    created_at: float
    ttl_seconds: int

    def is_stale(self, now: float) -> bool:
        return now - self.created_at > self.ttl_seconds

    def age(self, now: float) -> float:
        return max(0.0, now - self.created_at)


class CacheStore:
    """Thread-safe key/entry map shared by every request in the process.

    Entries are evicted lazily when a read finds them stale, by the periodic
    sweep, or by explicit invalidation. Every operation holds the lock for its
    whole mutation, so sync endpoints running in the threadpool and async
    endpoints on the event loop see a consistent map.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        """Return the live value for key, evicting it if it has gone stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return default
            if entry.is_stale(self._clock()):
                del self._entries[key]
                self.misses += 1
                return default
            self.hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        """Store value under key, replacing any previous entry."""
        with self._lock:
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                ttl_seconds=ttl_seconds,
            )

    def delete_key(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_by_pattern(self, matcher: KeyMatcher) -> int:
        """Remove every entry whose key satisfies matcher. Returns the count removed.

        The matcher runs under the store's reentrant lock: other threads wait for
        the whole pass, while the matcher itself may call back into the store.
        """
        with self._lock:
            keys_to_delete = [key for key in list(self._entries) if matcher(key)]
            removed = 0
            for key in keys_to_delete:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Invalidate all cache keys starting with prefix."""
        return self.delete_by_pattern(lambda key: key.startswith(prefix))

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Evict every stale entry, one key at a time."""
        with self._lock:
            keys = list(self._entries)

        removed = 0
        for key in keys:
            with self._lock:
                entry = self._entries.get(key)
                if entry is not None and entry.is_stale(self._clock()):
                    del self._entries[key]
                    removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_stale(self._clock())

    def stats(self) -> Dict[str, Any]:
        """Snapshot of the store for health reporting."""
        with self._lock:
            now = self._clock()
            entries: List[Dict[str, Any]] = [
                {
                    "key": entry.key,
                    "age_seconds": round(entry.age(now), 3),
                    "ttl_seconds": entry.ttl_seconds,
                }
                for entry in self._entries.values()
            ]
            return {
                "size": len(entries),
                "hits": self.hits,
                "misses": self.misses,
                "entries": entries,
            }


class CacheSweeper:
    """Owns the background task that periodically evicts stale entries."""

    def __init__(self, store: CacheStore, interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS):
        if interval_seconds <= 0:
            raise ValueError("Sweep interval must be positive")
        self.store = store
        self.interval_seconds = interval_seconds
        self.task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    def start(self) -> None:
        """Start sweeping on the running event loop."""
        if self.running:
            return
        self.task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.info("Cache sweeper started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        if self.task is None:
            return
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        self.task = None
        logger.info("Cache sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                removed = self.store.sweep()
            except Exception:
                logger.exception("Cache sweep failed")
                continue
            if removed:
                logger.debug("Cache sweep evicted %d stale entries", removed)
