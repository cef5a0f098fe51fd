"""Keyed in-memory cache with per-key locking and periodic expiry.

Entries are created lazily by ``upsert`` and evicted by a
background sweep whose cadence is independent of lookup traffic. Every
read, mutation and eviction of an entry happens while holding that key's
lock, and the lock object is retired together with its entry.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class KeyedTtlCache(Generic[V]):
    """In-memory ``key -> entry`` map with per-key ``asyncio.Lock``s.

    Args:
        name: Label used in log messages.
        ttl: Maximum age of an entry, measured from ``timestamp_of(entry)``.
        sweep_interval: How often the background sweeper runs.
        timestamp_of: Extracts the timestamp the TTL is measured from.
        clock: Injectable time source.

    Example:
        ```python
        cache = KeyedTtlCache(
            name="velocity",
            ttl=timedelta(hours=1),
            sweep_interval=timedelta(minutes=1),
            timestamp_of=lambda entry: entry.first_seen,
        )
        cache.start()
        async with cache.upsert(mint, make_entry) as entry:
            entry.total_volume += amount
        await cache.shutdown()
        ```
    """

    def __init__(
        self,
        *,
        name: str,
        ttl: timedelta,
        sweep_interval: timedelta,
        timestamp_of: Callable[[V], datetime],
        clock: Clock | None = None,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        if sweep_interval <= timedelta(0):
            raise ValueError("sweep_interval must be positive")
        self._name = name
        self._ttl = ttl
        self._sweep_interval = sweep_interval
        self._timestamp_of = timestamp_of
        self._clock = clock or utc_now

        self._entries: dict[str, V] = {}
        self._locks: dict[str, asyncio.Lock] = {}

        self._stop_event: asyncio.Event | None = None
        self._sweep_task: asyncio.Task[None] | None = None

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def values(self) -> list[V]:
        """Point-in-time list of entries, for statistics only."""
        return list(self._entries.values())

    async def _acquire(self, key: str) -> asyncio.Lock:
        while True:
            lock = self._locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[key] = lock
            await lock.acquire()
            # The lock may have been retired with its entry while we waited.
            if self._locks.get(key) is lock:
                return lock
            lock.release()

    @contextlib.asynccontextmanager
    async def locked(self, key: str) -> AsyncIterator[V | None]:
        """Hold ``key``'s lock and yield its entry, or ``None`` for unknown keys."""
        lock = await self._acquire(key)
        try:
            yield self._entries.get(key)
        finally:
            self._release(key, lock)

    @contextlib.asynccontextmanager
    async def upsert(self, key: str, factory: Callable[[], V]) -> AsyncIterator[V]:
        """Hold ``key``'s lock and yield its entry, creating it with ``factory`` first if missing."""
        lock = await self._acquire(key)
        try:
            entry = self._entries.get(key)
            if entry is None:
                entry = factory()
                self._entries[key] = entry
            yield entry
        finally:
            self._release(key, lock)

    def _release(self, key: str, lock: asyncio.Lock) -> None:
        if key not in self._entries and self._locks.get(key) is lock:
            del self._locks[key]
        lock.release()

    async def remove(self, key: str) -> bool:
        async with self.locked(key) as entry:
            if entry is None:
                return False
            del self._entries[key]
            return True

    async def clear(self) -> None:
        for key in list(self._entries):
            await self.remove(key)

    async def sweep(self) -> int:
        """Evict every entry older than the TTL.

        Returns:
            Number of entries evicted.
        """
        cutoff = self._clock() - self._ttl
        candidates = [key for key, entry in list(self._entries.items()) if self._timestamp_of(entry) < cutoff]

        removed = 0
        for key in candidates:
            async with self.locked(key) as entry:
                # Re-check under the lock; the entry may have been refreshed.
                if entry is not None and self._timestamp_of(entry) < cutoff:
                    del self._entries[key]
                    removed += 1

        if removed:
            logger.debug("Swept %d expired %s entries (%d remaining)", removed, self._name, len(self._entries))
        return removed

    def start(self) -> None:
        """Start the background sweeper. Must be called inside a running loop."""
        if self.is_sweeping:
            return
        self._stop_event = asyncio.Event()
        self._sweep_task = asyncio.create_task(self._run_sweeper())

    async def shutdown(self) -> None:
        """Stop the background sweeper and wait for it to exit."""
        if self._stop_event:
            self._stop_event.set()
        if self._sweep_task:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None
        self._stop_event = None

    async def _run_sweeper(self) -> None:
        if not self._stop_event:
            return

        interval = self._sweep_interval.total_seconds()
        while not self._stop_event.is_set():
            try:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                    break
                except TimeoutError:
                    pass

                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("%s cache sweep error: %s", self._name, e)
