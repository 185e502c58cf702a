"""
Per-space instance registry.

Opening a history store or preparing a retriever is expensive, so the
instances for each memory space are cached and shared by concurrent
callers. The cache is bounded in size and entries expire after a fixed
time. Evicted instances are closed (they reopen on next use) unless a
caller still holds a lease on them, in which case closing waits for the
last ``release``.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Callable

from fact_memory.config import MemoryConfig
from fact_memory.history.sqlite import SQLiteHistoryStore
from fact_memory.index import create_index_backend
from fact_memory.index.base import IndexBackend
from fact_memory.llm.embedder import BaseEmbedder, create_embedder
from fact_memory.retriever import Retriever
from fact_memory.space import MemorySpace

logger = logging.getLogger(__name__)


class TTLCache:
    """In-memory LRU cache with TTL expiration."""

    def __init__(
        self,
        max_entries: int = 500,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._cache: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def get(self, key: str) -> Any | None:
        """Get value if it exists and has not expired, refreshing its idle timer."""
        if key not in self._cache:
            return None
        value, timestamp = self._cache[key]
        now = self._clock()
        if now - timestamp >= self._ttl:
            return None
        self._cache[key] = (value, now)
        self._cache.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> list[Any]:
        """
        Set value with current timestamp.

        Returns:
            Values evicted to make room (least recently used first).
        """
        evicted = []
        old = self._cache.pop(key, None)
        if old is not None and old[0] is not value:
            evicted.append(old[0])

        self._cache[key] = (value, self._clock())
        while len(self._cache) > self._max_entries:
            _, (value, _) = self._cache.popitem(last=False)
            evicted.append(value)
        return evicted

    def pop_expired(self) -> list[Any]:
        """Remove and return expired values."""
        now = self._clock()
        expired = [k for k, (_, ts) in self._cache.items() if now - ts >= self._ttl]
        return [self._cache.pop(k)[0] for k in expired]

    def clear(self) -> list[Any]:
        """Clear all cached values, returning them."""
        values = [value for value, _ in self._cache.values()]
        self._cache.clear()
        return values


class StoreRegistry:
    """
    Factory and cache for per-space history stores and retrievers.

    All spaces share one index backend; each space gets its own index
    inside it. Pass a registry into ``Memory.load`` instead of relying on
    module-level state.

    Long-lived users (such as a loaded ``Memory``) take a lease with
    ``acquire`` and hand it back with ``release``. A leased store, and any
    retriever built on it, is never closed by eviction.
    """

    def __init__(
        self,
        config: MemoryConfig | None = None,
        index: IndexBackend | None = None,
        embedder: BaseEmbedder | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or MemoryConfig()
        self.index = index if index is not None else create_index_backend(self.config.index)
        self.embedder = embedder if embedder is not None else create_embedder(self.config.embedding)

        registry_config = self.config.registry
        self._stores = TTLCache(registry_config.max_entries, registry_config.ttl_seconds, clock)
        self._retrievers = TTLCache(registry_config.max_entries, registry_config.ttl_seconds, clock)
        self._leases: dict[SQLiteHistoryStore, int] = {}
        self._deferred: list[Any] = []
        self._lock = asyncio.Lock()

    async def get_history_store(self, space: MemorySpace) -> SQLiteHistoryStore:
        """Connected history store for a space."""
        async with self._lock:
            return await self._history_store(space)

    async def get_retriever(self, space: MemorySpace) -> Retriever:
        """Retriever for a space, sharing the space's history store."""
        async with self._lock:
            return await self._retriever(space)

    async def acquire(self, space: MemorySpace) -> tuple[SQLiteHistoryStore, Retriever]:
        """
        Lease the history store and retriever for a space.

        Every call must be paired with ``release``.
        """
        async with self._lock:
            retriever = await self._retriever(space)
            store = retriever.history_store
            self._leases[store] = self._leases.get(store, 0) + 1
            return store, retriever

    async def release(self, store: SQLiteHistoryStore) -> None:
        """Return a lease taken with ``acquire``."""
        async with self._lock:
            count = self._leases.get(store, 0) - 1
            if count > 0:
                self._leases[store] = count
                return
            self._leases.pop(store, None)

            ready = [i for i in self._deferred if i is store or getattr(i, "history_store", None) is store]
            self._deferred = [i for i in self._deferred if i not in ready]
            # Retrievers before their store
            ready.sort(key=lambda i: isinstance(i, SQLiteHistoryStore))
            await self._close_all(ready)

    async def _history_store(self, space: MemorySpace) -> SQLiteHistoryStore:
        await self._close_all(self._stores.pop_expired())

        store = self._stores.get(space.key)
        if store is None:
            store = SQLiteHistoryStore(space.db_path)
            await store.connect()
            await self._close_all(self._stores.set(space.key, store))
            logger.debug(f"Opened history store for {space}")
        return store

    async def _retriever(self, space: MemorySpace) -> Retriever:
        history_store = await self._history_store(space)
        await self._close_all(self._retrievers.pop_expired())

        retriever = self._retrievers.get(space.key)
        if retriever is None or retriever.history_store is not history_store:
            retriever = Retriever(
                self.index,
                space.index_uid,
                history_store,
                config=self.config.index,
                embedder=self.embedder,
            )
            await self._close_all(self._retrievers.set(space.key, retriever))
        return retriever

    def _is_leased(self, instance: Any) -> bool:
        store = instance if isinstance(instance, SQLiteHistoryStore) else getattr(instance, "history_store", None)
        return store in self._leases

    async def _close_all(self, instances: list[Any], force: bool = False) -> None:
        for instance in instances:
            if not force and self._is_leased(instance):
                logger.debug(f"Deferring close of leased {instance!r}")
                self._deferred.append(instance)
                continue
            try:
                if isinstance(instance, SQLiteHistoryStore):
                    await instance.disconnect()
                else:
                    await instance.close()
            except Exception as e:
                logger.warning(f"Failed to close evicted {instance!r}: {e}")

    async def close(self) -> None:
        """Close every cached or leased instance and the shared backends."""
        async with self._lock:
            deferred, self._deferred = self._deferred, []
            self._leases.clear()
            stores = [i for i in deferred if isinstance(i, SQLiteHistoryStore)]
            retrievers = [i for i in deferred if not isinstance(i, SQLiteHistoryStore)]
            await self._close_all(self._retrievers.clear() + retrievers, force=True)
            await self._close_all(self._stores.clear() + stores, force=True)
        await self.index.close()
        if self.embedder is not None:
            await self.embedder.close()

    async def __aenter__(self) -> "StoreRegistry":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
