"""
Retriever: the live, searchable side of a memory space.

Wraps one index of an ``IndexBackend``. The index is created lazily on
first use and seeded from the history store's record mirror, so a lost
or fresh index converges back to the durable state. Every mutation is
mirrored to the history store first, then applied to the index and
polled until the index task finishes.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any

from fact_memory.config import IndexConfig
from fact_memory.errors import ConsistencyTimeoutError, ProviderError, ValidationError
from fact_memory.history.base import BaseHistoryStore
from fact_memory.index.base import ALL_ATTRIBUTES, IndexBackend, IndexSettings, TaskInfo, TaskStatus
from fact_memory.index.filters import normalize_filter, normalize_sort
from fact_memory.llm.embedder import BaseEmbedder
from fact_memory.models.base import MemoryRecord, ScoredMemoryItem, SortOption

logger = logging.getLogger(__name__)


class IndexState(str, Enum):
    """Lifecycle of the backing index as seen by one retriever."""

    UNINITIALIZED = "uninitialized"
    CREATING = "creating"
    READY = "ready"
    FAILED = "failed"


class Retriever:
    """
    Search and storage of live memory records for one memory space.

    Filter semantics: scalar values match by equality, lists by
    membership (empty lists are ignored), and all keys must match.
    """

    def __init__(
        self,
        index: IndexBackend,
        index_uid: str,
        history_store: BaseHistoryStore,
        config: IndexConfig | None = None,
        embedder: BaseEmbedder | None = None,
    ):
        self.index = index
        self.index_uid = index_uid
        self.history_store = history_store
        self.config = config or IndexConfig()
        self.embedder = embedder

        self.state = IndexState.UNINITIALIZED
        self._init_task: asyncio.Task | None = None

    @property
    def semantic_enabled(self) -> bool:
        """Whether hybrid ranking with an embedder is active."""
        return self.index.embedder_name(self.index_uid) is not None

    # Lifecycle
    async def ensure_ready(self) -> None:
        """Initialize the index once; concurrent callers share the same attempt."""
        if self.state == IndexState.READY:
            return

        if self._init_task is None or (self._init_task.done() and self.state == IndexState.FAILED):
            self._init_task = asyncio.get_running_loop().create_task(self._initialize())

        await asyncio.shield(self._init_task)

    async def _initialize(self) -> None:
        self.state = IndexState.CREATING
        try:
            if not await self.index.index_exists(self.index_uid):
                await self._create_and_seed()
            await self._configure_embedder()
        except Exception:
            self.state = IndexState.FAILED
            raise
        self.state = IndexState.READY

    async def _create_and_seed(self) -> None:
        await self.wait_for_task(await self.index.create_index(self.index_uid))
        logger.info(f"Created index {self.index_uid}")

        seeded = 0
        async for batch in self.history_store.iter_record_batches(self.config.seed_batch_size):
            await self.wait_for_task(await self.index.add_documents(self.index_uid, batch))
            seeded += len(batch)
        if seeded:
            logger.info(f"Seeded index {self.index_uid} with {seeded} records from history")

        settings = IndexSettings(
            searchable_attributes=["memory", "metadata"],
            filterable_attributes=list(ALL_ATTRIBUTES),
            sortable_attributes=list(ALL_ATTRIBUTES),
        )
        await self.wait_for_task(await self.index.update_settings(self.index_uid, settings))

    async def _configure_embedder(self) -> None:
        """Register the default embedder; failure leaves the index lexical-only."""
        name = self.config.default_embedder
        if self.embedder is None or name is None:
            return
        if self.index.embedder_name(self.index_uid) == name:
            return

        try:
            await self.wait_for_task(await self.index.update_embedder(self.index_uid, name, self.embedder))
            logger.info(f"Index {self.index_uid} uses embedder {name!r}")
        except Exception as e:
            logger.warning(f"Embedder {name!r} unavailable for {self.index_uid}, downgrade to basic search: {e}")

    async def wait_for_task(self, task: TaskInfo) -> TaskInfo:
        """
        Poll an index task until it finishes.

        Raises:
            ConsistencyTimeoutError: The task did not finish in time.
            ProviderError: The task failed.
        """
        timeout = self.config.task_timeout_seconds
        interval = self.config.task_poll_interval_seconds
        deadline = time.monotonic() + timeout

        while True:
            task = await self.index.get_task(task.uid)
            if task.status == TaskStatus.SUCCEEDED:
                return task
            if task.status == TaskStatus.FAILED:
                raise ProviderError(f"Index task {task.uid} ({task.type}) failed: {task.error}")
            if time.monotonic() >= deadline:
                raise ConsistencyTimeoutError(task.uid, timeout)
            await asyncio.sleep(min(interval, max(0.0, deadline - time.monotonic())))

    # Mirror
    async def _mirror_upsert(self, record: MemoryRecord) -> None:
        try:
            await self.history_store.upsert_records([record])
        except Exception as e:
            logger.error(f"Failed to mirror record {record.id}: {e}")

    async def _mirror_delete(self, ids: list[str]) -> None:
        try:
            await self.history_store.delete_records(ids)
        except Exception as e:
            logger.error(f"Failed to remove mirrored records {ids}: {e}")

    # Reads
    async def get(self, memory_id: str) -> MemoryRecord | None:
        """Get a record by id."""
        await self.ensure_ready()
        document = await self.index.get_document(self.index_uid, memory_id)
        return MemoryRecord.from_document(document) if document else None

    async def find(self, filter: dict[str, Any] | None = None) -> list[MemoryRecord]:
        """Every record matching a filter (no limit)."""
        await self.ensure_ready()
        documents = await self.index.get_documents(self.index_uid, normalize_filter(filter))
        return [MemoryRecord.from_document(d) for d in documents]

    async def search(
        self,
        query: str,
        k: int,
        filter: dict[str, Any] | None = None,
        sort: Any = None,
    ) -> list[MemoryRecord]:
        """Ranked search returning records."""
        scored = await self.search_with_score(query, k, filter=filter, sort=sort)
        return [MemoryRecord.model_validate(item.model_dump(exclude={"score"})) for item in scored]

    async def search_with_score(
        self,
        query: str,
        k: int,
        filter: dict[str, Any] | None = None,
        sort: Any = None,
    ) -> list[ScoredMemoryItem]:
        """
        Ranked search returning records with their relevance score.

        An empty query lists matching records (score 1.0). ``k <= 0``
        returns nothing without touching the index.
        """
        if k <= 0:
            return []
        sort_options: list[SortOption] = normalize_sort(sort)
        normalized = normalize_filter(filter)

        await self.ensure_ready()
        hits = await self.index.search(
            self.index_uid,
            query or "",
            limit=k,
            filter=normalized,
            sort=sort_options,
            semantic_ratio=self.config.semantic_ratio,
        )
        return [ScoredMemoryItem.model_validate({**document, "score": score}) for document, score in hits]

    # Writes
    async def insert(self, record: MemoryRecord) -> MemoryRecord:
        """Insert a new record."""
        await self.ensure_ready()
        await self._mirror_upsert(record)
        await self.wait_for_task(await self.index.add_documents(self.index_uid, [record.to_document()]))
        return record

    async def update(self, record: MemoryRecord) -> MemoryRecord:
        """Replace an existing record by id."""
        await self.ensure_ready()
        await self._mirror_upsert(record)
        await self.wait_for_task(await self.index.add_documents(self.index_uid, [record.to_document()]))
        return record

    async def delete(self, memory_id: str) -> None:
        """Remove a record by id."""
        await self.ensure_ready()
        await self._mirror_delete([memory_id])
        await self.wait_for_task(await self.index.delete_documents(self.index_uid, [memory_id]))

    async def delete_all(self, ids: list[str]) -> None:
        """Remove several records by id."""
        if not ids:
            return
        await self.ensure_ready()
        await self._mirror_delete(list(ids))
        await self.wait_for_task(await self.index.delete_documents(self.index_uid, list(ids)))

    async def reset(self) -> None:
        """Remove every record from the index."""
        await self.ensure_ready()
        await self.wait_for_task(await self.index.delete_all_documents(self.index_uid))

    async def close(self) -> None:
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = None
        self.state = IndexState.UNINITIALIZED

    def __repr__(self) -> str:
        return f"Retriever(index_uid={self.index_uid!r}, state={self.state.value})"

    # Keep last: the name shadows the builtin for the rest of the class body
    async def list(
        self,
        k: int,
        filter: dict[str, Any] | None = None,
        sort: Any = None,
    ) -> "list[MemoryRecord]":
        """Records matching a filter, sorted, at most ``k``."""
        return await self.search("", k, filter=filter, sort=sort)


def validate_k(k: int) -> int:
    """Reject negative result counts."""
    if not isinstance(k, int) or isinstance(k, bool) or k < 0:
        raise ValidationError(f"k must be a non-negative integer, got {k!r}")
    return k
