"""
Abstract base class for index backends.

An index backend stores flat memory documents and answers filtered,
ranked searches. Mutations are asynchronous: every mutating call
enqueues a task and returns its ``TaskInfo`` immediately; callers poll
``get_task`` until the task reaches a terminal state. Tasks of one
backend are processed one at a time in enqueue order.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from fact_memory.errors import ConfigurationError, ProviderError
from fact_memory.index.filters import normalize_filter, resolve_key, sort_documents
from fact_memory.index.scoring import hybrid_score, lexical_score
from fact_memory.llm.embedder import BaseEmbedder
from fact_memory.models.base import SortOption
from fact_memory.utils import utcnow

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Lifecycle of an index task."""

    ENQUEUED = "enqueued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


class TaskInfo(BaseModel):
    """Handle for an asynchronous index mutation."""

    uid: int
    index_uid: str
    type: str
    status: TaskStatus = TaskStatus.ENQUEUED
    error: str | None = None
    enqueued_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None


# Every document attribute; "metadata" covers metadata.<key> paths.
ALL_ATTRIBUTES = ["id", "userId", "sessionId", "memory", "metadata", "createdAt", "updatedAt"]


class IndexSettings(BaseModel):
    """Attribute sets governing what an index can search, filter and sort on."""

    searchable_attributes: list[str] = Field(default_factory=lambda: list(ALL_ATTRIBUTES))
    filterable_attributes: list[str] = Field(default_factory=lambda: list(ALL_ATTRIBUTES))
    sortable_attributes: list[str] = Field(default_factory=lambda: list(ALL_ATTRIBUTES))


class IndexBackend(ABC):
    """
    Base class for document index backends.

    Subclasses implement the synchronous-looking ``_do_*`` hooks and the
    read methods; this class owns task bookkeeping and the worker.
    """

    def __init__(self, task_retention: int = 1000) -> None:
        if task_retention < 1:
            raise ConfigurationError(f"task_retention must be >= 1, got {task_retention}")
        self._tasks: dict[int, TaskInfo] = {}
        # Finished task uids, oldest first; only the newest ``task_retention`` are kept
        self._finished: deque[int] = deque()
        self._task_retention = task_retention
        self._queue: deque[tuple[TaskInfo, Callable[[], Awaitable[None]]]] = deque()
        self._worker: asyncio.Task | None = None
        self._next_task_uid = 0
        self._settings: dict[str, IndexSettings] = {}
        self._embedders: dict[str, tuple[str, BaseEmbedder]] = {}

    # Task machinery
    def _enqueue(
        self,
        index_uid: str,
        task_type: str,
        job: Callable[[], Awaitable[None]],
    ) -> TaskInfo:
        task = TaskInfo(uid=self._next_task_uid, index_uid=index_uid, type=task_type)
        self._next_task_uid += 1
        self._tasks[task.uid] = task
        self._queue.append((task, job))

        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())
        return task.model_copy()

    async def _drain(self) -> None:
        while self._queue:
            task, job = self._queue.popleft()
            task.status = TaskStatus.PROCESSING
            try:
                await job()
                task.status = TaskStatus.SUCCEEDED
            except Exception as e:
                logger.warning(f"Index task {task.uid} ({task.type}) failed: {e}")
                task.status = TaskStatus.FAILED
                task.error = str(e)
            task.finished_at = utcnow()
            self._forget_finished(task.uid)

    def _forget_finished(self, task_uid: int) -> None:
        self._finished.append(task_uid)
        while len(self._finished) > self._task_retention:
            self._tasks.pop(self._finished.popleft(), None)

    async def get_task(self, task_uid: int) -> TaskInfo:
        """Get the current state of a task."""
        task = self._tasks.get(task_uid)
        if task is None:
            raise ProviderError(f"Unknown or expired index task: {task_uid}")
        return task.model_copy()

    async def close(self) -> None:
        """Wait for queued tasks and release resources."""
        if self._worker is not None and not self._worker.done():
            await self._worker
        self._worker = None

    # Index management
    @abstractmethod
    async def index_exists(self, index_uid: str) -> bool:
        """Check whether an index exists."""
        pass

    async def create_index(self, index_uid: str) -> TaskInfo:
        return self._enqueue(index_uid, "indexCreation", lambda: self._do_create_index(index_uid))

    async def delete_index(self, index_uid: str) -> TaskInfo:
        async def job() -> None:
            await self._do_delete_index(index_uid)
            self._settings.pop(index_uid, None)
            self._embedders.pop(index_uid, None)

        return self._enqueue(index_uid, "indexDeletion", job)

    async def update_settings(self, index_uid: str, settings: IndexSettings) -> TaskInfo:
        async def job() -> None:
            await self._require_index(index_uid)
            self._settings[index_uid] = settings.model_copy(deep=True)

        return self._enqueue(index_uid, "settingsUpdate", job)

    async def update_embedder(
        self,
        index_uid: str,
        name: str,
        embedder: BaseEmbedder,
    ) -> TaskInfo:
        """Register the named semantic embedder; existing documents are re-embedded."""

        async def job() -> None:
            await self._require_index(index_uid)
            # Probe first so a broken provider fails the task, not later searches
            probe = await embedder.embed("embedder probe")
            if not probe:
                raise ProviderError(f"Embedder {name!r} returned an empty vector")
            await self._do_apply_embedder(index_uid, embedder)
            self._embedders[index_uid] = (name, embedder)

        return self._enqueue(index_uid, "embedderUpdate", job)

    def embedder_name(self, index_uid: str) -> str | None:
        """Name of the active semantic embedder, if any."""
        entry = self._embedders.get(index_uid)
        return entry[0] if entry else None

    def _embedder(self, index_uid: str) -> BaseEmbedder | None:
        entry = self._embedders.get(index_uid)
        return entry[1] if entry else None

    # Document mutations
    async def add_documents(self, index_uid: str, documents: list[dict[str, Any]]) -> TaskInfo:
        """Insert or replace documents by primary key ``id``."""
        documents = [dict(d) for d in documents]
        for document in documents:
            if not document.get("id"):
                raise ProviderError("Document is missing its primary key 'id'")

        async def job() -> None:
            await self._require_index(index_uid)
            await self._do_upsert(index_uid, documents)

        return self._enqueue(index_uid, "documentAdditionOrUpdate", job)

    async def delete_documents(self, index_uid: str, ids: list[str]) -> TaskInfo:
        ids = list(ids)

        async def job() -> None:
            await self._require_index(index_uid)
            await self._do_delete(index_uid, ids)

        return self._enqueue(index_uid, "documentDeletion", job)

    async def delete_all_documents(self, index_uid: str) -> TaskInfo:
        async def job() -> None:
            await self._require_index(index_uid)
            await self._do_clear(index_uid)

        return self._enqueue(index_uid, "documentDeletion", job)

    async def _require_index(self, index_uid: str) -> None:
        if not await self.index_exists(index_uid):
            raise ProviderError(f"Index not found: {index_uid}")

    def _check_attributes(
        self,
        index_uid: str,
        filter: dict[str, Any] | None,
        sort: list[SortOption] | None,
    ) -> None:
        """Reject filters/sorts on attributes the index settings do not allow."""
        settings = self._settings.get(index_uid) or IndexSettings()
        for key in normalize_filter(filter):
            if resolve_key(key)[0] not in settings.filterable_attributes:
                raise ProviderError(f"Attribute {key!r} is not filterable")
        for option in sort or []:
            if resolve_key(option.field)[0] not in settings.sortable_attributes:
                raise ProviderError(f"Attribute {option.field!r} is not sortable")

    def _searchable_text(self, index_uid: str, document: dict[str, Any]) -> str:
        settings = self._settings.get(index_uid) or IndexSettings()
        parts = []
        if "memory" in settings.searchable_attributes:
            parts.append(str(document.get("memory") or ""))
        if "metadata" in settings.searchable_attributes:
            metadata = document.get("metadata") or {}
            parts.extend(v for v in metadata.values() if isinstance(v, str))
        return " ".join(parts)

    def _rank(
        self,
        index_uid: str,
        documents: list[dict[str, Any]],
        query: str,
        limit: int,
        sort: list[SortOption] | None,
        semantic_scores: dict[str, float] | None,
        semantic_ratio: float,
    ) -> list[tuple[dict[str, Any], float]]:
        """Score, order and truncate already-filtered documents."""
        if not query.strip():
            scored = [(d, 1.0) for d in documents]
        else:
            scored = []
            for document in documents:
                lexical = lexical_score(query, self._searchable_text(index_uid, document))
                semantic = None
                if semantic_scores is not None:
                    semantic = semantic_scores.get(document["id"], 0.0)
                score = hybrid_score(lexical, semantic, semantic_ratio)
                if score > 0.0:
                    scored.append((document, score))
            scored.sort(key=lambda pair: pair[1], reverse=True)

        if sort:
            by_id = {d["id"]: s for d, s in scored}
            ordered = sort_documents([d for d, _ in scored], sort)
            scored = [(d, by_id[d["id"]]) for d in ordered]

        return scored[:limit]

    # Reads
    @abstractmethod
    async def get_document(self, index_uid: str, document_id: str) -> dict[str, Any] | None:
        """Get a document by id."""
        pass

    @abstractmethod
    async def get_documents(
        self,
        index_uid: str,
        filter: dict[str, Any] | None = None,
        sort: list[SortOption] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """List documents matching a filter, sorted, up to ``limit``."""
        pass

    @abstractmethod
    async def search(
        self,
        index_uid: str,
        query: str,
        limit: int,
        filter: dict[str, Any] | None = None,
        sort: list[SortOption] | None = None,
        semantic_ratio: float = 0.5,
    ) -> list[tuple[dict[str, Any], float]]:
        """
        Ranked search.

        Returns (document, score) pairs with scores in [0, 1]. An empty
        query lists matching documents with score 1.0. Explicit sort
        options take precedence over score ordering.
        """
        pass

    # Implementation hooks
    @abstractmethod
    async def _do_create_index(self, index_uid: str) -> None:
        pass

    @abstractmethod
    async def _do_delete_index(self, index_uid: str) -> None:
        pass

    @abstractmethod
    async def _do_apply_embedder(self, index_uid: str, embedder: BaseEmbedder) -> None:
        pass

    @abstractmethod
    async def _do_upsert(self, index_uid: str, documents: list[dict[str, Any]]) -> None:
        pass

    @abstractmethod
    async def _do_delete(self, index_uid: str, ids: list[str]) -> None:
        pass

    @abstractmethod
    async def _do_clear(self, index_uid: str) -> None:
        pass
