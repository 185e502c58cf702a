"""
Memory facade: the public API of a memory space.

``add`` runs the ingestion pipeline (extract facts, look up related
memories, reconcile, apply). The remaining operations read or write
records directly. Every mutation is written to the history store before
the index, so the audit trail never lags behind observable state.

Two concurrent ``add`` calls for the same scope may both decide to add
the same fact; ingestion is eventually consistent, not transactional.
"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, assert_never

from fact_memory.config import MemoryConfig
from fact_memory.errors import ConfigurationError, FactMemoryError, NotFoundError, ValidationError
from fact_memory.history.base import BaseHistoryStore
from fact_memory.index.filters import normalize_filter, normalize_sort
from fact_memory.llm.base import BaseLLM
from fact_memory.llm.providers import create_llm
from fact_memory.models.base import (
    ActionFailure,
    ActionHistory,
    AddResult,
    ConversationMessage,
    MemoryActionItem,
    MemoryEvent,
    MemoryItem,
    MemoryRecord,
    MessageHistory,
    ScoredMemoryItem,
    new_id,
)
from fact_memory.pipeline.extractor import FactExtractor
from fact_memory.pipeline.reconciler import MemoryReconciler, find_candidates
from fact_memory.registry import StoreRegistry
from fact_memory.retriever import Retriever, validate_k
from fact_memory.space import MemorySpace
from fact_memory.utils import content_hash, utcnow

logger = logging.getLogger(__name__)

# Alternate spellings accepted by ``run``
_INPUT_ALIASES = {
    "userId": "user_id",
    "sessionId": "session_id",
    "memoryId": "id",
    "memory_id": "id",
}


class Memory:
    """
    Fact memory for conversational agents.

    Example:
        registry = StoreRegistry(config)
        memory = await Memory.load("./memories/agent-1", llm=llm, registry=registry)
        await memory.add([{"role": "user", "content": "I like pizza"}], user_id="u1")
        hits = await memory.search("food", user_id="u1")
    """

    def __init__(
        self,
        llm: BaseLLM | None = None,
        retriever: Retriever | None = None,
        history_store: BaseHistoryStore | None = None,
        config: MemoryConfig | None = None,
        space: MemorySpace | None = None,
    ):
        self.config = config or MemoryConfig()
        self.llm = llm
        self.retriever = retriever
        self.history_store = history_store
        self.space = space

        self.extractor = FactExtractor(llm, self.config.extraction_prompt) if llm is not None else None
        self.reconciler = MemoryReconciler(llm) if llm is not None else None

        self._owned: list[Any] = []
        self._lease: tuple[StoreRegistry, BaseHistoryStore] | None = None

    @classmethod
    async def load(
        cls,
        path: str | Path,
        llm: BaseLLM | None = None,
        registry: StoreRegistry | None = None,
        config: MemoryConfig | None = None,
        create: bool = True,
    ) -> "Memory":
        """
        Open the memory space at ``path``.

        Args:
            path: Memory space directory (created if missing and ``create``)
            llm: Structured-output LLM; built from ``config.llm`` if None
            registry: Instance cache shared across spaces; a private one
                is created (and closed with this facade) if None
            config: Configuration; defaults to the registry's

        Returns:
            A ready-to-use facade
        """
        if config is None:
            config = registry.config if registry is not None else MemoryConfig()

        owned: list[Any] = []
        if registry is None:
            registry = StoreRegistry(config)
            owned.append(registry)
        if llm is None:
            llm = create_llm(config.llm)
            owned.append(llm)

        space = MemorySpace.open(Path(path), db_filename=config.history.db_filename, create=create)
        history_store, retriever = await registry.acquire(space)

        memory = cls(llm=llm, retriever=retriever, history_store=history_store, config=config, space=space)
        memory._owned = owned
        memory._lease = (registry, history_store)
        logger.info(f"Loaded memory space {space.id} ({space.index_uid})")
        return memory

    async def close(self) -> None:
        """Release the space lease and close collaborators created by ``load``."""
        if self._lease is not None:
            registry, history_store = self._lease
            self._lease = None
            await registry.release(history_store)
        for resource in reversed(self._owned):
            await resource.close()
        self._owned = []

    async def __aenter__(self) -> "Memory":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Guards and validation
    def _ensure_configured(self) -> None:
        """Fail fast, before any I/O, when a collaborator is missing."""
        missing = [
            name
            for name, value in (
                ("llm", self.llm),
                ("retriever", self.retriever),
                ("history_store", self.history_store),
            )
            if value is None
        ]
        if missing:
            raise ConfigurationError(f"Memory is missing required collaborators: {', '.join(missing)}")

    @staticmethod
    def _validate_messages(messages: Any) -> list[ConversationMessage]:
        if not isinstance(messages, (list, tuple)) or not messages:
            raise ValidationError("messages must be a non-empty list")

        parsed = []
        for i, message in enumerate(messages):
            if isinstance(message, ConversationMessage):
                parsed.append(message)
                continue
            if not isinstance(message, dict):
                raise ValidationError(f"messages[{i}] must be an object with role and content")
            role = message.get("role")
            content = message.get("content")
            if not isinstance(role, str) or not role.strip():
                raise ValidationError(f"messages[{i}] has an empty role")
            if not isinstance(content, str):
                raise ValidationError(f"messages[{i}] content must be a string")
            parsed.append(ConversationMessage(role=role, content=content))
        return parsed

    @staticmethod
    def _validate_id(memory_id: Any) -> str:
        if not isinstance(memory_id, str) or not memory_id.strip():
            raise ValidationError(f"Memory id must be a non-empty string, got {memory_id!r}")
        return memory_id

    @staticmethod
    def _validate_text(memory: Any) -> str:
        if not isinstance(memory, str) or not memory.strip():
            raise ValidationError("Memory text must be a non-empty string")
        return memory.strip()

    @staticmethod
    def _scope(
        user_id: str | None,
        session_id: str | None,
        filter: dict[str, Any] | None,
    ) -> dict[str, Any]:
        if filter is not None and not isinstance(filter, dict):
            raise ValidationError(f"filter must be a mapping, got {type(filter).__name__}")
        scope = normalize_filter(filter)
        if user_id is not None:
            scope["userId"] = user_id
        if session_id is not None:
            scope["sessionId"] = session_id
        return scope

    # Ingestion
    async def add(
        self,
        messages: list[ConversationMessage | dict[str, Any]],
        user_id: str | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        filter: dict[str, Any] | None = None,
    ) -> AddResult:
        """
        Extract facts from messages and reconcile them into memory.

        The raw messages are always logged. Each reconciled action is
        applied independently; failures are reported in
        ``AddResult.failures``. If any failure is retryable, the first
        such error is raised after the batch with the result attached as
        ``error.result``.

        Raises:
            ProviderError: Extraction or reconciliation failed (no memory
                was changed), or a retryable action failure.
            ConsistencyTimeoutError: An index write did not finish in time.
        """
        self._ensure_configured()
        parsed = self._validate_messages(messages)
        scope = self._scope(user_id, session_id, filter)
        metadata = dict(metadata or {})

        entry = MessageHistory(user_id=user_id, session_id=session_id, messages=parsed, metadata=metadata)
        logged, actions = await asyncio.gather(
            self.history_store.add_message(entry),
            self._plan(parsed, scope),
            return_exceptions=True,
        )
        if isinstance(actions, BaseException):
            raise actions
        if isinstance(logged, BaseException):
            raise logged

        result = AddResult()
        errors: list[FactMemoryError] = []
        for action in actions:
            try:
                applied = await self._apply(action, user_id, session_id, metadata)
                result.results.append(applied)
            except Exception as e:
                logger.error(f"Failed to apply {action.event.value} for memory {action.id}: {e}")
                retryable = getattr(e, "retryable", False)
                result.failures.append(
                    ActionFailure(action=action, error=str(e), error_type=type(e).__name__, retryable=retryable)
                )
                if retryable:
                    errors.append(e)

        if errors:
            errors[0].result = result
            raise errors[0]
        return result

    async def _plan(self, messages: list[ConversationMessage], scope: dict[str, Any]) -> list[MemoryActionItem]:
        facts = await self.extractor.extract(messages)
        if not facts:
            return []
        candidates = await find_candidates(
            self.retriever,
            facts,
            scope,
            k=self.config.reconcile.candidates_per_fact,
        )
        return await self.reconciler.reconcile(facts, candidates)

    async def _apply(
        self,
        action: MemoryActionItem,
        user_id: str | None,
        session_id: str | None,
        metadata: dict[str, Any],
    ) -> MemoryActionItem:
        match action.event:
            case MemoryEvent.ADD:
                record = await self._create_record(
                    action.memory,
                    user_id,
                    session_id,
                    {**metadata, **action.metadata},
                    memory_id=action.id,
                )
                return action.model_copy(update={"metadata": record.metadata})
            case MemoryEvent.UPDATE:
                current, record = await self._update_record(action.id, action.memory, {**metadata, **action.metadata})
                return action.model_copy(update={"old_memory": current.memory, "metadata": record.metadata})
            case MemoryEvent.DELETE:
                current = await self._delete_record(action.id)
                return action.model_copy(update={"memory": current.memory, "old_memory": current.memory})
            case MemoryEvent.NONE:
                current = await self.retriever.get(action.id)
                if current is None:
                    raise NotFoundError(action.id)
                await self.history_store.add_history(
                    ActionHistory(
                        memory_id=current.id,
                        old_memory=current.memory,
                        new_memory=current.memory,
                        event=MemoryEvent.NONE,
                    )
                )
                logger.debug(f"No change for memory {current.id}")
                return action
            case _:
                assert_never(action.event)

    # Record operations (history first, then index)
    async def _create_record(
        self,
        memory: str,
        user_id: str | None,
        session_id: str | None,
        metadata: dict[str, Any],
        memory_id: str | None = None,
    ) -> MemoryRecord:
        record = MemoryRecord(
            id=memory_id or new_id(),
            user_id=user_id,
            session_id=session_id,
            memory=memory,
            metadata={**metadata, "hash": content_hash(memory)},
        )
        await self.history_store.add_history(
            ActionHistory(memory_id=record.id, new_memory=memory, event=MemoryEvent.ADD)
        )
        await self.retriever.insert(record)
        logger.info(f"Added memory {record.id}")
        return record

    async def _update_record(
        self,
        memory_id: str,
        memory: str,
        metadata: dict[str, Any],
    ) -> tuple[MemoryRecord, MemoryRecord]:
        current = await self.retriever.get(memory_id)
        if current is None:
            raise NotFoundError(memory_id)

        # Scope fields are immutable and never taken from metadata
        updated = current.model_copy(
            update={
                "memory": memory,
                "metadata": {**current.metadata, **metadata, "hash": content_hash(memory)},
                "updated_at": utcnow(),
            }
        )
        await self.history_store.add_history(
            ActionHistory(
                memory_id=memory_id,
                old_memory=current.memory,
                new_memory=memory,
                event=MemoryEvent.UPDATE,
            )
        )
        await self.retriever.update(updated)
        logger.info(f"Updated memory {memory_id}")
        return current, updated

    async def _delete_record(self, memory_id: str) -> MemoryRecord:
        current = await self.retriever.get(memory_id)
        if current is None:
            raise NotFoundError(memory_id)

        await self.history_store.add_history(
            ActionHistory(
                memory_id=memory_id,
                old_memory=current.memory,
                event=MemoryEvent.DELETE,
                is_deleted=True,
            )
        )
        await self.retriever.delete(memory_id)
        logger.info(f"Deleted memory {memory_id}")
        return current

    # Queries
    async def search(
        self,
        query: str,
        k: int = 100,
        user_id: str | None = None,
        session_id: str | None = None,
        filter: dict[str, Any] | None = None,
        sort: Any = None,
    ) -> dict[str, list[ScoredMemoryItem]]:
        """
        Ranked search within a scope.

        Returns:
            ``{"results": [ScoredMemoryItem, ...]}``, best first unless
            ``sort`` is given
        """
        self._ensure_configured()
        if not isinstance(query, str):
            raise ValidationError("query must be a string")
        validate_k(k)
        scope = self._scope(user_id, session_id, filter)
        sort_options = normalize_sort(sort)

        if k == 0:
            return {"results": []}
        results = await self.retriever.search_with_score(query, k, filter=scope, sort=sort_options)
        return {"results": results}

    async def filter(
        self,
        k: int = 1,
        user_id: str | None = None,
        session_id: str | None = None,
        filter: dict[str, Any] | None = None,
        sort: Any = None,
    ) -> list[MemoryItem]:
        """List up to ``k`` memories matching a scope, optionally sorted."""
        self._ensure_configured()
        validate_k(k)
        scope = self._scope(user_id, session_id, filter)
        sort_options = normalize_sort(sort)

        if k == 0:
            return []
        return await self.retriever.list(k, filter=scope, sort=sort_options)

    async def get(self, memory_id: str) -> MemoryItem | None:
        """Get a memory by id, or None if it does not exist."""
        self._ensure_configured()
        return await self.retriever.get(self._validate_id(memory_id))

    async def history(self, memory_id: str) -> list[ActionHistory]:
        """Audit trail of a memory, oldest first (includes deleted memories)."""
        self._ensure_configured()
        return await self.history_store.get_history(self._validate_id(memory_id))

    async def messages(
        self,
        user_id: str | None = None,
        session_id: str | None = None,
        limit: int | None = None,
    ) -> list[MessageHistory]:
        """Raw message batches ingested by ``add``, oldest first."""
        self._ensure_configured()
        if limit is not None:
            validate_k(limit)
        return await self.history_store.get_messages(self._scope(user_id, session_id, None), limit=limit)

    # Direct writes
    async def create(
        self,
        memory: str,
        user_id: str | None = None,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryItem:
        """Store a memory directly, bypassing extraction and reconciliation."""
        self._ensure_configured()
        text = self._validate_text(memory)
        return await self._create_record(text, user_id, session_id, dict(metadata or {}))

    async def update(
        self,
        memory_id: str,
        memory: str,
        metadata: dict[str, Any] | None = None,
    ) -> MemoryItem:
        """
        Replace a memory's text and merge in metadata.

        Raises:
            NotFoundError: No memory with this id.
        """
        self._ensure_configured()
        memory_id = self._validate_id(memory_id)
        text = self._validate_text(memory)
        _, updated = await self._update_record(memory_id, text, dict(metadata or {}))
        return updated

    async def delete(self, memory_id: str) -> MemoryItem:
        """
        Delete a memory, returning its last state.

        Raises:
            NotFoundError: No memory with this id.
        """
        self._ensure_configured()
        return await self._delete_record(self._validate_id(memory_id))

    async def delete_all(
        self,
        user_id: str | None = None,
        session_id: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> list[MemoryItem]:
        """
        Delete every memory matching a scope.

        Raises:
            ValidationError: The scope is empty; use ``reset`` to wipe a space.
        """
        self._ensure_configured()
        scope = self._scope(user_id, session_id, filter)
        if not scope:
            raise ValidationError("delete_all requires a user_id, session_id or filter")

        records = await self.retriever.find(scope)
        for record in records:
            await self.history_store.add_history(
                ActionHistory(
                    memory_id=record.id,
                    old_memory=record.memory,
                    event=MemoryEvent.DELETE,
                    is_deleted=True,
                )
            )
        await self.retriever.delete_all([r.id for r in records])
        logger.info(f"Deleted {len(records)} memories matching {scope}")
        return records

    async def reset(self) -> None:
        """Remove every memory, history entry and message log of this space."""
        self._ensure_configured()
        await asyncio.gather(self.retriever.reset(), self.history_store.reset())
        logger.info("Memory space reset")

    # RPC-style entry point
    async def run(self, action: str, inputs: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Dispatch an operation by name.

        Args:
            action: One of add, search, filter, get, create, update,
                delete, delete_all, reset, history, messages
            inputs: Keyword arguments for the operation (camelCase
                scope keys are accepted)

        Returns:
            ``{"results": ...}`` for list-shaped operations,
            ``{"result": ...}`` for single-record ones, ``{}`` for reset
        """
        handlers = {
            "add": self.add,
            "search": self.search,
            "filter": self.filter,
            "get": self.get,
            "create": self.create,
            "update": self.update,
            "delete": self.delete,
            "delete_all": self.delete_all,
            "deleteAll": self.delete_all,
            "reset": self.reset,
            "history": self.history,
            "messages": self.messages,
        }
        handler = handlers.get(action)
        if handler is None:
            raise ValidationError(f"Unknown action: {action!r}")

        kwargs = {_INPUT_ALIASES.get(k, k): v for k, v in (inputs or {}).items()}
        if "id" in kwargs:
            kwargs["memory_id"] = kwargs.pop("id")
        try:
            inspect.signature(handler).bind(**kwargs)
        except TypeError as e:
            raise ValidationError(f"Invalid inputs for {action!r}: {e}") from e

        output = await handler(**kwargs)

        if action == "add":
            return {"results": output.results, "failures": output.failures}
        if action == "search":
            return output
        if action in ("get", "create", "update", "delete"):
            return {"result": output}
        if action == "reset":
            return {}
        return {"results": output}
