"""
Memory reconciliation.

Decides, per extracted fact, whether to add a new memory or update,
delete or keep an existing one. Existing memories are shown to the LLM
under short numeric aliases ("0".."n-1") instead of their real ids, so a
mangled or invented identifier can never address the wrong record.
"""

import asyncio
import logging
from typing import Any, assert_never

from fact_memory.errors import ProviderError
from fact_memory.llm.base import BaseLLM, json_schema_format
from fact_memory.models.base import MemoryActionItem, MemoryEvent, MemoryRecord, new_id
from fact_memory.pipeline.prompts import MEMORY_SCHEMA, update_memory_messages
from fact_memory.retriever import Retriever

logger = logging.getLogger(__name__)


class AliasTable:
    """Transient mapping of numeric aliases to candidate memories."""

    def __init__(self, candidates: list[MemoryRecord]):
        self._records = {str(i): record for i, record in enumerate(candidates)}

    def __len__(self) -> int:
        return len(self._records)

    def resolve(self, alias: Any) -> MemoryRecord | None:
        """Candidate behind an alias, or None if the alias is unknown."""
        return self._records.get(str(alias).strip())

    def aliased(self) -> list[dict[str, str]]:
        """Candidates as the LLM sees them."""
        return [{"id": alias, "text": record.memory} for alias, record in self._records.items()]


async def find_candidates(
    retriever: Retriever,
    facts: list[str],
    filter: dict[str, Any] | None = None,
    k: int = 5,
) -> list[MemoryRecord]:
    """
    Existing memories related to any of the facts.

    Searches run concurrently, one per fact. A failed search is logged and
    contributes nothing. Results are de-duplicated by id in discovery order.
    """

    async def search(fact: str) -> list[MemoryRecord]:
        try:
            return await retriever.search(fact, k, filter=filter)
        except Exception as e:
            logger.warning(f"Candidate search failed for fact {fact!r}: {e}")
            return []

    results = await asyncio.gather(*(search(fact) for fact in facts))

    seen: set[str] = set()
    candidates = []
    for records in results:
        for record in records:
            if record.id not in seen:
                seen.add(record.id)
                candidates.append(record)

    logger.debug(f"Found {len(candidates)} candidate memories for {len(facts)} facts")
    return candidates


class MemoryReconciler:
    """Turns new facts plus candidate memories into memory actions."""

    def __init__(self, llm: BaseLLM):
        self.llm = llm

    async def reconcile(
        self,
        facts: list[str],
        candidates: list[MemoryRecord],
    ) -> list[MemoryActionItem]:
        """
        Decide actions for new facts against existing memories.

        Args:
            facts: Newly extracted facts
            candidates: Existing memories that may be affected

        Returns:
            Actions addressed by stable memory ids

        Raises:
            ProviderError: The LLM failed or returned a malformed response.
        """
        if not facts:
            return []

        aliases = AliasTable(candidates)
        response = await self.llm.run(
            update_memory_messages(aliases.aliased(), facts),
            json_schema_format("memory_schema", MEMORY_SCHEMA),
        )

        entries = response.get("memory") if isinstance(response, dict) else None
        if not isinstance(entries, list):
            raise ProviderError(f"Reconciliation response is missing a 'memory' list: {response!r}")

        actions = []
        for entry in entries:
            action = self._remap(self._validate(entry), aliases)
            if action is not None:
                actions.append(action)

        logger.debug(f"Reconciled actions: {[(a.event.value, a.id) for a in actions]}")
        return actions

    @staticmethod
    def _validate(entry: Any) -> dict[str, Any]:
        if not isinstance(entry, dict):
            raise ProviderError(f"Reconciliation entry is not an object: {entry!r}")
        if "id" not in entry or not isinstance(entry.get("event"), str) or not isinstance(entry.get("text", ""), str):
            raise ProviderError(f"Reconciliation entry is malformed: {entry!r}")
        old_memory = entry.get("oldMemory")
        if old_memory is not None and not isinstance(old_memory, str):
            raise ProviderError(f"Reconciliation entry has a non-string oldMemory: {entry!r}")
        try:
            event = MemoryEvent.parse(entry.get("event"))
        except ValueError as e:
            raise ProviderError(f"Reconciliation entry has an unknown event: {entry!r}") from e
        return {"id": entry["id"], "text": entry.get("text", ""), "event": event, "old_memory": old_memory}

    @staticmethod
    def _remap(entry: dict[str, Any], aliases: AliasTable) -> MemoryActionItem | None:
        event: MemoryEvent = entry["event"]
        text: str = entry["text"].strip()
        candidate = aliases.resolve(entry["id"]) if event != MemoryEvent.ADD else None

        if event != MemoryEvent.ADD and candidate is None:
            logger.warning(f"Unknown memory alias {entry['id']!r} for {event.value}, adding as new memory")
            event = MemoryEvent.ADD

        match event:
            case MemoryEvent.ADD:
                if not text:
                    logger.warning("Dropping add action with empty text")
                    return None
                return MemoryActionItem(id=new_id(), memory=text, event=event)
            case MemoryEvent.UPDATE:
                if not text:
                    logger.warning(f"Dropping update of {candidate.id} with empty text")
                    return None
                return MemoryActionItem(
                    id=candidate.id,
                    memory=text,
                    event=event,
                    old_memory=candidate.memory,
                )
            case MemoryEvent.DELETE | MemoryEvent.NONE:
                return MemoryActionItem(id=candidate.id, memory=text or candidate.memory, event=event)
            case _:
                assert_never(event)
