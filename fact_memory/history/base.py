"""
Abstract base class for history stores.

A history store is the durable side of a memory space: the append-only
action audit trail, the raw message log, and a mirror of live records
used to re-seed an empty index.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from fact_memory.models.base import ActionHistory, MemoryRecord, MessageHistory


class BaseHistoryStore(ABC):
    """Interface for history store backends."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the store and bring its schema up to date."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the store."""
        pass

    @abstractmethod
    async def is_connected(self) -> bool:
        """Check if the store is connected."""
        pass

    # Action history
    @abstractmethod
    async def add_history(self, entry: ActionHistory) -> ActionHistory:
        """
        Append an action history entry.

        Args:
            entry: The entry to append

        Returns:
            The stored entry
        """
        pass

    @abstractmethod
    async def get_history(self, memory_id: str) -> list[ActionHistory]:
        """All entries for a memory, oldest first."""
        pass

    # Message history
    @abstractmethod
    async def add_message(self, entry: MessageHistory) -> MessageHistory:
        """Append a raw message batch."""
        pass

    @abstractmethod
    async def get_messages(
        self,
        filter: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[MessageHistory]:
        """
        Message batches matching a scope filter, oldest first.

        Args:
            filter: Equality / IN conditions on userId and sessionId
            limit: Maximum number of entries

        Returns:
            Matching message batches
        """
        pass

    # Record mirror
    @abstractmethod
    async def upsert_records(self, records: list[MemoryRecord]) -> None:
        """Insert or replace mirrored records."""
        pass

    @abstractmethod
    async def delete_records(self, ids: list[str]) -> None:
        """Remove mirrored records."""
        pass

    @abstractmethod
    async def find_records(self, filter: dict[str, Any] | None = None) -> list[MemoryRecord]:
        """Mirrored records matching a filter."""
        pass

    @abstractmethod
    def iter_record_batches(self, batch_size: int) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield mirrored records as index documents, ``batch_size`` at a time."""
        pass

    @abstractmethod
    async def reset(self) -> None:
        """Delete all history, messages and mirrored records."""
        pass

    async def __aenter__(self) -> "BaseHistoryStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
