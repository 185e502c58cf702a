"""
Core memory models and types.

Defines the records owned by the index, the append-only history
entries, and the transient reconciliation output.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from ulid import ULID


def new_id() -> str:
    """Generate a memory identifier (ULID for time-ordering)."""
    return str(ULID())


def _utcnow() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class MemoryEvent(str, Enum):
    """Reconciliation outcome for a single memory."""

    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    NONE = "none"

    @classmethod
    def parse(cls, value: str) -> "MemoryEvent":
        """Parse an event tag case-insensitively (LLMs emit ADD as often as add)."""
        return cls(str(value).strip().lower())


class SortDirection(str, Enum):
    """Direction for sorted listings."""

    ASC = "asc"
    DESC = "desc"


class CamelModel(BaseModel):
    """Base model serializing to camelCase, accepting either spelling on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationMessage(BaseModel):
    """A single chat message of an ingested transcript."""

    role: str = Field(min_length=1, description="Speaker role (user, assistant, system)")
    content: str = Field(description="Message text")


class SortOption(BaseModel):
    """Sort key for listings and searches."""

    field: str
    direction: SortDirection = SortDirection.ASC


class MemoryRecord(CamelModel):
    """
    A live memory as stored in the index.

    ``user_id`` and ``session_id`` define the read/write partition and
    never change after creation.
    """

    id: str = Field(default_factory=new_id, description="Stable memory identifier")
    user_id: str | None = Field(default=None, description="User who owns this memory")
    session_id: str | None = Field(default=None, description="Session this memory belongs to")
    memory: str = Field(description="The factual statement")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the flat document shape stored in the index."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "MemoryRecord":
        """Rebuild a record from an index document."""
        return cls.model_validate(document)

    def __str__(self) -> str:
        return f"memory[{self.id[-8:]}]: {self.memory[:50]}"


# The public view of a record is the record itself.
MemoryItem = MemoryRecord


class ScoredMemoryItem(MemoryRecord):
    """A memory returned from a ranked search."""

    score: float = Field(default=0.0, ge=0.0)


class ActionHistory(CamelModel):
    """Append-only audit entry for one memory mutation (including no-ops)."""

    id: str = Field(default_factory=new_id)
    memory_id: str
    old_memory: str | None = None
    new_memory: str | None = None
    event: MemoryEvent
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    is_deleted: bool = False


class MessageHistory(CamelModel):
    """One raw message batch as ingested by ``add``."""

    id: str = Field(default_factory=new_id)
    user_id: str | None = None
    session_id: str | None = None
    messages: list[ConversationMessage] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class MemoryActionItem(CamelModel):
    """A single reconciliation decision, resolved to a stable id."""

    id: str
    memory: str
    event: MemoryEvent
    old_memory: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ActionFailure(CamelModel):
    """An action that could not be applied during ``add``."""

    action: MemoryActionItem
    error: str
    error_type: str
    retryable: bool = False


class AddResult(CamelModel):
    """Outcome of ``Memory.add``."""

    results: list[MemoryActionItem] = Field(default_factory=list)
    failures: list[ActionFailure] = Field(default_factory=list)
