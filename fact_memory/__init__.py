"""
fact-memory: durable, queryable fact memory for conversational agents.

Turns message transcripts into atomic facts, reconciles them against
stored memories (add, update, delete or keep), and keeps a searchable
index in sync with an append-only audit trail.
"""

from fact_memory.config import MemoryConfig
from fact_memory.errors import (
    ConfigurationError,
    ConsistencyTimeoutError,
    FactMemoryError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from fact_memory.memory import Memory
from fact_memory.models import (
    ActionHistory,
    AddResult,
    ConversationMessage,
    MemoryActionItem,
    MemoryEvent,
    MemoryItem,
    MemoryRecord,
    MessageHistory,
    ScoredMemoryItem,
    SortOption,
)
from fact_memory.registry import StoreRegistry
from fact_memory.retriever import Retriever
from fact_memory.space import MemorySpace

__version__ = "0.3.0"

__all__ = [
    "ActionHistory",
    "AddResult",
    "ConfigurationError",
    "ConsistencyTimeoutError",
    "ConversationMessage",
    "FactMemoryError",
    "Memory",
    "MemoryActionItem",
    "MemoryConfig",
    "MemoryEvent",
    "MemoryItem",
    "MemoryRecord",
    "MemorySpace",
    "MessageHistory",
    "NotFoundError",
    "ProviderError",
    "Retriever",
    "ScoredMemoryItem",
    "SortOption",
    "StoreRegistry",
    "ValidationError",
]
