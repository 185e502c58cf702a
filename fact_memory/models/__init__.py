"""
Memory models for the fact memory engine.
"""

from fact_memory.models.base import (
    ActionFailure,
    ActionHistory,
    AddResult,
    CamelModel,
    ConversationMessage,
    MemoryActionItem,
    MemoryEvent,
    MemoryItem,
    MemoryRecord,
    MessageHistory,
    ScoredMemoryItem,
    SortDirection,
    SortOption,
    new_id,
)

__all__ = [
    "ActionFailure",
    "ActionHistory",
    "AddResult",
    "CamelModel",
    "ConversationMessage",
    "MemoryActionItem",
    "MemoryEvent",
    "MemoryItem",
    "MemoryRecord",
    "MessageHistory",
    "ScoredMemoryItem",
    "SortDirection",
    "SortOption",
    "new_id",
]
