"""
Document index backends.
"""

from fact_memory.config import IndexConfig
from fact_memory.errors import ConfigurationError
from fact_memory.index.base import IndexBackend, IndexSettings, TaskInfo, TaskStatus
from fact_memory.index.chroma import ChromaIndex
from fact_memory.index.filters import matches_filter, normalize_filter, normalize_sort
from fact_memory.index.memory import InMemoryIndex


def create_index_backend(config: IndexConfig | None = None) -> IndexBackend:
    """
    Factory function to create the configured index backend.

    Args:
        config: Index configuration. Uses defaults if None.

    Returns:
        Index backend instance (not yet holding any index).
    """
    if config is None:
        config = IndexConfig()

    if config.backend == "memory":
        return InMemoryIndex(task_retention=config.task_retention)
    if config.backend == "chroma":
        return ChromaIndex(path=config.chroma_path, task_retention=config.task_retention)
    raise ConfigurationError(f"Unknown index backend: {config.backend}")


__all__ = [
    "ChromaIndex",
    "InMemoryIndex",
    "IndexBackend",
    "IndexSettings",
    "TaskInfo",
    "TaskStatus",
    "create_index_backend",
    "matches_filter",
    "normalize_filter",
    "normalize_sort",
]
