"""
Configuration management for the fact memory engine.

Provides centralized configuration for:
- LLM and embedding providers
- Index backend and task polling
- History store (SQLite)
- Per-space instance caching
- Reconciliation behavior
"""

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from fact_memory.errors import ConfigurationError


class LLMConfig(BaseModel):
    """Configuration for the structured-output LLM used by extraction and reconciliation."""

    provider: Literal["openai", "anthropic", "ollama"] = Field(
        default="ollama",
        description="LLM provider for memory operations",
    )
    model: str = Field(
        default="llama3.2",
        description="Model for memory operations (e.g., llama3.2 for Ollama)",
    )
    temperature: float = Field(
        default=0.3,
        description="Temperature for LLM responses",
        ge=0.0,
        le=2.0,
    )
    max_tokens: int = Field(
        default=2000,
        description="Maximum tokens for LLM responses",
    )
    timeout_seconds: float = Field(
        default=120.0,
        description="Per-request timeout for LLM calls",
        gt=0.0,
    )

    # Ollama-specific settings
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation."""

    provider: Literal["openai", "ollama", "hashing", "none"] = Field(
        default="ollama",
        description="Embedding provider (openai, ollama, hashing, or none for lexical-only)",
    )
    model: str = Field(
        default="nomic-embed-text",
        description="Embedding model name (e.g., nomic-embed-text for Ollama)",
    )
    dimensions: int = Field(
        default=768,
        description="Embedding vector dimensions (also used by the hashing embedder)",
        ge=1,
    )
    batch_size: int = Field(
        default=100,
        description="Batch size for embedding requests",
        ge=1,
    )

    # Ollama-specific settings
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )


class IndexConfig(BaseModel):
    """Configuration for the searchable index behind the retriever."""

    backend: Literal["chroma", "memory"] = Field(
        default="chroma",
        description="Index backend type",
    )
    chroma_path: Path | None = Field(
        default=None,
        description="Directory for ChromaDB persistence (ephemeral client if unset)",
    )
    default_embedder: str | None = Field(
        default="default",
        description="Name under which the semantic embedder is registered on the index; "
        "None disables semantic ranking",
    )
    semantic_ratio: float = Field(
        default=0.5,
        description="Weight of semantic similarity in hybrid ranking",
        ge=0.0,
        le=1.0,
    )

    # Task polling
    task_timeout_seconds: float = Field(
        default=600.0,
        description="Maximum time to wait for an index task to finish",
        gt=0.0,
    )
    task_poll_interval_seconds: float = Field(
        default=1.0,
        description="Interval between index task status polls",
        gt=0.0,
    )

    task_retention: int = Field(
        default=1000,
        description="Finished index tasks kept for status lookups; older ones are forgotten",
        ge=1,
    )

    # Cold start
    seed_batch_size: int = Field(
        default=2000,
        description="Documents per batch when seeding a fresh index from history",
        ge=1,
    )


class HistoryConfig(BaseModel):
    """Configuration for the SQLite history store."""

    db_filename: str = Field(
        default="memory.db",
        description="Database file name inside the memory space directory",
    )


class RegistryConfig(BaseModel):
    """Bounds for the per-space instance cache."""

    max_entries: int = Field(
        default=500,
        description="Maximum number of cached store/retriever instances",
        ge=1,
    )
    ttl_seconds: float = Field(
        default=60.0,
        description="Idle time after which a cached instance is evicted",
        gt=0.0,
    )


class ReconcileConfig(BaseModel):
    """Configuration for fact reconciliation."""

    candidates_per_fact: int = Field(
        default=5,
        description="Existing memories retrieved per extracted fact",
        ge=1,
    )


class MemoryConfig(BaseModel):
    """Master configuration for the fact memory engine."""

    # Sub-configurations
    llm: LLMConfig = Field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)

    extraction_prompt: str | None = Field(
        default=None,
        description="Custom system prompt replacing the built-in fact extraction prompt",
    )

    @classmethod
    def from_file(cls, path: Path) -> "MemoryConfig":
        """Load configuration from a JSON file."""
        if path.suffix == ".json":
            with open(path) as f:
                data = json.load(f)
            return cls.model_validate(data)
        else:
            raise ConfigurationError(f"Unsupported config file format: {path.suffix}")

    def to_file(self, path: Path) -> None:
        """Save configuration to a JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)
