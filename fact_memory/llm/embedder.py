"""
Embedding generation for memory content.

Supports multiple providers:
- Ollama (local, default)
- OpenAI
- Hashing (lexical bag-of-words vectors, no external service)
"""

import asyncio
import hashlib
from abc import ABC, abstractmethod
from typing import Any

import httpx
import numpy as np

from fact_memory.config import EmbeddingConfig
from fact_memory.errors import ConfigurationError, ProviderError
from fact_memory.utils import tokenize


class BaseEmbedder(ABC):
    """Abstract base class for embedding providers."""

    def __init__(self, config: EmbeddingConfig):
        self.config = config

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        pass

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        results = []
        batch_size = self.config.batch_size

        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            results.extend(await asyncio.gather(*(self.embed(t) for t in batch)))

        return results

    async def close(self) -> None:
        """Release provider resources."""
        pass


class OllamaEmbedder(BaseEmbedder):
    """
    Ollama-based embedder for local embedding generation.

    Uses Ollama's embedding API with models like:
    - nomic-embed-text (768 dimensions)
    - mxbai-embed-large (1024 dimensions)
    - all-minilm (384 dimensions)
    """

    def __init__(self, config: EmbeddingConfig, client: httpx.AsyncClient | None = None):
        super().__init__(config)
        self.base_url = config.ollama_base_url.rstrip("/")
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=60.0)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def embed(self, text: str) -> list[float]:
        """Generate embedding using Ollama."""
        client = await self._get_client()

        try:
            response = await client.post(
                f"{self.base_url}/api/embeddings",
                json={
                    "model": self.config.model,
                    "prompt": text,
                },
            )
            response.raise_for_status()
            data = response.json()
            return data["embedding"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise ProviderError(f"Ollama embedding failed: {e}") from e


class OpenAIEmbedder(BaseEmbedder):
    """
    OpenAI-based embedder.

    Uses OpenAI's embedding API with models like:
    - text-embedding-3-small (1536 dimensions)
    - text-embedding-3-large (3072 dimensions)
    """

    def __init__(self, config: EmbeddingConfig):
        super().__init__(config)
        self._client: Any = None

    def _get_client(self) -> Any:
        """Get or create OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package required for OpenAI embeddings. "
                    "Install with: pip install fact-memory[openai]"
                ) from e
            self._client = AsyncOpenAI()
        return self._client

    async def embed(self, text: str) -> list[float]:
        """Generate embedding using OpenAI."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts."""
        if not texts:
            return []
        client = self._get_client()

        try:
            # OpenAI supports batch embeddings natively
            response = await client.embeddings.create(
                model=self.config.model,
                input=texts,
            )
        except Exception as e:
            raise ProviderError(f"OpenAI embedding failed: {e}") from e

        # Sort by index to maintain order
        sorted_data = sorted(response.data, key=lambda x: x.index)
        return [item.embedding for item in sorted_data]


class HashingEmbedder(BaseEmbedder):
    """
    Lexical embedder using signed feature hashing of word tokens.

    Produces L2-normalized bag-of-words vectors, so cosine similarity
    approximates keyword overlap. Deterministic across processes.
    """

    async def embed(self, text: str) -> list[float]:
        return self.vectorize(text).tolist()

    def vectorize(self, text: str) -> np.ndarray:
        vector = np.zeros(self.config.dimensions, dtype=np.float32)
        for token in tokenize(text):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.config.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign

        norm = float(np.linalg.norm(vector))
        if norm > 0.0:
            vector /= norm
        return vector


def create_embedder(config: EmbeddingConfig | None = None) -> BaseEmbedder | None:
    """
    Factory function to create the appropriate embedder.

    Args:
        config: Embedding configuration. Uses defaults if None.

    Returns:
        Configured embedder instance, or None for lexical-only operation.
    """
    if config is None:
        config = EmbeddingConfig()

    if config.provider == "none":
        return None

    providers = {
        "ollama": OllamaEmbedder,
        "openai": OpenAIEmbedder,
        "hashing": HashingEmbedder,
    }

    embedder_class = providers.get(config.provider)
    if embedder_class is None:
        raise ConfigurationError(f"Unknown embedding provider: {config.provider}")

    return embedder_class(config)
