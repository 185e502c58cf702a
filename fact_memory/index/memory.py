"""
Process-local index backend.

Keeps documents in dicts and semantic vectors as numpy arrays. Useful
for tests and for single-process deployments that re-seed on start.
"""

import copy
import logging
from typing import Any

import numpy as np

from fact_memory.errors import ProviderError
from fact_memory.index.base import IndexBackend
from fact_memory.index.filters import matches_filter, sort_documents
from fact_memory.index.scoring import cosine_similarity
from fact_memory.llm.embedder import BaseEmbedder
from fact_memory.models.base import SortOption

logger = logging.getLogger(__name__)


class InMemoryIndex(IndexBackend):
    """Dict-backed index with numpy cosine similarity for semantic scores."""

    def __init__(self, task_retention: int = 1000) -> None:
        super().__init__(task_retention)
        self._documents: dict[str, dict[str, dict[str, Any]]] = {}
        self._vectors: dict[str, dict[str, np.ndarray]] = {}

    async def index_exists(self, index_uid: str) -> bool:
        return index_uid in self._documents

    def count(self, index_uid: str) -> int:
        """Number of documents in an index (0 if missing)."""
        return len(self._documents.get(index_uid, {}))

    # Hooks
    async def _do_create_index(self, index_uid: str) -> None:
        if index_uid in self._documents:
            raise ProviderError(f"Index already exists: {index_uid}")
        self._documents[index_uid] = {}
        self._vectors[index_uid] = {}

    async def _do_delete_index(self, index_uid: str) -> None:
        if self._documents.pop(index_uid, None) is None:
            raise ProviderError(f"Index not found: {index_uid}")
        self._vectors.pop(index_uid, None)

    async def _do_apply_embedder(self, index_uid: str, embedder: BaseEmbedder) -> None:
        documents = list(self._documents[index_uid].values())
        vectors = await embedder.embed_batch([self._searchable_text(index_uid, d) for d in documents])
        self._vectors[index_uid] = {
            d["id"]: np.asarray(v, dtype=np.float32) for d, v in zip(documents, vectors)
        }

    async def _do_upsert(self, index_uid: str, documents: list[dict[str, Any]]) -> None:
        embedder = self._embedder(index_uid)
        if embedder is not None:
            vectors = await embedder.embed_batch([self._searchable_text(index_uid, d) for d in documents])
            for document, vector in zip(documents, vectors):
                self._vectors[index_uid][document["id"]] = np.asarray(vector, dtype=np.float32)

        store = self._documents[index_uid]
        for document in documents:
            store[document["id"]] = copy.deepcopy(document)

    async def _do_delete(self, index_uid: str, ids: list[str]) -> None:
        for document_id in ids:
            self._documents[index_uid].pop(document_id, None)
            self._vectors[index_uid].pop(document_id, None)

    async def _do_clear(self, index_uid: str) -> None:
        self._documents[index_uid].clear()
        self._vectors[index_uid].clear()

    # Reads
    async def get_document(self, index_uid: str, document_id: str) -> dict[str, Any] | None:
        await self._require_index(index_uid)
        document = self._documents[index_uid].get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def get_documents(
        self,
        index_uid: str,
        filter: dict[str, Any] | None = None,
        sort: list[SortOption] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        await self._require_index(index_uid)
        self._check_attributes(index_uid, filter, sort)

        documents = [
            copy.deepcopy(d) for d in self._documents[index_uid].values() if matches_filter(d, filter)
        ]
        if sort:
            documents = sort_documents(documents, sort)
        return documents if limit is None else documents[:limit]

    async def search(
        self,
        index_uid: str,
        query: str,
        limit: int,
        filter: dict[str, Any] | None = None,
        sort: list[SortOption] | None = None,
        semantic_ratio: float = 0.5,
    ) -> list[tuple[dict[str, Any], float]]:
        documents = await self.get_documents(index_uid, filter)

        semantic_scores = None
        embedder = self._embedder(index_uid)
        if embedder is not None and query.strip():
            query_vector = await embedder.embed(query)
            vectors = self._vectors[index_uid]
            semantic_scores = {
                d["id"]: cosine_similarity(query_vector, vectors[d["id"]])
                for d in documents
                if d["id"] in vectors
            }

        return self._rank(index_uid, documents, query, limit, sort, semantic_scores, semantic_ratio)
