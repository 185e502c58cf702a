"""
Index backend using ChromaDB.

One collection per index uid. Chroma needs a vector for every record,
so documents are always embedded: with the active semantic embedder
when one is registered, otherwise with a lexical hashing embedder that
keeps the collection valid without contributing to ranking.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings

from fact_memory.config import EmbeddingConfig
from fact_memory.errors import ProviderError
from fact_memory.index.base import IndexBackend
from fact_memory.index.filters import matches_filter, normalize_filter, sort_documents
from fact_memory.llm.embedder import BaseEmbedder, HashingEmbedder
from fact_memory.models.base import SortOption

logger = logging.getLogger(__name__)

# Chroma rejects very large upserts
_UPSERT_BATCH = 1000

LEXICAL_EMBEDDER = "lexical"


class ChromaIndex(IndexBackend):
    """
    ChromaDB-backed index.

    Supports:
    - Persistent or ephemeral storage
    - Scope filters pushed down to Chroma's ``where`` clause
    - Hybrid lexical/semantic ranking with cosine distances
    """

    def __init__(self, path: Path | None = None, fallback_dimensions: int = 256, task_retention: int = 1000):
        super().__init__(task_retention)
        self.path = path
        self._fallback = HashingEmbedder(EmbeddingConfig(provider="hashing", dimensions=fallback_dimensions))
        self._client: chromadb.ClientAPI | None = None

    def _get_client(self) -> chromadb.ClientAPI:
        """Get or create the Chroma client."""
        if self._client is None:
            settings = Settings(anonymized_telemetry=False, allow_reset=True)
            try:
                if self.path is not None:
                    self.path.mkdir(parents=True, exist_ok=True)
                    self._client = chromadb.PersistentClient(path=str(self.path), settings=settings)
                else:
                    self._client = chromadb.EphemeralClient(settings=settings)
            except Exception as e:
                raise ProviderError(f"Failed to connect to ChromaDB: {e}") from e
        return self._client

    async def close(self) -> None:
        await super().close()
        # ChromaDB doesn't require explicit disconnection
        self._client = None

    def _vector_embedder(self, index_uid: str) -> BaseEmbedder:
        return self._embedder(index_uid) or self._fallback

    def _collection(self, index_uid: str):
        return self._get_client().get_collection(name=index_uid, embedding_function=None)

    def _create_collection(self, index_uid: str, embedder_name: str):
        return self._get_client().create_collection(
            name=index_uid,
            metadata={"hnsw:space": "cosine", "embedder": embedder_name},
            embedding_function=None,
        )

    async def index_exists(self, index_uid: str) -> bool:
        def _exists() -> bool:
            for collection in self._get_client().list_collections():
                # Newer Chroma returns names, older returns Collection objects
                name = collection if isinstance(collection, str) else collection.name
                if name == index_uid:
                    return True
            return False

        try:
            return await asyncio.to_thread(_exists)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Failed to list Chroma collections: {e}") from e

    # Document <-> Chroma record
    @staticmethod
    def _to_metadata(document: dict[str, Any]) -> dict[str, Any]:
        metadata = {
            "userId": document.get("userId"),
            "sessionId": document.get("sessionId"),
            "createdAt": document.get("createdAt"),
            "updatedAt": document.get("updatedAt"),
            "doc": json.dumps(document, default=str),
        }
        # Chroma metadata values cannot be None
        return {k: v for k, v in metadata.items() if v is not None}

    @staticmethod
    def _from_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
        return json.loads(metadata["doc"])

    @staticmethod
    def _build_where_clause(filter: dict[str, Any] | None) -> dict[str, Any] | None:
        """Push scope filters down to Chroma; everything else is post-filtered."""
        conditions = []
        for key, value in normalize_filter(filter).items():
            if key not in ("userId", "sessionId"):
                continue
            if isinstance(value, list):
                if all(isinstance(v, str) for v in value):
                    conditions.append({key: {"$in": value}})
            elif isinstance(value, str):
                conditions.append({key: {"$eq": value}})

        if not conditions:
            return None
        if len(conditions) == 1:
            return conditions[0]
        return {"$and": conditions}

    @staticmethod
    def _count(collection: Any, where: dict[str, Any] | None) -> int:
        if where is None:
            return collection.count()
        return len(collection.get(where=where, include=[])["ids"])

    async def _write(
        self,
        index_uid: str,
        documents: list[dict[str, Any]],
        vectors: list[list[float]],
    ) -> None:
        collection = await asyncio.to_thread(self._collection, index_uid)
        for start in range(0, len(documents), _UPSERT_BATCH):
            end = start + _UPSERT_BATCH
            batch = documents[start:end]
            await asyncio.to_thread(
                collection.upsert,
                ids=[d["id"] for d in batch],
                embeddings=vectors[start:end],
                documents=[str(d.get("memory") or "") for d in batch],
                metadatas=[self._to_metadata(d) for d in batch],
            )

    # Hooks
    async def _do_create_index(self, index_uid: str) -> None:
        if await self.index_exists(index_uid):
            raise ProviderError(f"Index already exists: {index_uid}")
        await asyncio.to_thread(self._create_collection, index_uid, LEXICAL_EMBEDDER)

    async def _do_delete_index(self, index_uid: str) -> None:
        await self._require_index(index_uid)
        await asyncio.to_thread(self._get_client().delete_collection, index_uid)

    async def _do_apply_embedder(self, index_uid: str, embedder: BaseEmbedder) -> None:
        # Vector dimensions may change, so the collection is rebuilt
        documents = await self.get_documents(index_uid)
        vectors = await embedder.embed_batch([self._searchable_text(index_uid, d) for d in documents])

        client = self._get_client()
        await asyncio.to_thread(client.delete_collection, index_uid)
        await asyncio.to_thread(self._create_collection, index_uid, type(embedder).__name__)
        if documents:
            await self._write(index_uid, documents, vectors)
        logger.info(f"Re-embedded {len(documents)} documents in {index_uid}")

    async def _do_upsert(self, index_uid: str, documents: list[dict[str, Any]]) -> None:
        embedder = self._vector_embedder(index_uid)
        vectors = await embedder.embed_batch([self._searchable_text(index_uid, d) for d in documents])
        await self._write(index_uid, documents, vectors)

    async def _do_delete(self, index_uid: str, ids: list[str]) -> None:
        if not ids:
            return
        collection = await asyncio.to_thread(self._collection, index_uid)
        await asyncio.to_thread(collection.delete, ids=ids)

    async def _do_clear(self, index_uid: str) -> None:
        collection = await asyncio.to_thread(self._collection, index_uid)
        result = await asyncio.to_thread(collection.get, include=[])
        if result["ids"]:
            await asyncio.to_thread(collection.delete, ids=result["ids"])

    # Reads
    async def get_document(self, index_uid: str, document_id: str) -> dict[str, Any] | None:
        await self._require_index(index_uid)
        try:
            collection = await asyncio.to_thread(self._collection, index_uid)
            result = await asyncio.to_thread(collection.get, ids=[document_id], include=["metadatas"])
        except Exception as e:
            raise ProviderError(f"Failed to get document {document_id}: {e}") from e

        if not result["ids"]:
            return None
        return self._from_metadata(result["metadatas"][0])

    async def get_documents(
        self,
        index_uid: str,
        filter: dict[str, Any] | None = None,
        sort: list[SortOption] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        await self._require_index(index_uid)
        self._check_attributes(index_uid, filter, sort)

        try:
            collection = await asyncio.to_thread(self._collection, index_uid)
            result = await asyncio.to_thread(
                collection.get,
                where=self._build_where_clause(filter),
                include=["metadatas"],
            )
        except Exception as e:
            raise ProviderError(f"Failed to list documents in {index_uid}: {e}") from e

        documents = [self._from_metadata(m) for m in result["metadatas"]]
        documents = [d for d in documents if matches_filter(d, filter)]
        # Chroma returns no stable order; default to insertion time
        documents.sort(key=lambda d: (d.get("createdAt") or "", d["id"]))
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
        if embedder is not None and query.strip() and documents:
            query_vector = await embedder.embed(query)
            where = self._build_where_clause(filter)
            try:
                collection = await asyncio.to_thread(self._collection, index_uid)
                # Score every vector in scope; non-scope filters are applied afterwards
                in_scope = await asyncio.to_thread(self._count, collection, where)
                result = await asyncio.to_thread(
                    collection.query,
                    query_embeddings=[query_vector],
                    n_results=in_scope,
                    where=where,
                    include=["distances"],
                )
            except Exception as e:
                raise ProviderError(f"Semantic search failed in {index_uid}: {e}") from e

            # Cosine distance -> similarity
            semantic_scores = {
                doc_id: max(0.0, min(1.0, 1.0 - distance))
                for doc_id, distance in zip(result["ids"][0], result["distances"][0])
            }

        return self._rank(index_uid, documents, query, limit, sort, semantic_scores, semantic_ratio)
