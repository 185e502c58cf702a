"""
Tests for the retriever: lazy index lifecycle, seeding and task polling.
"""

import asyncio
import logging

import pytest

from fact_memory.config import EmbeddingConfig, IndexConfig
from fact_memory.errors import ConsistencyTimeoutError, ProviderError, ValidationError
from fact_memory.index.base import TaskStatus
from fact_memory.index.memory import InMemoryIndex
from fact_memory.llm.embedder import HashingEmbedder
from fact_memory.models import MemoryRecord, SortOption
from fact_memory.retriever import IndexState, Retriever, validate_k


def config(**overrides) -> IndexConfig:
    values = {
        "backend": "memory",
        "default_embedder": None,
        "task_timeout_seconds": 5.0,
        "task_poll_interval_seconds": 0.01,
    }
    values.update(overrides)
    return IndexConfig(**values)


class CountingIndex(InMemoryIndex):
    """In-memory index recording how often each operation is enqueued."""

    def __init__(self) -> None:
        super().__init__()
        self.created = 0
        self.added_batches: list[int] = []

    async def _do_create_index(self, index_uid):
        self.created += 1
        await asyncio.sleep(0.01)
        await super()._do_create_index(index_uid)

    async def add_documents(self, index_uid, documents):
        self.added_batches.append(len(documents))
        return await super().add_documents(index_uid, documents)


class StallingIndex(InMemoryIndex):
    """In-memory index whose document writes never report completion."""

    async def get_task(self, task_uid):
        task = await super().get_task(task_uid)
        if task.type == "documentAdditionOrUpdate":
            return task.model_copy(update={"status": TaskStatus.ENQUEUED})
        return task


class BrokenEmbedder(HashingEmbedder):
    async def embed(self, text):
        raise ProviderError("embedding service unreachable")


class TestLifecycle:
    """Tests for lazy index creation."""

    @pytest.mark.asyncio
    async def test_starts_uninitialized(self, retriever):
        assert retriever.state == IndexState.UNINITIALIZED
        assert "uninitialized" in repr(retriever)

    @pytest.mark.asyncio
    async def test_first_use_creates_index(self, retriever, index):
        assert await retriever.get("missing") is None

        assert retriever.state == IndexState.READY
        assert await index.index_exists("memory-test")

    @pytest.mark.asyncio
    async def test_zero_k_does_not_initialize(self, retriever):
        assert await retriever.search("pizza", 0) == []
        assert await retriever.list(0) == []
        assert retriever.state == IndexState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_concurrent_callers_create_once(self, history_store):
        index = CountingIndex()
        retriever = Retriever(index, "memory-test", history_store, config=config())

        await asyncio.gather(*(retriever.ensure_ready() for _ in range(5)))

        assert index.created == 1
        assert retriever.state == IndexState.READY
        await index.close()

    @pytest.mark.asyncio
    async def test_existing_index_is_not_recreated(self, history_store, index):
        first = Retriever(index, "memory-test", history_store, config=config())
        await first.insert(MemoryRecord(memory="Likes pizza"))

        second = Retriever(index, "memory-test", history_store, config=config())
        await second.ensure_ready()

        assert index.count("memory-test") == 1

    @pytest.mark.asyncio
    async def test_failed_init_is_retried(self, history_store, index, monkeypatch):
        retriever = Retriever(index, "memory-test", history_store, config=config())
        original = index.index_exists
        calls = {"n": 0}

        async def flaky(index_uid):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ProviderError("index unreachable")
            return await original(index_uid)

        monkeypatch.setattr(index, "index_exists", flaky)

        with pytest.raises(ProviderError):
            await retriever.ensure_ready()
        assert retriever.state == IndexState.FAILED

        await retriever.ensure_ready()
        assert retriever.state == IndexState.READY

    @pytest.mark.asyncio
    async def test_close_resets_state(self, retriever):
        await retriever.ensure_ready()
        await retriever.close()
        assert retriever.state == IndexState.UNINITIALIZED


class TestSeeding:
    """Tests for rebuilding a fresh index from the history mirror."""

    @pytest.mark.asyncio
    async def test_seeds_in_batches(self, history_store):
        await history_store.upsert_records([MemoryRecord(id=f"m{i}", memory=f"fact {i}") for i in range(5)])
        index = CountingIndex()
        retriever = Retriever(index, "memory-test", history_store, config=config(seed_batch_size=2))

        await retriever.ensure_ready()

        assert index.added_batches == [2, 2, 1]
        assert index.count("memory-test") == 5
        assert (await retriever.get("m3")).memory == "fact 3"
        await index.close()

    @pytest.mark.asyncio
    async def test_lost_index_converges(self, history_store, index):
        retriever = Retriever(index, "memory-test", history_store, config=config())
        await retriever.insert(MemoryRecord(id="m1", memory="Likes pizza"))
        await retriever.insert(MemoryRecord(id="m2", memory="Works remotely"))
        await retriever.delete("m2")

        fresh_index = InMemoryIndex()
        rebuilt = Retriever(fresh_index, "memory-test", history_store, config=config())

        assert [r.id for r in await rebuilt.find()] == ["m1"]
        await fresh_index.close()


class TestTaskPolling:
    """Tests for waiting on index tasks."""

    @pytest.mark.asyncio
    async def test_timeout(self, history_store):
        index = StallingIndex()
        retriever = Retriever(index, "memory-test", history_store, config=config(task_timeout_seconds=0.05))
        await retriever.ensure_ready()

        with pytest.raises(ConsistencyTimeoutError):
            await retriever.insert(MemoryRecord(memory="Likes pizza"))
        await index.close()

    @pytest.mark.asyncio
    async def test_failed_task_raises(self, retriever, index):
        await retriever.ensure_ready()
        task = await index.create_index("memory-test")

        with pytest.raises(ProviderError):
            await retriever.wait_for_task(task)


class TestMirroring:
    """Tests for mirroring writes to the history store."""

    @pytest.mark.asyncio
    async def test_writes_are_mirrored(self, retriever, history_store):
        record = await retriever.insert(MemoryRecord(id="m1", memory="Likes pizza"))
        await retriever.update(record.model_copy(update={"memory": "Loves pizza"}))

        [mirrored] = await history_store.find_records()
        assert mirrored.memory == "Loves pizza"

        await retriever.delete("m1")
        assert await history_store.find_records() == []

    @pytest.mark.asyncio
    async def test_mirror_failure_does_not_block_index(self, retriever, history_store, monkeypatch, caplog):
        async def broken(records):
            raise ProviderError("disk full")

        monkeypatch.setattr(history_store, "upsert_records", broken)

        with caplog.at_level(logging.ERROR, logger="fact_memory.retriever"):
            await retriever.insert(MemoryRecord(id="m1", memory="Likes pizza"))

        assert (await retriever.get("m1")).memory == "Likes pizza"
        assert "Failed to mirror record m1" in caplog.text


class TestEmbedder:
    """Tests for semantic embedder registration."""

    @pytest.mark.asyncio
    async def test_embedder_enables_semantic_search(self, history_store, index, hashing_embedder):
        retriever = Retriever(
            index, "memory-test", history_store, config=config(default_embedder="default"), embedder=hashing_embedder
        )
        await retriever.ensure_ready()

        assert retriever.semantic_enabled
        assert index.embedder_name("memory-test") == "default"

    @pytest.mark.asyncio
    async def test_embedder_failure_downgrades(self, history_store, index, caplog):
        embedder = BrokenEmbedder(EmbeddingConfig(provider="hashing", dimensions=64))
        retriever = Retriever(
            index, "memory-test", history_store, config=config(default_embedder="default"), embedder=embedder
        )

        with caplog.at_level(logging.WARNING, logger="fact_memory.retriever"):
            await retriever.ensure_ready()

        assert retriever.state == IndexState.READY
        assert not retriever.semantic_enabled
        assert "downgrade to basic search" in caplog.text

        await retriever.insert(MemoryRecord(id="m1", memory="Likes pizza"))
        assert [r.id for r in await retriever.search("pizza", 5)] == ["m1"]

    @pytest.mark.asyncio
    async def test_no_embedder_name_stays_lexical(self, retriever):
        await retriever.ensure_ready()
        assert not retriever.semantic_enabled


class TestReads:
    """Tests for search, list and find."""

    @pytest.fixture
    async def stocked(self, retriever):
        await retriever.insert(MemoryRecord(id="m1", memory="Likes pizza", user_id="u1", session_id="A"))
        await retriever.insert(MemoryRecord(id="m2", memory="Prefers sushi over pizza", user_id="u1", session_id="B"))
        await retriever.insert(MemoryRecord(id="m3", memory="Plays chess", user_id="u2", metadata={"topic": "games"}))
        return retriever

    @pytest.mark.asyncio
    async def test_search_with_score(self, stocked):
        hits = await stocked.search_with_score("sushi pizza", 10)

        assert [h.id for h in hits] == ["m2", "m1"]
        assert hits[0].score == 1.0

    @pytest.mark.asyncio
    async def test_search_returns_records(self, stocked):
        [record] = await stocked.search("chess", 5)
        assert type(record) is MemoryRecord
        assert record.metadata == {"topic": "games"}

    @pytest.mark.asyncio
    async def test_filter_accepts_either_spelling(self, stocked):
        camel = await stocked.find({"userId": "u1"})
        snake = await stocked.find({"user_id": "u1"})
        assert {r.id for r in camel} == {r.id for r in snake} == {"m1", "m2"}

    @pytest.mark.asyncio
    async def test_membership_filter(self, stocked):
        records = await stocked.find({"sessionId": ["B", "C"]})
        assert [r.id for r in records] == ["m2"]

    @pytest.mark.asyncio
    async def test_empty_membership_is_ignored(self, stocked):
        assert len(await stocked.find({"userId": []})) == 3

    @pytest.mark.asyncio
    async def test_list_sorted(self, stocked):
        records = await stocked.list(2, sort=[SortOption(field="memory")])
        assert [r.id for r in records] == ["m1", "m3"]

    @pytest.mark.asyncio
    async def test_delete_all(self, stocked):
        await stocked.delete_all(["m1", "m2"])
        assert [r.id for r in await stocked.find()] == ["m3"]

    @pytest.mark.asyncio
    async def test_reset(self, stocked):
        await stocked.reset()
        assert await stocked.find() == []


class TestValidateK:
    """Tests for result count validation."""

    def test_valid(self):
        assert validate_k(0) == 0
        assert validate_k(10) == 10

    @pytest.mark.parametrize("k", [-1, 1.5, "5", True, None])
    def test_invalid(self, k):
        with pytest.raises(ValidationError):
            validate_k(k)
