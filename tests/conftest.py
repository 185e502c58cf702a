"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path
from typing import Any

import pytest

from fact_memory.config import EmbeddingConfig, IndexConfig, LLMConfig
from fact_memory.history.sqlite import SQLiteHistoryStore
from fact_memory.index.memory import InMemoryIndex
from fact_memory.llm.base import BaseLLM
from fact_memory.llm.embedder import HashingEmbedder
from fact_memory.memory import Memory
from fact_memory.retriever import Retriever


class ScriptedLLM(BaseLLM):
    """
    LLM test double replaying queued responses.

    Each queued item is a dict (returned), an exception (raised), or a
    callable taking (messages, response_format).
    """

    def __init__(self, *responses: Any):
        super().__init__(LLMConfig())
        self.responses: list[Any] = list(responses)
        self.calls: list[tuple[list[dict[str, str]], dict[str, Any]]] = []

    def queue(self, *responses: Any) -> "ScriptedLLM":
        self.responses.extend(responses)
        return self

    @property
    def schema_names(self) -> list[str]:
        return [fmt["json_schema"]["name"] for _, fmt in self.calls]

    async def run(self, messages, response_format):
        self.calls.append((messages, response_format))
        if not self.responses:
            raise AssertionError(f"Unexpected LLM call for {response_format['json_schema']['name']}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(messages, response_format)
        return response


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_directory():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_user_id():
    """Provide a sample user ID."""
    return "test_user_123"


@pytest.fixture
def llm():
    """Scripted LLM with an empty response queue."""
    return ScriptedLLM()


@pytest.fixture
def hashing_embedder():
    """Deterministic lexical embedder."""
    return HashingEmbedder(EmbeddingConfig(provider="hashing", dimensions=256))


@pytest.fixture
def index_config():
    """Fast-polling, lexical-only index configuration."""
    return IndexConfig(
        backend="memory",
        default_embedder=None,
        task_timeout_seconds=5.0,
        task_poll_interval_seconds=0.01,
    )


@pytest.fixture
async def history_store(temp_directory):
    """Create and connect a history store."""
    store = SQLiteHistoryStore(temp_directory / "memory.db")
    await store.connect()
    yield store
    await store.disconnect()


@pytest.fixture
async def index():
    """In-memory index backend."""
    backend = InMemoryIndex()
    yield backend
    await backend.close()


@pytest.fixture
def retriever(index, history_store, index_config):
    """Retriever over the in-memory index."""
    return Retriever(index, "memory-test", history_store, config=index_config)


@pytest.fixture
def memory(llm, retriever, history_store):
    """Memory facade wired to test collaborators."""
    return Memory(llm=llm, retriever=retriever, history_store=history_store)


def facts(*items: str) -> dict[str, Any]:
    """Fact extraction response."""
    return {"facts": list(items)}


def actions(*items: tuple[str, str, str] | tuple[str, str, str, str | None]) -> dict[str, Any]:
    """Reconciliation response from (id, text, event[, oldMemory]) tuples."""
    return {
        "memory": [
            {"id": item[0], "text": item[1], "event": item[2], "oldMemory": item[3] if len(item) > 3 else None}
            for item in items
        ]
    }

