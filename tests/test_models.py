"""
Tests for memory models.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from fact_memory.models import (
    ActionHistory,
    AddResult,
    ConversationMessage,
    MemoryActionItem,
    MemoryEvent,
    MemoryRecord,
    ScoredMemoryItem,
    SortDirection,
    SortOption,
    new_id,
)


class TestMemoryEvent:
    """Tests for the MemoryEvent enum."""

    def test_parse_lowercase(self):
        assert MemoryEvent.parse("add") == MemoryEvent.ADD

    def test_parse_uppercase(self):
        """LLMs often emit upper case tags."""
        assert MemoryEvent.parse("UPDATE") == MemoryEvent.UPDATE
        assert MemoryEvent.parse(" Delete ") == MemoryEvent.DELETE

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            MemoryEvent.parse("merge")

    def test_members(self):
        assert {e.value for e in MemoryEvent} == {"add", "update", "delete", "none"}


class TestMemoryRecord:
    """Tests for MemoryRecord."""

    def test_defaults(self):
        record = MemoryRecord(memory="Likes pizza")

        assert record.id
        assert record.user_id is None
        assert record.session_id is None
        assert record.metadata == {}
        assert record.created_at.tzinfo is not None

    def test_ids_are_unique(self):
        assert len({new_id() for _ in range(100)}) == 100

    def test_to_document_uses_camel_case(self):
        record = MemoryRecord(memory="Likes pizza", user_id="u1", session_id="s1", metadata={"topic": "food"})
        document = record.to_document()

        assert document["userId"] == "u1"
        assert document["sessionId"] == "s1"
        assert document["memory"] == "Likes pizza"
        assert document["metadata"] == {"topic": "food"}
        assert isinstance(document["createdAt"], str)
        assert "user_id" not in document

    def test_from_document(self):
        created = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        record = MemoryRecord.from_document(
            {
                "id": "m1",
                "userId": "u1",
                "memory": "Likes sushi",
                "metadata": {},
                "createdAt": created.isoformat(),
                "updatedAt": created.isoformat(),
            }
        )

        assert record.id == "m1"
        assert record.user_id == "u1"
        assert record.created_at == created

    def test_document_round_trip(self):
        record = MemoryRecord(memory="Name is John", user_id="u1", metadata={"n": 1})
        restored = MemoryRecord.from_document(record.to_document())

        assert restored == record

    def test_accepts_snake_case_names(self):
        record = MemoryRecord(memory="x", user_id="u1")
        assert record.user_id == "u1"


class TestOtherModels:
    """Tests for history, action and result models."""

    def test_conversation_message_requires_role(self):
        with pytest.raises(PydanticValidationError):
            ConversationMessage(role="", content="hi")

    def test_scored_item_score_non_negative(self):
        with pytest.raises(PydanticValidationError):
            ScoredMemoryItem(memory="x", score=-0.1)

    def test_action_history_defaults(self):
        entry = ActionHistory(memory_id="m1", new_memory="x", event=MemoryEvent.ADD)

        assert entry.is_deleted is False
        assert entry.old_memory is None

    def test_action_item_serializes_old_memory_camel_case(self):
        item = MemoryActionItem(id="m1", memory="b", event=MemoryEvent.UPDATE, old_memory="a")
        dumped = item.model_dump(by_alias=True, mode="json")

        assert dumped["oldMemory"] == "a"
        assert dumped["event"] == "update"

    def test_add_result_empty(self):
        result = AddResult()
        assert result.results == []
        assert result.failures == []

    def test_sort_option_default_direction(self):
        assert SortOption(field="createdAt").direction == SortDirection.ASC
