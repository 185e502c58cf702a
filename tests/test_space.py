"""
Tests for memory space directories.
"""

import json

import pytest

from fact_memory.errors import ConfigurationError
from fact_memory.space import CONFIG_FILENAME, MemorySpace


class TestMemorySpace:
    """Tests for opening and creating memory spaces."""

    def test_create(self, temp_directory):
        space = MemorySpace.open(temp_directory / "agent")

        data = json.loads((temp_directory / "agent" / CONFIG_FILENAME).read_text())
        assert data["id"] == space.id
        assert "createdAt" in data

    def test_reopen_keeps_identity(self, temp_directory):
        first = MemorySpace.open(temp_directory / "agent")
        second = MemorySpace.open(temp_directory / "agent", create=False)

        assert second.id == first.id
        assert second.index_uid == first.index_uid

    def test_derived_names(self, temp_directory):
        (temp_directory / CONFIG_FILENAME).write_text(json.dumps({"id": "ABC123", "createdAt": "2024-01-01T00:00:00Z"}))

        space = MemorySpace.open(temp_directory, db_filename="facts.db")

        assert space.index_uid == "memory-abc123"
        assert space.db_path == temp_directory / "facts.db"
        assert space.key == str(temp_directory.resolve())
        assert "ABC123" in repr(space)

    def test_missing_without_create(self, temp_directory):
        with pytest.raises(ConfigurationError):
            MemorySpace.open(temp_directory / "missing", create=False)
        assert not (temp_directory / "missing").exists()

    @pytest.mark.parametrize("content", ["not json", "[]", '{"id": ""}', '{"id": 5}'])
    def test_invalid_config(self, temp_directory, content):
        (temp_directory / CONFIG_FILENAME).write_text(content)

        with pytest.raises(ConfigurationError):
            MemorySpace.open(temp_directory)
