"""
Tests for configuration.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from fact_memory.config import IndexConfig, MemoryConfig
from fact_memory.errors import ConfigurationError


class TestMemoryConfig:
    """Tests for configuration defaults and persistence."""

    def test_defaults(self):
        config = MemoryConfig()

        assert config.index.default_embedder == "default"
        assert config.index.task_timeout_seconds == 600.0
        assert config.index.task_poll_interval_seconds == 1.0
        assert config.registry.max_entries == 500
        assert config.registry.ttl_seconds == 60.0
        assert config.reconcile.candidates_per_fact == 5

    def test_round_trip(self, temp_directory):
        config = MemoryConfig(
            index=IndexConfig(backend="memory", semantic_ratio=0.8, chroma_path=temp_directory / "chroma"),
            extraction_prompt="Only food preferences.",
        )
        path = temp_directory / "conf" / "memory.json"

        config.to_file(path)
        loaded = MemoryConfig.from_file(path)

        assert loaded == config

    def test_unsupported_format(self, temp_directory):
        with pytest.raises(ConfigurationError):
            MemoryConfig.from_file(temp_directory / "memory.yaml")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"semantic_ratio": 1.5},
            {"task_timeout_seconds": 0},
            {"seed_batch_size": 0},
            {"backend": "redis"},
        ],
    )
    def test_invalid_index_config(self, overrides):
        with pytest.raises(PydanticValidationError):
            IndexConfig(**overrides)
