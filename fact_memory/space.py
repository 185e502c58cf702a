"""
On-disk layout of a memory space.

A memory space is a directory holding an identity file (``config.json``,
``{"id": ..., "createdAt": ...}``) and the history database. The search
index is addressed by an identifier derived from the space id, never by
the filesystem path.
"""

import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from fact_memory.errors import ConfigurationError
from fact_memory.models.base import CamelModel, new_id
from fact_memory.utils import utcnow

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"


class SpaceIdentity(CamelModel):
    """Persistent identity of a memory space."""

    id: str = Field(default_factory=new_id, min_length=1)
    created_at: datetime = Field(default_factory=utcnow)


class MemorySpace:
    """A memory space directory and the names derived from it."""

    def __init__(self, path: Path, identity: SpaceIdentity, db_filename: str = "memory.db"):
        self.path = Path(path)
        self.identity = identity
        self.db_filename = db_filename

    @classmethod
    def open(cls, path: Path, db_filename: str = "memory.db", create: bool = True) -> "MemorySpace":
        """
        Open a memory space, creating its directory and identity if needed.

        Raises:
            ConfigurationError: The identity file is unreadable, or missing
                and ``create`` is False.
        """
        path = Path(path)
        config_path = path / CONFIG_FILENAME

        if config_path.exists():
            try:
                with open(config_path) as f:
                    identity = SpaceIdentity.model_validate(json.load(f))
            except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
                raise ConfigurationError(f"Invalid memory space config {config_path}: {e}") from e
            return cls(path, identity, db_filename)

        if not create:
            raise ConfigurationError(f"No memory space at {path}")

        identity = SpaceIdentity()
        path.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(identity.model_dump(by_alias=True, mode="json"), f, indent=2)
        logger.info(f"Created memory space {identity.id} at {path}")
        return cls(path, identity, db_filename)

    @property
    def id(self) -> str:
        return self.identity.id

    @property
    def index_uid(self) -> str:
        """Index identifier for this space."""
        return f"memory-{self.identity.id.lower()}"

    @property
    def db_path(self) -> Path:
        return self.path / self.db_filename

    @property
    def key(self) -> str:
        """Cache key for per-space instances."""
        return str(self.path.resolve())

    def __repr__(self) -> str:
        return f"MemorySpace(id={self.id!r}, path={str(self.path)!r})"
