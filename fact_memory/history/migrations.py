"""
Versioned schema migrations for the SQLite history store.

Migrations are applied in order, each in its own transaction, and
recorded in ``schema_migrations``. ``up`` only ever creates; ``down``
is its exact inverse.
"""

import logging
from dataclasses import dataclass

import aiosqlite

from fact_memory.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    """One schema step."""

    version: int
    name: str
    up: tuple[str, ...]
    down: tuple[str, ...]


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        name="action_history",
        up=(
            """
            CREATE TABLE action_history (
                id TEXT PRIMARY KEY,
                memory_id TEXT NOT NULL,
                old_memory TEXT,
                new_memory TEXT,
                event TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0
            )
            """,
        ),
        down=("DROP TABLE action_history",),
    ),
    Migration(
        version=2,
        name="message_history",
        up=(
            """
            CREATE TABLE message_history (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                session_id TEXT,
                messages_json TEXT NOT NULL,
                metadata_json TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
        ),
        down=("DROP TABLE message_history",),
    ),
    Migration(
        version=3,
        name="memory_records",
        up=(
            """
            CREATE TABLE memory_records (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                session_id TEXT,
                memory TEXT NOT NULL,
                document_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
        ),
        down=("DROP TABLE memory_records",),
    ),
    Migration(
        version=4,
        name="indices",
        up=(
            "CREATE INDEX idx_action_memory ON action_history(memory_id, updated_at)",
            "CREATE INDEX idx_message_scope ON message_history(user_id, session_id, created_at)",
            "CREATE INDEX idx_record_scope ON memory_records(user_id, session_id)",
        ),
        down=(
            "DROP INDEX idx_record_scope",
            "DROP INDEX idx_message_scope",
            "DROP INDEX idx_action_memory",
        ),
    ),
)

LATEST_VERSION = MIGRATIONS[-1].version

_BOOKKEEPING = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""


async def current_version(conn: aiosqlite.Connection) -> int:
    """Highest applied migration version (0 for an empty database)."""
    await conn.execute(_BOOKKEEPING)
    await conn.commit()
    async with conn.execute("SELECT MAX(version) FROM schema_migrations") as cursor:
        row = await cursor.fetchone()
    return row[0] or 0


async def migrate_up(conn: aiosqlite.Connection, target: int | None = None) -> list[int]:
    """
    Apply pending migrations up to ``target`` (latest if None).

    Returns:
        Versions applied, in order. Empty when already up to date.
    """
    target = LATEST_VERSION if target is None else target
    version = await current_version(conn)
    applied = []

    for migration in MIGRATIONS:
        if migration.version <= version or migration.version > target:
            continue
        await _run(conn, migration.up)
        await conn.execute(
            "INSERT INTO schema_migrations (version, name, applied_at) VALUES (?, ?, ?)",
            (migration.version, migration.name, utcnow().isoformat()),
        )
        await conn.commit()
        applied.append(migration.version)
        logger.info(f"Applied history migration {migration.version} ({migration.name})")

    return applied


async def migrate_down(conn: aiosqlite.Connection, target: int = 0) -> list[int]:
    """
    Revert applied migrations above ``target``, newest first.

    Returns:
        Versions reverted, in order.
    """
    version = await current_version(conn)
    reverted = []

    for migration in reversed(MIGRATIONS):
        if migration.version > version or migration.version <= target:
            continue
        await _run(conn, migration.down)
        await conn.execute("DELETE FROM schema_migrations WHERE version = ?", (migration.version,))
        await conn.commit()
        reverted.append(migration.version)
        logger.info(f"Reverted history migration {migration.version} ({migration.name})")

    return reverted


async def _run(conn: aiosqlite.Connection, statements: tuple[str, ...]) -> None:
    # Caller commits; a failure rolls the whole migration back
    await conn.execute("BEGIN")
    try:
        for statement in statements:
            await conn.execute(statement)
    except aiosqlite.Error:
        await conn.rollback()
        raise
