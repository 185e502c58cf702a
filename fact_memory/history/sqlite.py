"""
SQLite history store.

Uses aiosqlite for async operations and JSON columns for nested data.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

from fact_memory.errors import ProviderError, ValidationError
from fact_memory.history import migrations
from fact_memory.history.base import BaseHistoryStore
from fact_memory.index.filters import matches_filter, normalize_filter
from fact_memory.models.base import ActionHistory, MemoryEvent, MemoryRecord, MessageHistory

logger = logging.getLogger(__name__)

# aiosqlite raises ValueError once its connection has been closed
_SQL_ERRORS = (aiosqlite.Error, ValueError)

# Columns that scope filters may push down to SQL
_SCOPE_COLUMNS = {"userId": "user_id", "sessionId": "session_id"}


def _serialize_datetime(dt: datetime) -> str:
    """Serialize to a fixed-width UTC ISO string so text order is time order."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _deserialize_datetime(s: str) -> datetime:
    """Deserialize datetime from ISO format string."""
    return datetime.fromisoformat(s)


def _scope_clause(filter: dict[str, Any] | None) -> tuple[str, list[Any]]:
    """Translate scope keys of a filter into a WHERE clause."""
    conditions = []
    params: list[Any] = []
    for key, value in normalize_filter(filter).items():
        column = _SCOPE_COLUMNS.get(key)
        if column is None:
            continue
        if isinstance(value, list):
            conditions.append(f"{column} IN ({', '.join('?' for _ in value)})")
            params.extend(value)
        else:
            conditions.append(f"{column} = ?")
            params.append(value)

    if not conditions:
        return "", params
    return "WHERE " + " AND ".join(conditions), params


class SQLiteHistoryStore(BaseHistoryStore):
    """
    SQLite-based history store for one memory space.

    Holds the action audit trail, the raw message log and the record
    mirror. The schema is versioned (see ``migrations``) and brought up
    to date on connect.
    """

    def __init__(self, db_path: Path):
        """
        Initialize the history store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self._connection: aiosqlite.Connection | None = None
        self._connected = False
        self._write_lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open the database and apply pending migrations."""
        async with self._connect_lock:
            if self._connected:
                return
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

                self._connection = await aiosqlite.connect(str(self.db_path))
                self._connection.row_factory = aiosqlite.Row

                applied = await migrations.migrate_up(self._connection)
                if applied:
                    logger.info(f"History store {self.db_path} migrated to version {applied[-1]}")

                self._connected = True
            except (aiosqlite.Error, OSError) as e:
                if self._connection is not None:
                    await self._connection.close()
                    self._connection = None
                raise ProviderError(f"Failed to open history store {self.db_path}: {e}") from e

    async def disconnect(self) -> None:
        """Close the database connection once in-flight writes finish."""
        async with self._write_lock:
            if self._connection:
                await self._connection.close()
                self._connection = None
            self._connected = False

    async def is_connected(self) -> bool:
        """Check if storage is connected."""
        return self._connected and self._connection is not None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Return the connection, reopening it if the store was closed."""
        if not self._connected or self._connection is None:
            await self.connect()
        return self._connection

    async def schema_version(self) -> int:
        """Currently applied schema version."""
        conn = await self._get_connection()
        try:
            return await migrations.current_version(conn)
        except _SQL_ERRORS as e:
            raise ProviderError(f"Failed to read history schema version: {e}") from e

    async def migrate_down(self, target_version: int = 0) -> list[int]:
        """
        Revert schema migrations above ``target_version``.

        Intended for maintenance and tests; reconnecting re-applies them.
        """
        conn = await self._get_connection()
        try:
            async with self._write_lock:
                return await migrations.migrate_down(conn, target_version)
        except _SQL_ERRORS as e:
            raise ProviderError(f"Failed to revert history migrations: {e}") from e

    async def _write(self, sql: str, params: tuple | list = ()) -> None:
        try:
            async with self._write_lock:
                conn = await self._get_connection()
                await conn.execute(sql, params)
                await conn.commit()
        except _SQL_ERRORS as e:
            raise ProviderError(f"History store write failed: {e}") from e

    async def _fetch(self, sql: str, params: tuple | list = ()) -> list[aiosqlite.Row]:
        conn = await self._get_connection()
        try:
            async with conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except _SQL_ERRORS as e:
            raise ProviderError(f"History store read failed: {e}") from e

    # Action history
    async def add_history(self, entry: ActionHistory) -> ActionHistory:
        await self._write(
            """
            INSERT INTO action_history
                (id, memory_id, old_memory, new_memory, event, created_at, updated_at, is_deleted)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.memory_id,
                entry.old_memory,
                entry.new_memory,
                entry.event.value,
                _serialize_datetime(entry.created_at),
                _serialize_datetime(entry.updated_at),
                1 if entry.is_deleted else 0,
            ),
        )
        return entry

    async def get_history(self, memory_id: str) -> list[ActionHistory]:
        rows = await self._fetch(
            "SELECT * FROM action_history WHERE memory_id = ? ORDER BY updated_at, rowid",
            (memory_id,),
        )
        return [
            ActionHistory(
                id=row["id"],
                memory_id=row["memory_id"],
                old_memory=row["old_memory"],
                new_memory=row["new_memory"],
                event=MemoryEvent(row["event"]),
                created_at=_deserialize_datetime(row["created_at"]),
                updated_at=_deserialize_datetime(row["updated_at"]),
                is_deleted=bool(row["is_deleted"]),
            )
            for row in rows
        ]

    # Message history
    async def add_message(self, entry: MessageHistory) -> MessageHistory:
        await self._write(
            """
            INSERT INTO message_history
                (id, user_id, session_id, messages_json, metadata_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.user_id,
                entry.session_id,
                json.dumps([m.model_dump() for m in entry.messages]),
                json.dumps(entry.metadata, default=str),
                _serialize_datetime(entry.created_at),
                _serialize_datetime(entry.updated_at),
            ),
        )
        return entry

    async def get_messages(
        self,
        filter: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[MessageHistory]:
        unknown = set(normalize_filter(filter)) - set(_SCOPE_COLUMNS)
        if unknown:
            raise ValidationError(f"Messages can only be filtered by scope, got: {sorted(unknown)}")
        if limit is not None and limit < 0:
            raise ValidationError(f"limit must be >= 0, got {limit}")

        where, params = _scope_clause(filter)
        sql = f"SELECT * FROM message_history {where} ORDER BY created_at, rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = await self._fetch(sql, params)
        return [
            MessageHistory(
                id=row["id"],
                user_id=row["user_id"],
                session_id=row["session_id"],
                messages=json.loads(row["messages_json"]),
                metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
                created_at=_deserialize_datetime(row["created_at"]),
                updated_at=_deserialize_datetime(row["updated_at"]),
            )
            for row in rows
        ]

    # Record mirror
    async def upsert_records(self, records: list[MemoryRecord]) -> None:
        if not records:
            return
        conn = await self._get_connection()
        rows = [
            (
                r.id,
                r.user_id,
                r.session_id,
                r.memory,
                json.dumps(r.to_document(), default=str),
                _serialize_datetime(r.created_at),
                _serialize_datetime(r.updated_at),
            )
            for r in records
        ]
        try:
            async with self._write_lock:
                await conn.executemany(
                    """
                    INSERT INTO memory_records
                        (id, user_id, session_id, memory, document_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        memory = excluded.memory,
                        document_json = excluded.document_json,
                        updated_at = excluded.updated_at
                    """,
                    rows,
                )
                await conn.commit()
        except _SQL_ERRORS as e:
            raise ProviderError(f"Failed to mirror records: {e}") from e

    async def delete_records(self, ids: list[str]) -> None:
        if not ids:
            return
        placeholders = ", ".join("?" for _ in ids)
        await self._write(f"DELETE FROM memory_records WHERE id IN ({placeholders})", list(ids))

    async def find_records(self, filter: dict[str, Any] | None = None) -> list[MemoryRecord]:
        where, params = _scope_clause(filter)
        rows = await self._fetch(f"SELECT document_json FROM memory_records {where} ORDER BY rowid", params)

        documents = [json.loads(row["document_json"]) for row in rows]
        return [MemoryRecord.from_document(d) for d in documents if matches_filter(d, filter)]

    async def iter_record_batches(self, batch_size: int) -> AsyncIterator[list[dict[str, Any]]]:
        if batch_size < 1:
            raise ValidationError(f"batch_size must be >= 1, got {batch_size}")

        last_rowid = 0
        while True:
            rows = await self._fetch(
                "SELECT rowid, document_json FROM memory_records WHERE rowid > ? ORDER BY rowid LIMIT ?",
                (last_rowid, batch_size),
            )
            if not rows:
                return
            yield [json.loads(row["document_json"]) for row in rows]
            last_rowid = rows[-1]["rowid"]

    async def reset(self) -> None:
        conn = await self._get_connection()
        try:
            async with self._write_lock:
                for table in ("action_history", "message_history", "memory_records"):
                    await conn.execute(f"DELETE FROM {table}")
                await conn.commit()
        except _SQL_ERRORS as e:
            raise ProviderError(f"Failed to reset history store: {e}") from e
        logger.info(f"Reset history store {self.db_path}")
