"""
Durable history: action audit trail, message log and record mirror.
"""

from fact_memory.history.base import BaseHistoryStore
from fact_memory.history.migrations import LATEST_VERSION, MIGRATIONS, Migration
from fact_memory.history.sqlite import SQLiteHistoryStore

__all__ = [
    "BaseHistoryStore",
    "LATEST_VERSION",
    "MIGRATIONS",
    "Migration",
    "SQLiteHistoryStore",
]
