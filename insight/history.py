"""
Local history of past analyses.

The core only talks to history through :class:`HistoryStore`. The default
implementation keeps each :class:`HistoryItem` as a JSON document in SQLite.

Schema
──────
table: history
  id         TEXT PRIMARY KEY
  title      TEXT NOT NULL
  created_at TEXT NOT NULL  (ISO-8601 UTC)
  payload    TEXT NOT NULL  (HistoryItem serialised as JSON)
"""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Protocol

from insight.models import HistoryItem

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "history.db"


class HistoryStore(Protocol):
    def save(self, item: HistoryItem) -> str: ...

    def get_all(self, limit: int = 50) -> list[HistoryItem]: ...

    def get_by_id(self, item_id: str) -> Optional[HistoryItem]: ...

    def delete(self, item_id: str) -> bool: ...


def _db_path() -> Path:
    """Return the database file path, honouring a DB_PATH env var if set."""
    env = os.getenv("DB_PATH")
    return Path(env) if env else DEFAULT_DB_PATH


class SqliteHistoryStore:
    """SQLite-backed :class:`HistoryStore`."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path else _db_path()
        self.init_db()

    @contextmanager
    def _connect(self):
        """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create the history table if it doesn't exist yet."""
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS history (
                    id         TEXT PRIMARY KEY,
                    title      TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    payload    TEXT NOT NULL
                )
                """
            )
        logger.info("History DB initialised at %s", self.path)

    def save(self, item: HistoryItem) -> str:
        """Insert or replace *item* and return its id.

        Saving an existing id overwrites it, which is how secondary reports
        and chat messages are attached to an earlier analysis.
        """
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO history (id, title, created_at, payload) "
                "VALUES (?, ?, ?, ?)",
                (item.id, item.title, item.created_at.isoformat(), item.model_dump_json()),
            )
        logger.info("Saved history item id=%s title=%r", item.id, item.title)
        return item.id

    def get_all(self, limit: int = 50) -> list[HistoryItem]:
        """Return the most recent *limit* items (newest first)."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, payload FROM history ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()

        items: list[HistoryItem] = []
        for row in rows:
            try:
                items.append(HistoryItem.model_validate_json(row["payload"]))
            except Exception as exc:
                logger.warning("Skipping corrupt history item id=%s: %s", row["id"], exc)
        return items

    def get_by_id(self, item_id: str) -> Optional[HistoryItem]:
        """Fetch a single item, or None if not found."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload FROM history WHERE id = ?", (item_id,)
            ).fetchone()
        if row is None:
            return None
        return HistoryItem.model_validate_json(row["payload"])

    def delete(self, item_id: str) -> bool:
        """Delete an item by id. Returns True if a row was deleted."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM history WHERE id = ?", (item_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted history item id=%s", item_id)
        return deleted

    def clear(self) -> int:
        """Delete every item and return how many were removed."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM history")
        logger.info("Cleared %d history items", cursor.rowcount)
        return cursor.rowcount
