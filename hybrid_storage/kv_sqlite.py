"""SQLite database key-value store.

Keeps every slot as one row of a single table. Uses WAL mode and a fresh
connection per operation, so several stores may point at the same file.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from hybrid_storage.kv_json import validate_key

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS slots (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""

UPSERT_SQL = """
INSERT INTO slots (key, value) VALUES (?, ?)
ON CONFLICT(key) DO UPDATE SET
    value = excluded.value,
    updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
"""


class SQLiteKeyValueStore:
    """SQLite-backed key-value store.

    Values are stored as JSON text. A row holding JSON that no longer decodes
    is treated the same as a missing row.

    Attributes:
        db_path: The Path to the SQLite database file.

    Example:
        store = SQLiteKeyValueStore(Path("/home/user/project/.hybrid_storage/storage.db"))
        suites = store.read("suites", [])
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the SQLite key-value store.

        Creates the database file and schema if they don't exist.

        Args:
            db_path: The path to the SQLite database file.

        Raises:
            sqlite3.Error: If there's an error initializing the database.
        """
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create and configure a database connection.

        Enables WAL mode and sets IMMEDIATE isolation level for transaction
        control.

        Returns:
            A configured sqlite3.Connection object.

        Raises:
            sqlite3.Error: If there's an error connecting to the database.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            isolation_level="IMMEDIATE",
            check_same_thread=False,  # Safe: each operation uses fresh connection
        )
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    def _fetch_raw(self, key: str) -> str | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value FROM slots WHERE key = ?", (validate_key(key),)
            ).fetchone()
            return row[0] if row is not None else None
        finally:
            conn.close()

    def exists(self, key: str) -> bool:
        try:
            return self._fetch_raw(key) is not None
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not check slot %r: %s", key, e)
            return False

    def read(self, key: str, default: Any) -> Any:
        """Load the value stored at key.

        Args:
            key: The slot name.
            default: Returned when the row is missing, corrupt or unreadable.

        Returns:
            The decoded value, or default.
        """
        try:
            raw = self._fetch_raw(key)
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not read slot %r (%s), using default", key, e)
            return default

        if raw is None:
            logger.debug("Slot %r not found, using default", key)
            return default

        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Slot %r holds invalid JSON (%s), using default", key, e)
            return default

    def write(self, key: str, value: Any) -> None:
        """Upsert the value stored at key in a single transaction.

        Serialization and database errors are logged and swallowed.

        Args:
            key: The slot name.
            value: A JSON-serializable value.
        """
        validate_key(key)
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.warning("Could not serialize slot %r: %s", key, e)
            return

        try:
            conn = self._connect()
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not write slot %r: %s", key, e)
            return

        try:
            conn.execute(UPSERT_SQL, (key, payload))
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.warning("Could not write slot %r: %s", key, e)
            try:
                conn.rollback()
            except sqlite3.Error:
                pass  # Connection may be in bad state after commit failure
        finally:
            conn.close()
