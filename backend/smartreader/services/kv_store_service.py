"""
Key-Value Store Service

SQLite-backed namespaced key-value storage for the content index, its
manifest and the search index snapshot. Values are JSON documents.

Schema:
    kv_store (
        namespace TEXT NOT NULL,
        key TEXT NOT NULL,
        value_json TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (namespace, key)
    )

Every write is a single-row UPSERT committed in its own transaction, so a
failed write leaves the previous value in place. Storage errors are raised
as StorageError and never masked. There is no protection against two
processes writing the same key; the last write wins.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from .errors import StorageError

logger = logging.getLogger(__name__)


class KeyValueStoreService:
    """Namespaced JSON key-value store on top of SQLite."""

    def __init__(self, db_path: str = "data/smartreader.db"):
        """
        Initialize the key-value store.

        Args:
            db_path: Path to the SQLite database file. The directory is created
                     if it doesn't exist.
        """
        self.db_path = db_path
        self._ensure_data_dir()
        self._init_table()

    def _ensure_data_dir(self) -> None:
        data_dir = os.path.dirname(self.db_path)
        if data_dir and not os.path.exists(data_dir):
            os.makedirs(data_dir)

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StorageError(f"Could not open key-value store: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Key-value store error: {e}")
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def _init_table(self) -> None:
        with self.get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value_json TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (namespace, key)
                )
                """
            )
            conn.commit()

    def get_item(self, namespace: str, key: str) -> Optional[Dict[str, Any]]:
        """
        Read a value.

        Returns:
            The decoded JSON value, or None if the key is absent or its
            payload is not valid JSON
        """
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT value_json FROM kv_store WHERE namespace = ? AND key = ?",
                (namespace, key),
            ).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value_json"])
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable value for {namespace}.{key}")
            return None

    def set_item(self, namespace: str, key: str, value: Any) -> None:
        value_json = json.dumps(value)
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO kv_store (namespace, key, value_json, updated_at)
                VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value_json = excluded.value_json,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (namespace, key, value_json),
            )
            conn.commit()

    def remove_item(self, namespace: str, key: str) -> bool:
        with self.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
                (namespace, key),
            )
            conn.commit()
            return cursor.rowcount > 0

    def keys(self, namespace: str) -> List[str]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE namespace = ? ORDER BY key",
                (namespace,),
            ).fetchall()
        return [row["key"] for row in rows]

    def clear(self, namespace: str) -> int:
        with self.get_connection() as conn:
            cursor = conn.execute("DELETE FROM kv_store WHERE namespace = ?", (namespace,))
            conn.commit()
            return cursor.rowcount
