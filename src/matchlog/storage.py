"""Key-value storage backends for persisted match snapshots.

The event log only needs a durable slot it can get, set and remove by key.
Three backends are provided:

- MemoryStorage: in-process dict, optional byte quota (tests, embedding)
- FileStorage: one JSON file per key inside a directory
- SQLiteStorage: a single table in a SQLite database (WAL mode)

Backends raise StorageError on failure; callers decide how to degrade.
"""

from __future__ import annotations

import logging
import os
import re
import sqlite3
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from .constants import SQLITE_TIMEOUT_SECONDS
from .exceptions import StorageError, StorageQuotaExceeded

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


@runtime_checkable
class KeyValueStorage(Protocol):
    """Synchronous key-value slot the persistence layer writes through."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


def _check_key(key: str) -> str:
    if not key or not _KEY_PATTERN.match(key):
        raise StorageError("key check", key)
    return key


class MemoryStorage:
    """Dict-backed storage with an optional total size limit in bytes."""

    def __init__(self, quota_bytes: int | None = None):
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            others = sum(len(v.encode("utf-8")) for k, v in self._data.items() if k != key)
            if others + len(value.encode("utf-8")) > self.quota_bytes:
                raise StorageQuotaExceeded("set", key)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileStorage:
    """One file per key (``<key>.json``) inside a directory.

    Writes go to a temp file in the same directory and are moved into
    place, so a crash mid-write never leaves a half-written snapshot.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_check_key(key)}.json"

    def get(self, key: str) -> str | None:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError("get", key, e) from e

    def set(self, key: str, value: str) -> None:
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError("set", key, e) from e

    def remove(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError("remove", key, e) from e


class SQLiteStorage:
    """Key-value table in a SQLite database."""

    def __init__(self, db_path: Path):
        """Initialize SQLite storage.

        Args:
            db_path: Path to the database file (parent dirs are created)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), timeout=SQLITE_TIMEOUT_SECONDS)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=30000")
        return self._conn

    def _init_db(self) -> None:
        """Initialize database schema."""
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                created_at TEXT DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT DEFAULT (datetime('now'))
            );
        """)
        version = conn.execute("SELECT version FROM schema_version").fetchone()
        if version is None:
            conn.execute("INSERT INTO schema_version (version) VALUES (1)")
        elif version[0] < 1:
            logger.warning(f"Schema version {version[0]} detected, may need migration")
        conn.commit()

    def get(self, key: str) -> str | None:
        try:
            row = self._get_conn().execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError("get", key, e) from e
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO kv (key, value, updated_at) VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value),
            )
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if "full" in str(e).lower():
                raise StorageQuotaExceeded("set", key, e) from e
            raise StorageError("set", key, e) from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError("set", key, e) from e

    def remove(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError("remove", key, e) from e

    def close(self) -> None:
        """Close database connection, checkpointing the WAL first."""
        if self._conn is not None:
            self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            self._conn.close()
            self._conn = None
