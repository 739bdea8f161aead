"""Storage utilities for the ChangeoverHQ workspace."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Protocol


SCHEMA_VERSION = 1

KEY_PREFIX = "changeoverhq"
PROPERTIES_KEY = f"{KEY_PREFIX}.properties.v1"
BOOKINGS_KEY = f"{KEY_PREFIX}.bookings.v1"
CHANGEOVERS_KEY = f"{KEY_PREFIX}.changeovers.v1"

logger = logging.getLogger(__name__)


def property_prefix(property_id: str) -> str:
    """Every per-property key starts with this prefix."""

    return f"{KEY_PREFIX}.property.{property_id}."


def property_config_key(property_id: str) -> str:
    return f"{property_prefix(property_id)}config.v1"


def property_seed_key(property_id: str) -> str:
    return f"{property_prefix(property_id)}seed.v1"


def workspace_defaults_key(catalog_slug: str) -> str:
    return f"{KEY_PREFIX}.defaults.{catalog_slug}.v1"


class KeyValueStore(Protocol):
    """Durable string store shared by every component.

    None of the methods raise: reads return ``None`` for missing or unreadable
    keys and writes report failure by returning ``False``.
    """

    def read_key(self, key: str) -> str | None: ...

    def write_key(self, key: str, value: str) -> bool: ...

    def remove_key(self, key: str) -> bool: ...

    def list_keys(self) -> set[str]: ...


def dict_factory(cursor: sqlite3.Cursor, row: sqlite3.Row) -> dict:
    """Return rows as dictionaries rather than tuples."""

    return {description[0]: row[idx] for idx, description in enumerate(cursor.description)}


def get_connection(path: str | Path) -> sqlite3.Connection:
    """Return a SQLite connection with sensible defaults."""

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = dict_factory
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_database(conn: sqlite3.Connection) -> None:
    """Create the key/value schema if it does not yet exist."""

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS records (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
        """
    )

    set_metadata(conn, "schema_version", SCHEMA_VERSION)


def set_metadata(conn: sqlite3.Connection, key: str, value: int | str | dict | list) -> None:
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    conn.execute(
        "INSERT INTO metadata(key, value) VALUES (?, ?)\n         ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, str(value)),
    )
    conn.commit()


def get_metadata(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default


class SQLiteStore:
    """Key/value store persisted in a SQLite ``records`` table.

    ``quota_bytes`` caps the combined length of every key and value, the way a
    browser caps local storage. A write that would cross it is refused.

    The connection is shared between request threads, so every call holds
    ``_lock`` for its whole read, quota check and commit.
    """

    def __init__(self, path: str | Path = ":memory:", *, quota_bytes: int | None = None) -> None:
        self.conn = get_connection(path)
        initialize_database(self.conn)
        self.quota_bytes = quota_bytes
        self._lock = threading.Lock()

    def _usage_excluding(self, key: str) -> int:
        row = self.conn.execute(
            "SELECT COALESCE(SUM(length(key) + length(value)), 0) AS used FROM records WHERE key != ?",
            (key,),
        ).fetchone()
        return int(row["used"])

    def read_key(self, key: str) -> str | None:
        with self._lock:
            try:
                row = self.conn.execute("SELECT value FROM records WHERE key = ?", (key,)).fetchone()
            except sqlite3.Error as exc:
                logger.warning("Could not read %s: %s", key, exc)
                return None
        return row["value"] if row else None

    def write_key(self, key: str, value: str) -> bool:
        with self._lock:
            try:
                if self.quota_bytes is not None:
                    needed = self._usage_excluding(key) + len(key) + len(value)
                    if needed > self.quota_bytes:
                        logger.warning(
                            "Storage quota exceeded writing %s (%d > %d)", key, needed, self.quota_bytes
                        )
                        return False
                self.conn.execute(
                    """
                    INSERT INTO records(key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, value),
                )
                self.conn.commit()
            except sqlite3.Error as exc:
                self.conn.rollback()
                logger.warning("Could not write %s: %s", key, exc)
                return False
        return True

    def remove_key(self, key: str) -> bool:
        with self._lock:
            try:
                self.conn.execute("DELETE FROM records WHERE key = ?", (key,))
                self.conn.commit()
            except sqlite3.Error as exc:
                self.conn.rollback()
                logger.warning("Could not remove %s: %s", key, exc)
                return False
        return True

    def list_keys(self) -> set[str]:
        with self._lock:
            try:
                rows = self.conn.execute("SELECT key FROM records").fetchall()
            except sqlite3.Error as exc:
                logger.warning("Could not list keys: %s", exc)
                return set()
        return {row["key"] for row in rows}

    def close(self) -> None:
        with self._lock:
            self.conn.close()


class MemoryStore:
    """In-process store used by tests and throwaway workspaces."""

    def __init__(self, *, quota_bytes: int | None = None) -> None:
        self.data: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def read_key(self, key: str) -> str | None:
        return self.data.get(key)

    def write_key(self, key: str, value: str) -> bool:
        if self.quota_bytes is not None:
            used = sum(len(k) + len(v) for k, v in self.data.items() if k != key)
            if used + len(key) + len(value) > self.quota_bytes:
                logger.warning("Storage quota exceeded writing %s", key)
                return False
        self.data[key] = value
        return True

    def remove_key(self, key: str) -> bool:
        self.data.pop(key, None)
        return True

    def list_keys(self) -> set[str]:
        return set(self.data)

    def close(self) -> None:
        self.data.clear()


def read_json(store: KeyValueStore, key: str) -> Any | None:
    """Decode the JSON stored under ``key``; malformed text counts as absent."""

    raw = store.read_key(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (ValueError, RecursionError):
        logger.debug("Discarding malformed JSON under %s", key)
        return None


def write_json(store: KeyValueStore, key: str, value: Any) -> bool:
    try:
        raw = json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        logger.warning("Could not serialise %s: %s", key, exc)
        return False
    return store.write_key(key, raw)
