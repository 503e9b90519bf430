"""
This module defines the PersistenceService for the local SQLite database.
"""

import sqlite3
from typing import Optional

from ..config import LOCAL_DB_PATH


class PersistenceService:
    """Handles all interactions with the local database (geocode cache, logs, system info)."""

    def __init__(self, db_path: str = LOCAL_DB_PATH):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._cursor: Optional[sqlite3.Cursor] = None

    def __enter__(self) -> "PersistenceService":
        """Establishes the database connection."""
        self._conn = sqlite3.connect(self.db_path, timeout=10)
        self._conn.row_factory = sqlite3.Row
        self._cursor = self._conn.cursor()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Commits changes (or rolls back on error) and closes the connection."""
        if self._conn:
            if exc_type is None:
                self._conn.commit()
            else:
                self._conn.rollback()
            self._conn.close()
        self._conn = None
        self._cursor = None

    def _get_cursor(self) -> sqlite3.Cursor:
        """Returns the cursor, ensuring the connection is open."""
        if self._cursor is None:
            raise RuntimeError("Database connection is not open. Use 'with' statement.")
        return self._cursor

    def init_db(self) -> None:
        """Initialize SQLite schema if not exists."""
        cur = self._get_cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS geocode_cache (
                address TEXT PRIMARY KEY,
                location_key TEXT,
                failure_reason TEXT,
                expires_at REAL NOT NULL
            )
        """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                level TEXT NOT NULL,
                message TEXT NOT NULL,
                logger_name TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS system_info (
                key TEXT PRIMARY KEY,
                value TEXT
            )
            """
        )

    def get_geocode_entry(self, address: str) -> Optional[sqlite3.Row]:
        """Retrieves the cached resolution for a canonical address."""
        cur = self._get_cursor()
        cur.execute(
            "SELECT address, location_key, failure_reason, expires_at FROM geocode_cache WHERE address = ?",
            (address,),
        )
        return cur.fetchone()

    def upsert_geocode_entry(
        self,
        address: str,
        location_key: Optional[str],
        failure_reason: Optional[str],
        expires_at: float,
    ) -> None:
        """Inserts or replaces a cached resolution."""
        cur = self._get_cursor()
        cur.execute(
            "INSERT OR REPLACE INTO geocode_cache (address, location_key, failure_reason, expires_at) VALUES (?, ?, ?, ?)",
            (address, location_key, failure_reason, expires_at),
        )

    def delete_geocode_entry(self, address: str, expires_no_later_than: Optional[float] = None) -> None:
        """Removes a cached resolution, optionally only if it is not newer than a given expiry."""
        cur = self._get_cursor()
        if expires_no_later_than is None:
            cur.execute("DELETE FROM geocode_cache WHERE address = ?", (address,))
        else:
            cur.execute(
                "DELETE FROM geocode_cache WHERE address = ? AND expires_at <= ?",
                (address, expires_no_later_than),
            )

    def clear_geocode_cache(self) -> None:
        """Removes all cached resolutions."""
        cur = self._get_cursor()
        cur.execute("DELETE FROM geocode_cache")

    def record_system_info(self, key: str, value: str) -> None:
        """Stores a key/value pair such as the bot start time."""
        cur = self._get_cursor()
        cur.execute(
            "INSERT OR REPLACE INTO system_info (key, value) VALUES (?, ?)",
            (key, value),
        )

    def add_log(self, level: str, message: str, logger_name: str) -> None:
        cur = self._get_cursor()
        cur.execute(
            "INSERT INTO logs (level, message, logger_name) VALUES (?, ?, ?)",
            (level, message, logger_name),
        )
