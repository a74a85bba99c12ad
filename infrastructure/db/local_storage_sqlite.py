from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from domain.repositories import LocalStorage


class SqliteLocalStorage(LocalStorage):
    """
    SQLite-backed implementation of `LocalStorage`.

    Owns a single `local_storage` key/value table. It is
    self-initialising: the table is created if needed.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS local_storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT value FROM local_storage WHERE key = ?", (key,))
            row = cur.fetchone()
            if not row:
                return None
            return str(row[0])

    def set(self, key: str, value: str) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO local_storage (key, value)
                VALUES (?, ?)
                ON CONFLICT (key)
                DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()

    def remove(self, key: str) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM local_storage WHERE key = ?", (key,))
            conn.commit()
