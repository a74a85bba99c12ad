from __future__ import annotations

import asyncio
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

import psycopg2
from psycopg2.extras import Json

from domain.errors import NotFoundError
from domain.repositories import DocumentStore

from .postgres_errors import translate_postgres_errors


class PostgresDocumentStore(DocumentStore):
    """
    Postgres-backed implementation of `DocumentStore`.

    Documents live in a single `documents` table as JSONB, keyed by
    (collection, doc_id). A path such as `users/abc123` addresses
    collection `users`, document `abc123`.

    psycopg2 is blocking, so every call runs in a worker thread.
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        with translate_postgres_errors("Preparing document store"):
            self._ensure_table()

    @contextmanager
    def _get_connection(self) -> Iterator[Any]:
        conn = psycopg2.connect(**self._db_params)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @staticmethod
    def _split_path(path: str) -> Tuple[str, str]:
        collection, _, doc_id = path.partition("/")
        if not collection or not doc_id or "/" in doc_id:
            raise ValueError(f"Invalid document path: {path}")
        return collection, doc_id

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        doc_id TEXT NOT NULL,
                        data JSONB NOT NULL,
                        PRIMARY KEY (collection, doc_id)
                    )
                    """
                )

    def _get_sync(self, path: str) -> Optional[Dict[str, Any]]:
        collection, doc_id = self._split_path(path)
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT data FROM documents WHERE collection = %s AND doc_id = %s",
                    (collection, doc_id),
                )
                row = cur.fetchone()
                if not row:
                    return None
                return dict(row[0])

    def _set_sync(self, path: str, document: Mapping[str, Any]) -> None:
        collection, doc_id = self._split_path(path)
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO documents (collection, doc_id, data)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (collection, doc_id)
                    DO UPDATE SET data = excluded.data
                    """,
                    (collection, doc_id, Json(dict(document))),
                )

    def _update_sync(self, path: str, partial: Mapping[str, Any]) -> None:
        collection, doc_id = self._split_path(path)
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                # `||` on jsonb replaces top-level keys only: a shallow merge.
                cur.execute(
                    """
                    UPDATE documents
                    SET data = data || %s::jsonb
                    WHERE collection = %s AND doc_id = %s
                    """,
                    (Json(dict(partial)), collection, doc_id),
                )
                if cur.rowcount == 0:
                    raise NotFoundError(f"No document at {path}.")

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        with translate_postgres_errors(f"Reading {path}"):
            return await asyncio.to_thread(self._get_sync, path)

    async def set(self, path: str, document: Mapping[str, Any]) -> None:
        with translate_postgres_errors(f"Writing {path}"):
            await asyncio.to_thread(self._set_sync, path, document)

    async def update(self, path: str, partial: Mapping[str, Any]) -> None:
        with translate_postgres_errors(f"Updating {path}"):
            await asyncio.to_thread(self._update_sync, path, partial)
