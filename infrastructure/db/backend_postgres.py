from __future__ import annotations

import asyncio
import logging

from domain.repositories import RemoteBackend

from .auth_service_postgres import PostgresAuthService
from .document_store_postgres import PostgresDocumentStore

logger = logging.getLogger(__name__)


def _build(db_params: dict) -> RemoteBackend:
    return RemoteBackend(
        auth=PostgresAuthService(db_params),
        documents=PostgresDocumentStore(db_params),
    )


async def connect_postgres_backend(database_url: str) -> RemoteBackend:
    """
    Build the real-mode auth service and document store for `database_url`.

    Table creation talks to the server, so this can raise
    `MisconfiguredError` or `UnavailableError`.
    """

    backend = await asyncio.to_thread(_build, {"dsn": database_url})
    logger.info("Connected to remote backend")
    return backend
