from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import bcrypt
import psycopg2

from domain.errors import UnauthenticatedError
from domain.models import Identity
from domain.repositories import AuthService, IdentityListener, Unsubscribe
from infrastructure.identity_feed import IdentityFeed

from .postgres_errors import translate_postgres_errors

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    """Return a bcrypt hash of `password`, as text for the `accounts` table."""

    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        # Accounts created through an external provider have no password.
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        logger.warning("Stored password hash is not a bcrypt hash")
        return False


class PostgresAuthService(AuthService):
    """
    Postgres-backed implementation of `AuthService`.

    Manages two tables:
      - `accounts`: email, display name and password hash per identity.
      - `user_identities`: maps external identities (provider +
        provider_user_id) to account IDs.

    Sign-in state is held per process and published through an
    `IdentityFeed`.
    """

    def __init__(self, db_params: dict) -> None:
        self._db_params = db_params
        self._feed = IdentityFeed()
        with translate_postgres_errors("Preparing auth tables"):
            self._ensure_tables()

    @contextmanager
    def _get_connection(self) -> Iterator[Any]:
        conn = psycopg2.connect(**self._db_params)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    def _ensure_tables(self) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS accounts (
                        id TEXT PRIMARY KEY,
                        email TEXT UNIQUE,
                        display_name TEXT NOT NULL,
                        password_hash TEXT NOT NULL
                    )
                    """
                )
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS user_identities (
                        provider TEXT NOT NULL,
                        provider_user_id TEXT NOT NULL,
                        user_id TEXT NOT NULL REFERENCES accounts (id),
                        PRIMARY KEY (provider, provider_user_id)
                    )
                    """
                )

    @staticmethod
    def _to_domain(row) -> Identity:
        return Identity(id=str(row[0]), email=row[1] or "", display_name=row[2])

    def _create_account_sync(self, email: str, password: str, display_name: str) -> Identity:
        identity = Identity(id=uuid.uuid4().hex, email=email, display_name=display_name)
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO accounts (id, email, display_name, password_hash)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (identity.id, email, display_name, hash_password(password)),
                )
        return identity

    def _authenticate_sync(self, email: str, password: str) -> Identity:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, email, display_name, password_hash
                    FROM accounts
                    WHERE email = %s
                    """,
                    (email,),
                )
                row = cur.fetchone()
        if not row or not verify_password(password, row[3]):
            raise UnauthenticatedError("Invalid email or password.")
        return self._to_domain(row)

    def _get_or_create_external_sync(
        self,
        provider: str,
        provider_user_id: str,
        display_name: str,
        email: Optional[str],
    ) -> Identity:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                # Try existing mapping first.
                cur.execute(
                    """
                    SELECT a.id, a.email, a.display_name
                    FROM user_identities i
                    JOIN accounts a ON a.id = i.user_id
                    WHERE i.provider = %s AND i.provider_user_id = %s
                    """,
                    (provider, provider_user_id),
                )
                row = cur.fetchone()
                if row:
                    return self._to_domain(row)

                # No mapping yet: create a password-less account and link it.
                identity = Identity(
                    id=uuid.uuid4().hex,
                    email=email or "",
                    display_name=display_name,
                )
                cur.execute(
                    """
                    INSERT INTO accounts (id, email, display_name, password_hash)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (identity.id, email, display_name, ""),
                )
                cur.execute(
                    """
                    INSERT INTO user_identities (provider, provider_user_id, user_id)
                    VALUES (%s, %s, %s)
                    """,
                    (provider, provider_user_id, identity.id),
                )
                return identity

    async def create_identity(self, email: str, password: str, display_name: str) -> Identity:
        with translate_postgres_errors("Creating account"):
            identity = await asyncio.to_thread(
                self._create_account_sync,
                self._normalize_email(email),
                password,
                display_name,
            )
        logger.info("Created account %s", identity.id)
        await self._feed.publish(identity)
        return identity

    async def authenticate(self, email: str, password: str) -> Identity:
        with translate_postgres_errors("Signing in"):
            identity = await asyncio.to_thread(
                self._authenticate_sync, self._normalize_email(email), password
            )
        await self._feed.publish(identity)
        return identity

    async def authenticate_external(
        self,
        provider: str,
        provider_user_id: str,
        display_name: str,
        email: str = "",
    ) -> Identity:
        with translate_postgres_errors(f"Signing in with {provider}"):
            identity = await asyncio.to_thread(
                self._get_or_create_external_sync,
                provider,
                str(provider_user_id),
                display_name,
                self._normalize_email(email) or None,
            )
        await self._feed.publish(identity)
        return identity

    async def sign_out(self) -> None:
        await self._feed.publish(None)

    async def subscribe(self, listener: IdentityListener) -> Unsubscribe:
        return await self._feed.subscribe(listener)
