from __future__ import annotations

import json
import logging
import time
from typing import Callable, Dict, Optional

from domain.errors import ConflictError
from domain.models import Identity
from domain.repositories import LocalStorage

logger = logging.getLogger(__name__)

DEMO_EMAIL = "demo@tradekaro.com"
DEMO_PASSWORD = "demo123"
CANONICAL_DEMO_IDENTITY = Identity(
    id="demo-user-123",
    email=DEMO_EMAIL,
    display_name="Demo Trader",
)

ACCOUNTS_KEY = "demo_accounts"
ACTIVE_KEY = "demo_session"


def _millis() -> int:
    return time.time_ns() // 1_000_000


class DemoDirectory:
    """
    Locally synthesized identities for demo mode.

    Keeps an email -> identity directory and a pointer to the last active
    demo identity in local storage. The canonical demo account is always
    present and is never written to the directory.
    """

    def __init__(self, storage: LocalStorage, ticks: Callable[[], int] = _millis) -> None:
        self._storage = storage
        self._ticks = ticks
        self._last_tick = 0

    def _accounts(self) -> Dict[str, Dict[str, str]]:
        raw = self._storage.get(ACCOUNTS_KEY)
        if raw is None:
            return {}
        try:
            return dict(json.loads(raw))
        except (ValueError, TypeError) as exc:
            logger.error("Error parsing demo account directory: %s", exc)
            return {}

    @staticmethod
    def _normalize_email(email: str) -> str:
        return email.strip().lower()

    def _new_id(self) -> str:
        # Time-derived, but never repeats within a process.
        tick = max(self._ticks(), self._last_tick + 1)
        self._last_tick = tick
        return f"demo-{tick}"

    def find_by_email(self, email: str) -> Optional[Identity]:
        email = self._normalize_email(email)
        if email == CANONICAL_DEMO_IDENTITY.email:
            return CANONICAL_DEMO_IDENTITY
        record = self._accounts().get(email)
        if record is None:
            return None
        return Identity(id=record["id"], email=email, display_name=record["display_name"])

    def find_by_id(self, identity_id: str) -> Optional[Identity]:
        if identity_id == CANONICAL_DEMO_IDENTITY.id:
            return CANONICAL_DEMO_IDENTITY
        for email, record in self._accounts().items():
            if record["id"] == identity_id:
                return Identity(id=identity_id, email=email, display_name=record["display_name"])
        return None

    def register(self, email: str, display_name: str) -> Identity:
        """Create a fresh demo identity, or raise `ConflictError` if the email is taken."""

        if self.find_by_email(email) is not None:
            raise ConflictError(f"An account already exists for {email}.")

        email = self._normalize_email(email)
        identity = Identity(id=self._new_id(), email=email, display_name=display_name)
        accounts = self._accounts()
        accounts[email] = {"id": identity.id, "display_name": display_name}
        self._storage.set(ACCOUNTS_KEY, json.dumps(accounts))
        return identity

    def remember_active(self, identity_id: str) -> None:
        self._storage.set(ACTIVE_KEY, identity_id)

    def forget_active(self) -> None:
        self._storage.remove(ACTIVE_KEY)

    def restore_active(self) -> Identity:
        """The last active demo identity, falling back to the canonical one."""

        identity_id = self._storage.get(ACTIVE_KEY)
        if identity_id is None:
            return CANONICAL_DEMO_IDENTITY
        identity = self.find_by_id(identity_id)
        if identity is None:
            logger.warning("Unknown demo identity %s in local storage; using demo account", identity_id)
            return CANONICAL_DEMO_IDENTITY
        return identity
