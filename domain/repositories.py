from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol

from .models import Identity, Profile

IdentityListener = Callable[[Optional[Identity]], Awaitable[None]]
Unsubscribe = Callable[[], None]


class LocalStorage(Protocol):
    """
    String key/value storage that survives process restarts.

    Used only in demo mode. Calls are synchronous and block the caller.
    """

    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key was never set."""

        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class DocumentStore(Protocol):
    """
    Remote document store addressed by slash-separated paths
    such as `users/{identity_id}`.
    """

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        """Return the document at `path`, or None if there is none."""

        ...

    async def set(self, path: str, document: Mapping[str, Any]) -> None:
        """Create or replace the document at `path`."""

        ...

    async def update(self, path: str, partial: Mapping[str, Any]) -> None:
        """
        Overwrite the top-level keys present in `partial`.

        Raises `NotFoundError` when no document exists at `path`.
        """

        ...


class AuthService(Protocol):
    """
    External authentication service used in real mode.

    Provider failures are translated into `ConflictError`,
    `UnauthenticatedError`, `UnavailableError` or `MisconfiguredError`.
    """

    async def create_identity(self, email: str, password: str, display_name: str) -> Identity:
        ...

    async def authenticate(self, email: str, password: str) -> Identity:
        ...

    async def authenticate_external(
        self,
        provider: str,
        provider_user_id: str,
        display_name: str,
        email: str = "",
    ) -> Identity:
        """
        Resolve (or create) the identity linked to an external account,
        e.g. a Discord user.
        """

        ...

    async def sign_out(self) -> None:
        ...

    async def subscribe(self, listener: IdentityListener) -> Unsubscribe:
        """
        Register `listener` for identity changes.

        The listener is called with the current identity (or None) before
        this returns, then again on every sign-in and sign-out.
        """

        ...


class ProfileStore(Protocol):
    """
    Loads, creates and merges profiles against one persistence target.
    """

    async def load_profile(self, identity: Identity) -> Optional[Profile]:
        """
        Return the profile for `identity` with `last_login` set to now,
        or None when no profile has been created yet.
        """

        ...

    async def create_profile(
        self,
        identity: Identity,
        seed_balance: int,
        onboarding_completed: bool = False,
    ) -> Profile:
        """Persist and return a fresh profile. Only valid after a failed load."""

        ...

    async def update_profile(self, identity_id: str, partial: Mapping[str, Any]) -> Profile:
        """Shallow-merge `partial` into the stored profile and return the result."""

        ...


@dataclass
class RemoteBackend:
    """The pair of real-mode collaborators built from one set of credentials."""

    auth: AuthService
    documents: DocumentStore


RemoteBackendFactory = Callable[[str], Awaitable[RemoteBackend]]
