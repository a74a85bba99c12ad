from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from domain.errors import NotFoundError
from domain.models import Identity, Profile, utc_now, validate_balance
from domain.repositories import DocumentStore, LocalStorage, ProfileStore

from .profile_documents import encode_partial, profile_from_document, profile_to_document

logger = logging.getLogger(__name__)


def _new_profile(identity: Identity, seed_balance: int, onboarding_completed: bool, now: datetime) -> Profile:
    return Profile(
        identity_id=identity.id,
        display_name=identity.display_name,
        email=identity.email,
        balance=validate_balance(seed_balance),
        created_at=now,
        last_login=now,
        onboarding_completed=onboarding_completed,
    )


class LocalProfileStore(ProfileStore):
    """
    Demo-mode `ProfileStore` that keeps each profile as a JSON string in
    local storage under `user_data_{identity_id}`.

    Every write re-serializes the whole profile.
    """

    KEY_PREFIX = "user_data_"

    def __init__(
        self,
        storage: LocalStorage,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._storage = storage
        self._clock = clock

    @classmethod
    def key_for(cls, identity_id: str) -> str:
        return f"{cls.KEY_PREFIX}{identity_id}"

    def _read(self, identity_id: str) -> Optional[Profile]:
        raw = self._storage.get(self.key_for(identity_id))
        if raw is None:
            return None
        try:
            return profile_from_document(identity_id, json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            # An unreadable entry is treated as missing and gets re-seeded.
            logger.error("Error parsing stored profile for %s: %s", identity_id, exc)
            return None

    def _write(self, profile: Profile) -> None:
        document = profile_to_document(profile)
        self._storage.set(self.key_for(profile.identity_id), json.dumps(document))

    async def load_profile(self, identity: Identity) -> Optional[Profile]:
        profile = self._read(identity.id)
        if profile is None:
            return None
        # Only created_at is trusted from storage; this is a new login.
        return replace(profile, last_login=self._clock())

    async def create_profile(
        self,
        identity: Identity,
        seed_balance: int,
        onboarding_completed: bool = False,
    ) -> Profile:
        profile = _new_profile(identity, seed_balance, onboarding_completed, self._clock())
        self._write(profile)
        return profile

    async def update_profile(self, identity_id: str, partial: Mapping[str, Any]) -> Profile:
        profile = self._read(identity_id)
        if profile is None:
            raise NotFoundError(f"No stored profile for {identity_id}.")
        merged = profile.merged(partial)
        self._write(merged)
        return merged


class RemoteProfileStore(ProfileStore):
    """
    Real-mode `ProfileStore` backed by the remote document store.

    The remote document is the only source of truth; nothing is cached
    locally.
    """

    COLLECTION = "users"

    def __init__(
        self,
        documents: DocumentStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._documents = documents
        self._clock = clock

    @classmethod
    def path_for(cls, identity_id: str) -> str:
        return f"{cls.COLLECTION}/{identity_id}"

    async def load_profile(self, identity: Identity) -> Optional[Profile]:
        path = self.path_for(identity.id)
        document = await self._documents.get(path)
        if document is None:
            return None

        profile = profile_from_document(identity.id, document)

        # Loading a profile is what counts as a login.
        now = self._clock()
        await self._documents.update(path, encode_partial({"last_login": now}))
        return replace(profile, last_login=now)

    async def create_profile(
        self,
        identity: Identity,
        seed_balance: int,
        onboarding_completed: bool = False,
    ) -> Profile:
        profile = _new_profile(identity, seed_balance, onboarding_completed, self._clock())
        await self._documents.set(self.path_for(identity.id), profile_to_document(profile))
        return profile

    async def update_profile(self, identity_id: str, partial: Mapping[str, Any]) -> Profile:
        path = self.path_for(identity_id)
        coerced = Profile.coerce_partial(partial)
        await self._documents.update(path, encode_partial(coerced))

        document = await self._documents.get(path)
        if document is None:
            raise NotFoundError(f"No profile document at {path}.")
        return profile_from_document(identity_id, document)
