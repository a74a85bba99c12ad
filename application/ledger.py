from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any

from domain.errors import InvalidBalanceError
from domain.models import Profile, validate_balance
from domain.repositories import ProfileStore

from .writes import DurableWriteDispatcher


class BalanceLedger:
    """
    Applies balance changes with an optimistic-update policy.

    The new balance is applied to the in-memory profile first and the
    durable write is dispatched afterwards. If the write fails the caller
    is notified but the in-memory balance is kept, so a crash between the
    two steps loses the new balance. Removing that window would need a
    durable write before the in-memory update, or an outbox with retries.
    """

    def __init__(self, writes: DurableWriteDispatcher) -> None:
        self._writes = writes

    @staticmethod
    def apply(profile: Profile, new_balance: Any) -> Profile:
        """
        Return `profile` carrying `new_balance`.

        Raises `InvalidBalanceError` when `new_balance` is negative or not
        a whole number; nothing is applied in that case.
        """

        return replace(profile, balance=validate_balance(new_balance))

    def persist(self, profile: Profile, store: ProfileStore) -> "asyncio.Task[None]":
        """Dispatch the durable write of `profile.balance` to `store`."""

        return self._writes.dispatch(
            store.update_profile(profile.identity_id, {"balance": profile.balance}),
            description="balance",
        )

    @staticmethod
    def adjusted(profile: Profile, delta: int) -> int:
        """The balance `profile` would have after adding `delta`."""

        if isinstance(delta, bool) or not isinstance(delta, int):
            raise InvalidBalanceError(f"Balance change must be a whole number, got {delta!r}.")
        new_balance = profile.balance + delta
        if new_balance < 0:
            raise InvalidBalanceError(
                f"Insufficient balance: {profile.balance} available, {-delta} required."
            )
        return new_balance
