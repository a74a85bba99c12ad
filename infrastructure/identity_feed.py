from __future__ import annotations

import logging
from typing import List, Optional

from domain.models import Identity
from domain.repositories import IdentityListener, Unsubscribe

logger = logging.getLogger(__name__)


class IdentityFeed:
    """
    Identity-change subscription shared by auth service implementations.

    Keeps track of the currently signed-in identity and replays it to new
    subscribers, so a subscriber always learns the current state first.
    """

    def __init__(self) -> None:
        self._current: Optional[Identity] = None
        self._listeners: List[IdentityListener] = []

    @property
    def current(self) -> Optional[Identity]:
        return self._current

    async def subscribe(self, listener: IdentityListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        await listener(self._current)
        return unsubscribe

    async def publish(self, identity: Optional[Identity]) -> None:
        self._current = identity
        logger.debug(
            "Identity changed to %s; notifying %d listener(s)",
            identity.id if identity else None,
            len(self._listeners),
        )
        # Copy: a listener may unsubscribe while being notified.
        for listener in list(self._listeners):
            await listener(identity)
