from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, Set

from .notifications import Notifier

logger = logging.getLogger(__name__)


class DurableWriteDispatcher:
    """
    Runs persistence writes as background tasks.

    Writes are not serialized: when several are in flight, whichever
    settles last decides the stored value. A failed write is logged and
    reported through the notifier; callers' in-memory state is never
    rolled back.
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._pending: Set["asyncio.Task[None]"] = set()
        self.last_failure: Optional[BaseException] = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, write: Awaitable[object], description: str) -> "asyncio.Task[None]":
        task = asyncio.ensure_future(self._run(write, description))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run(self, write: Awaitable[object], description: str) -> None:
        try:
            await write
        except Exception as exc:
            self.last_failure = exc
            logger.error("Failed to save %s: %s", description, exc)
            self._notifier.error(f"Failed to save {description}")

    async def drain(self) -> None:
        """Wait for every write dispatched so far to settle."""

        while self._pending:
            await asyncio.gather(*list(self._pending))
