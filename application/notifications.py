from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Short user-facing messages about session events."""

    def success(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...

    def info(self, message: str) -> None:
        ...


class LoggingNotifier(Notifier):
    """Default notifier: writes every notice to the log."""

    def success(self, message: str) -> None:
        logger.info(message)

    def error(self, message: str) -> None:
        logger.warning(message)

    def info(self, message: str) -> None:
        logger.info(message)


@dataclass
class Notice:
    """A message that should be shown to the user."""

    level: str
    text: str


class BufferedNotifier(Notifier):
    """
    Collects notices until an interface drains and delivers them.
    """

    def __init__(self) -> None:
        self._notices: List[Notice] = []

    def success(self, message: str) -> None:
        self._notices.append(Notice(level="success", text=message))

    def error(self, message: str) -> None:
        self._notices.append(Notice(level="error", text=message))

    def info(self, message: str) -> None:
        self._notices.append(Notice(level="info", text=message))

    def drain(self) -> List[Notice]:
        notices, self._notices = self._notices, []
        return notices
