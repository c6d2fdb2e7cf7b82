from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List

logger = logging.getLogger(__name__)

INFO = "info"
ERROR = "error"

HISTORY_LIMIT = 100


@dataclass(frozen=True)
class Notification:
    level: str
    message: str


class Notifier:
    """Transient user-facing messages. Kept in memory and mirrored to the log."""

    def __init__(self, limit: int = HISTORY_LIMIT) -> None:
        self.history: Deque[Notification] = deque(maxlen=limit)
        self._listeners: List[Callable[[Notification], None]] = []

    def listen(self, listener: Callable[[Notification], None]) -> None:
        self._listeners.append(listener)

    def _push(self, level: str, message: str) -> None:
        note = Notification(level, message)
        self.history.append(note)
        for listener in list(self._listeners):
            listener(note)

    def info(self, message: str) -> None:
        logger.info("notify: %s", message)
        self._push(INFO, message)

    def error(self, message: str) -> None:
        logger.warning("notify: %s", message)
        self._push(ERROR, message)

    def messages(self, level: str | None = None) -> List[str]:
        return [n.message for n in self.history if level is None or n.level == level]
