"""
Notices - Transient, non-blocking messages surfaced to the user.
Every notice is also written to the log at a matching level.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, List

logger = logging.getLogger(__name__)

NoticeListener = Callable[["Notice"], None]


@dataclass(frozen=True)
class Notice:
    """A single user-visible notice."""
    level: str  # success, error, info
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class NoticeCenter:
    """
    Collects notices and fans them out to subscribers.
    Keeps a bounded history so callers (and tests) can inspect what was shown.
    """

    _LOG_LEVELS = {
        "success": logging.INFO,
        "info": logging.INFO,
        "error": logging.WARNING,
    }

    def __init__(self, history_size: int = 50):
        self._history: Deque[Notice] = deque(maxlen=history_size)
        self._listeners: List[NoticeListener] = []

    @property
    def history(self) -> List[Notice]:
        return list(self._history)

    def messages(self, level: str = None) -> List[str]:
        """Messages of past notices, optionally filtered by level."""
        return [n.message for n in self._history if level is None or n.level == level]

    def subscribe(self, listener: NoticeListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, level: str, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        self._history.append(notice)
        logger.log(self._LOG_LEVELS.get(level, logging.INFO), f"Notice [{level}]: {message}")

        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception as e:
                logger.error(f"Notice listener failed: {e}", exc_info=True)
        return notice

    def success(self, message: str) -> Notice:
        return self.notify("success", message)

    def error(self, message: str) -> Notice:
        return self.notify("error", message)

    def info(self, message: str) -> Notice:
        return self.notify("info", message)

    def clear(self) -> None:
        self._history.clear()
