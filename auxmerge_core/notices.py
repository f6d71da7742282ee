"""
User-visible notices raised by the reconciliation controller.

Author: auxmerge contributors | 2026-10-19
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from .constants import EXTENSION_NAME

logger = logging.getLogger(__name__)


class NoticeLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    NoticeLevel.INFO: logging.INFO,
    NoticeLevel.SUCCESS: logging.INFO,
    NoticeLevel.WARNING: logging.WARNING,
    NoticeLevel.ERROR: logging.ERROR,
}


@dataclass
class Notice:
    level: NoticeLevel
    message: str
    title: str = EXTENSION_NAME
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "message": self.message,
            "title": self.title,
            "timestamp": self.timestamp,
        }


class NoticeBoard:
    """
    Collects notices for the front-end and mirrors each one to the logger.

    Listener errors are logged and do not propagate to the caller.
    """

    def __init__(self, max_history: int = 100):
        self._history: Deque[Notice] = deque(maxlen=max_history)
        self._listeners: List[Callable[[Notice], None]] = []

    def subscribe(self, listener: Callable[[Notice], None]) -> None:
        self._listeners.append(listener)

    def notify(self, level: NoticeLevel, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        self._history.append(notice)
        logger.log(_LOG_LEVELS[level], f"[{level.value}] {message}")

        for listener in list(self._listeners):
            try:
                listener(notice)
            except Exception as e:
                logger.error(f"Notice listener failed: {e}")
        return notice

    def info(self, message: str) -> Notice:
        return self.notify(NoticeLevel.INFO, message)

    def success(self, message: str) -> Notice:
        return self.notify(NoticeLevel.SUCCESS, message)

    def warning(self, message: str) -> Notice:
        return self.notify(NoticeLevel.WARNING, message)

    def error(self, message: str) -> Notice:
        return self.notify(NoticeLevel.ERROR, message)

    def recent(self, limit: int = 10, level: Optional[NoticeLevel] = None) -> List[Notice]:
        notices = [n for n in self._history if level is None or n.level == level]
        return notices[-limit:]

    def last(self) -> Optional[Notice]:
        return self._history[-1] if self._history else None

    def clear(self) -> None:
        self._history.clear()
