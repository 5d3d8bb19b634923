"""Transient user notifications (toasts).

Notifications are keyed: posting under an existing key replaces that entry
in place, so a "loading" notice turns into its success or error outcome
instead of stacking.
"""
import logging
from dataclasses import dataclass
from itertools import count
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

LOADING = "loading"
SUCCESS = "success"
ERROR = "error"
INFO = "info"

_auto_keys = count(1)


@dataclass
class Notification:
    key: str
    level: str
    text: str


class Notifier:
    """Collects notifications for the UI and mirrors them to the log."""

    def __init__(self) -> None:
        self.current: Dict[str, Notification] = {}
        self.history: List[Notification] = []

    def _post(self, level: str, text: str, key: Optional[str]) -> Notification:
        notification = Notification(key=key or f"auto-{next(_auto_keys)}", level=level, text=text)
        self.current[notification.key] = notification
        self.history.append(notification)
        if level == ERROR:
            logger.error(f"[{notification.key}] {text}")
        else:
            logger.info(f"[{notification.key}] {text}")
        return notification

    def loading(self, text: str, key: Optional[str] = None) -> Notification:
        return self._post(LOADING, text, key)

    def success(self, text: str, key: Optional[str] = None) -> Notification:
        return self._post(SUCCESS, text, key)

    def error(self, text: str, key: Optional[str] = None) -> Notification:
        return self._post(ERROR, text, key)

    def info(self, text: str, key: Optional[str] = None) -> Notification:
        return self._post(INFO, text, key)

    def dismiss(self, key: str) -> None:
        self.current.pop(key, None)

    def texts(self, level: Optional[str] = None) -> List[str]:
        """Texts of every notification posted so far, optionally by level."""
        return [n.text for n in self.history if level is None or n.level == level]
