"""Outbound user-facing events (rendered as toasts by the UI)."""

import asyncio
import itertools
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from ..domain.models import utcnow

logger = structlog.get_logger()


class NotificationBridge(ABC):
    """Receives info/error/success events from the engine."""

    @abstractmethod
    def on_info(self, title: str, message: str) -> None:
        pass

    @abstractmethod
    def on_error(self, title: str, message: str) -> None:
        pass

    @abstractmethod
    def on_success(self, title: str, message: str) -> None:
        pass


class LoggingNotificationBridge(NotificationBridge):
    """Writes events to the structured log; used when no UI is attached."""

    def on_info(self, title: str, message: str) -> None:
        logger.info("notification_info", title=title, message=message)

    def on_error(self, title: str, message: str) -> None:
        logger.warning("notification_error", title=title, message=message)

    def on_success(self, title: str, message: str) -> None:
        logger.info("notification_success", title=title, message=message)


class NotificationKind(str, Enum):
    INFO = "info"
    ERROR = "error"
    SUCCESS = "success"


class Notification(BaseModel):
    """A queued toast."""

    id: int
    kind: NotificationKind
    title: str
    message: str
    duration_ms: int = 5000
    created_at: datetime = Field(default_factory=utcnow)


class NotificationCenter(NotificationBridge):
    """Keeps emitted events in order until dismissed or expired.

    Each event is removed ``duration_ms`` after it was added. A duration of 0
    keeps events until the UI dismisses them. Expiry needs a running event
    loop; events added outside one stay until dismissed.
    """

    def __init__(self, duration_ms: int = 5000) -> None:
        self.duration_ms = duration_ms
        self._ids = itertools.count(1)
        self._items: List[Notification] = []
        self._timers: Dict[int, asyncio.TimerHandle] = {}

    @property
    def notifications(self) -> List[Notification]:
        """Current events, oldest first."""
        return list(self._items)

    def of_kind(self, kind: NotificationKind) -> List[Notification]:
        return [n for n in self._items if n.kind is kind]

    def _add(self, kind: NotificationKind, title: str, message: str) -> Notification:
        notification = Notification(
            id=next(self._ids),
            kind=kind,
            title=title,
            message=message,
            duration_ms=self.duration_ms,
        )
        self._items.append(notification)
        self._schedule_expiry(notification)
        logger.debug("notification_added", kind=kind.value, title=title)
        return notification

    def on_info(self, title: str, message: str) -> None:
        self._add(NotificationKind.INFO, title, message)

    def on_error(self, title: str, message: str) -> None:
        self._add(NotificationKind.ERROR, title, message)

    def on_success(self, title: str, message: str) -> None:
        self._add(NotificationKind.SUCCESS, title, message)

    def dismiss(self, notification_id: int) -> Optional[Notification]:
        """Remove one event and cancel its expiry timer."""
        handle = self._timers.pop(notification_id, None)
        if handle is not None:
            handle.cancel()
        for notification in self._items:
            if notification.id == notification_id:
                self._items.remove(notification)
                return notification
        return None

    def clear(self) -> None:
        """Remove every event and cancel every expiry timer."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._items.clear()

    def _schedule_expiry(self, notification: Notification) -> None:
        if notification.duration_ms <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[notification.id] = loop.call_later(
            notification.duration_ms / 1000, self._expire, notification.id
        )

    def _expire(self, notification_id: int) -> None:
        self._timers.pop(notification_id, None)
        self._items = [n for n in self._items if n.id != notification_id]
        logger.debug("notification_expired", notification_id=notification_id)
