"""Notifications and fire-and-forget dispatch."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from .collaborators import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """Base notification."""

    title: str
    message: str
    created_at: datetime
    recipients: tuple[str, ...] = ()
    data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> str:
        return "notification"


@dataclass(frozen=True)
class ConflictAlert(Notification):
    request_id: str = ""
    conflict_ids: tuple[str, ...] = ()
    severity: str = "high"

    @property
    def kind(self) -> str:
        return "conflict_alert"


@dataclass(frozen=True)
class BookingConfirmation(Notification):
    class_id: str = ""
    student_id: str = ""
    teacher_id: str = ""

    @property
    def kind(self) -> str:
        return "booking_confirmation"


@dataclass(frozen=True)
class DailyUpdateNotice(Notification):
    update_id: str = ""
    trigger: str = "success"  # success, failure or warning
    status: str = ""

    @property
    def kind(self) -> str:
        return "daily_update"


class RecordingNotificationDispatcher(NotificationDispatcher):
    """Keeps every notification in memory."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sent: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        with self._lock:
            self.sent.append(notification)

    def of_kind(self, kind: str) -> list[Notification]:
        with self._lock:
            return [n for n in self.sent if n.kind == kind]


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Writes notifications to the log."""

    def notify(self, notification: Notification) -> None:
        logger.info(f"[{notification.kind}] {notification.title}: {notification.message}")


class NotificationHub:
    """Sends notifications without letting delivery affect the caller.

    Delivery runs on a single background thread; a failing or slow dispatcher
    is logged and otherwise ignored.
    """

    def __init__(self, dispatcher: NotificationDispatcher | None):
        self.dispatcher = dispatcher
        self._executor: ThreadPoolExecutor | None = None
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def send(self, notification: Notification) -> None:
        if self.dispatcher is None:
            return
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="notifications"
                )
            future = self._executor.submit(self.dispatcher.notify, notification)
            self._pending.add(future)
        future.add_done_callback(lambda f: self._on_done(f, notification))

    def _on_done(self, future: Future, notification: Notification) -> None:
        with self._lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            logger.warning(f"Notification '{notification.title}' failed: {error}")

    def flush(self, timeout: float | None = None) -> None:
        """Wait for queued notifications to be delivered."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)
