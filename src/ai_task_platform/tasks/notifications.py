"""Task lifecycle notifications."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class TaskEvent(str, Enum):
    CREATED = "task_created"
    APPROVED = "task_approved"
    COMPLETED = "task_completed"
    FAILED = "task_failed"


class NotificationSink(Protocol):
    def notify(self, event_name: TaskEvent, payload: dict[str, Any]) -> None: ...


class LoggingNotificationSink:
    """Writes every event to the application log."""

    def notify(self, event_name: TaskEvent, payload: dict[str, Any]) -> None:
        logger.info("Task event %s: %s", event_name.value, payload)


class RecordingNotificationSink:
    """Keeps events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[TaskEvent, dict[str, Any]]] = []

    def notify(self, event_name: TaskEvent, payload: dict[str, Any]) -> None:
        self.events.append((event_name, dict(payload)))

    def names(self) -> list[TaskEvent]:
        return [name for name, _ in self.events]
