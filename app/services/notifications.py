"""Fire-and-forget notifications on settlement state transitions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    event: str
    recipient_id: int | None
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher(Protocol):
    def dispatch(self, event: str, recipient_id: int | None, payload: dict[str, Any]) -> None: ...


class LoggingDispatcher:
    """Default dispatcher: records the notification in the application log."""

    def dispatch(self, event: str, recipient_id: int | None, payload: dict[str, Any]) -> None:
        logger.info("Notification dispatched", extra={"event": event, "recipient_id": recipient_id, **payload})


_dispatcher: NotificationDispatcher = LoggingDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def set_dispatcher(dispatcher: NotificationDispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher or LoggingDispatcher()


def notify_all(notifications: list[Notification]) -> None:
    """Send after commit; a failing dispatcher never undoes the transition."""

    dispatcher = get_dispatcher()
    for note in notifications:
        try:
            dispatcher.dispatch(note.event, note.recipient_id, dict(note.payload))
        except Exception:  # noqa: BLE001
            logger.exception(
                "Notification dispatch failed",
                extra={"event": note.event, "recipient_id": note.recipient_id},
            )


__all__ = [
    "LoggingDispatcher",
    "Notification",
    "NotificationDispatcher",
    "get_dispatcher",
    "notify_all",
    "set_dispatcher",
]
