"""User-facing success / error / warning signals."""

from __future__ import annotations

import logging

from engine.optimistic.types import NotificationKind

logger = logging.getLogger(__name__)


class Notifier:
    """Fire-and-forget notification channel. The UI layer supplies the real one."""

    def notify(self, kind: str, message: str) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Writes notifications to the log. Default when no UI is attached."""

    def notify(self, kind: str, message: str) -> None:
        if kind == NotificationKind.ERROR:
            logger.error("notify: %s", message)
        elif kind == NotificationKind.WARNING:
            logger.warning("notify: %s", message)
        else:
            logger.info("notify: %s", message)


class RecordingNotifier(Notifier):
    """Keeps every notification in order. Used by tests and polling UIs."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, kind: str, message: str) -> None:
        self.messages.append((kind, message))

    def of_kind(self, kind: str) -> list[str]:
        return [m for k, m in self.messages if k == kind]

    def clear(self) -> None:
        self.messages.clear()
