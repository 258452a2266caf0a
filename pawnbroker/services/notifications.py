from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
from typing import Any, Protocol

from pawnbroker.tasks.notifications import emit_send_notification_task

logger = logging.getLogger("pawnbroker.notifications")


@dataclass(frozen=True)
class Notification:
    kind: str
    to: str
    subject: str
    body: str
    context: dict[str, Any] = field(default_factory=dict)


class Notifier(Protocol):
    def send(self, notification: Notification) -> None: ...


class CeleryNotifier:
    """Queues email delivery on the worker."""

    def send(self, notification: Notification) -> None:
        emit_send_notification_task(asdict(notification))


def notify(notifier: Notifier | None, notification: Notification) -> None:
    """Deliver best-effort; a failing notifier never fails the caller."""

    if notifier is None or not notification.to:
        return
    try:
        notifier.send(notification)
    except Exception:
        logger.exception("notification failed kind=%s to=%s", notification.kind, notification.to)
