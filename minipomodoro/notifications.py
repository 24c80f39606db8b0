"""
Outbound notification plumbing: persistence alerts for the UI and the
"time is up" announcement.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from minipomodoro.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistenceAlert:
    operation: str
    message: str
    error: PersistenceError = field(compare=False, repr=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


AlertSubscriber = Callable[[str, PersistenceError], None]


class AlertChannel:
    """
    Collects persistence alerts until the UI dismisses them.

    Each coordinator gets its own channel; subscribers are called for every
    reported alert.
    """

    def __init__(self):
        self._alerts: dict[str, PersistenceAlert] = {}
        self._subscribers: list[AlertSubscriber] = []

    @property
    def alerts(self) -> list[PersistenceAlert]:
        return list(self._alerts.values())

    def subscribe(self, subscriber: AlertSubscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def report(self, operation: str, error: PersistenceError) -> PersistenceAlert:
        alert = PersistenceAlert(operation=operation, message=str(error) or type(error).__name__, error=error)
        self._alerts[alert.id] = alert
        logger.warning("%s failed: %s", operation, alert.message)
        for subscriber in list(self._subscribers):
            try:
                subscriber(operation, error)
            except Exception:
                logger.exception("alert subscriber %r failed", subscriber)
        return alert

    def dismiss(self, alert_id: str) -> PersistenceAlert:
        """Remove an alert; raises KeyError for unknown ids."""
        return self._alerts.pop(alert_id)

    def clear(self) -> None:
        self._alerts.clear()


class NotificationPermission(str, Enum):
    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class CompletionAnnouncer:
    """Calls the platform hook once per completed countdown, if permitted."""

    title = "Time is up!"

    def __init__(
        self,
        hook: Optional[Callable[[str], None]] = None,
        permission: NotificationPermission = NotificationPermission.DEFAULT,
    ):
        self._hook = hook
        self.permission = permission

    @property
    def is_permission_granted(self) -> bool:
        return self.permission is NotificationPermission.GRANTED

    def announce_completion(self) -> bool:
        if not self.is_permission_granted or self._hook is None:
            logger.debug("completion not announced (permission %s)", self.permission.value)
            return False
        self._hook(self.title)
        return True
