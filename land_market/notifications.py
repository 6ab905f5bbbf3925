"""Notification Emitter — appends user-visible events to a user's inbox."""

from __future__ import annotations

import logging

from .exceptions import NotFound
from .models import Notification, NotificationType
from .store import RecordStore

logger = logging.getLogger(__name__)


class NotificationEmitter:
    def __init__(self, store: RecordStore):
        self.store = store

    def emit(
        self,
        user_id: str,
        type: NotificationType,
        message: str,
        land_id: str | None = None,
    ) -> Notification:
        """Append to the user's list. Order is preserved within one user."""
        notification = self.store.append_notification(user_id, type, message, land_id)
        logger.info("Notified user %s: %s", user_id, type.value)
        return notification

    def list_for(self, user_id: str) -> list[Notification]:
        """The user's notifications, newest first."""
        return list(reversed(self.store.list_notifications(user_id)))

    def unread_count(self, user_id: str) -> int:
        return sum(1 for n in self.store.list_notifications(user_id) if not n.is_read)

    def mark_read(self, user_id: str, notification_id: str) -> None:
        """Idempotent: marking an already-read notification is a no-op."""
        if not self.store.mark_notification_read(user_id, notification_id):
            raise NotFound("Notification", notification_id)
