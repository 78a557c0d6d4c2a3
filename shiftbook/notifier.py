"""
Notification delivery.

The store only talks to the ``Notifier`` protocol; the device's real
notification service lives outside this package. ``LocalNotifier`` keeps
pending notifications in memory and is what the app uses when nothing
else is wired in.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def request_permission(self) -> bool: ...

    async def schedule(
        self, notification_id: int, fire_at: datetime, title: str, body: str
    ) -> None: ...

    async def cancel(self, notification_ids: Iterable[int]) -> None: ...


class LocalNotifier:
    """In-process notifier that records what would be shown and when."""

    def __init__(self, grant_permission: bool = True) -> None:
        self.grant_permission = grant_permission
        self.pending: dict[int, tuple[datetime, str, str]] = {}

    async def request_permission(self) -> bool:
        logger.info(
            f"Notification permission {'granted' if self.grant_permission else 'denied'}"
        )
        return self.grant_permission

    async def schedule(
        self, notification_id: int, fire_at: datetime, title: str, body: str
    ) -> None:
        self.pending[notification_id] = (fire_at, title, body)
        logger.info(f"Scheduled notification {notification_id} at {fire_at}: {title}")

    async def cancel(self, notification_ids: Iterable[int]) -> None:
        for notification_id in notification_ids:
            if self.pending.pop(notification_id, None) is not None:
                logger.info(f"Cancelled notification {notification_id}")
