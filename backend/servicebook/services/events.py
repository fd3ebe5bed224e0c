"""
backend/servicebook/services/events.py

Notification dispatcher: pushes events to a Redis queue for the
notification workers (email/SMS delivery lives there, not here).

Fire-and-forget: a failed push is logged and never raised, so it can
never roll back a committed booking.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from redis import Redis

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotifiableRef:
    """What a notification is about: {"kind": "booking", "id": 42}."""
    kind: str
    id: int

    @classmethod
    def booking(cls, booking_id: int) -> "NotifiableRef":
        return cls("booking", booking_id)

    @classmethod
    def consultation(cls, consultation_id: int) -> "NotifiableRef":
        return cls("consultation", consultation_id)


@dataclass(frozen=True)
class NotificationConfig:
    queue: str = "events:p2p"
    enabled: bool = True
    reminder_offsets_minutes: tuple[int, ...] = field(default=(1440, 120))

    @classmethod
    def from_settings(cls) -> "NotificationConfig":
        return cls(
            queue=settings.events_queue,
            reminder_offsets_minutes=tuple(settings.reminder_offsets_minutes),
        )


class NotificationDispatcher:
    def __init__(self, redis: Optional[Redis], config: NotificationConfig):
        self.redis = redis
        self.config = config

    def dispatch(
        self,
        notifiable: NotifiableRef,
        notification_type: str,
        payload: Optional[dict] = None,
    ) -> bool:
        """
        Push one event to the queue.

        Returns:
            True if queued, False if disabled or the push failed.
        """
        if not self.config.enabled or self.redis is None:
            return False

        event = {
            "type": notification_type,
            "notifiable": {"kind": notifiable.kind, "id": notifiable.id},
            **(payload or {}),
            "ts": int(time.time()),
        }
        try:
            self.redis.rpush(self.config.queue, json.dumps(event))
            logger.info(f"Event emitted: {notification_type} {notifiable.kind}={notifiable.id} → {self.config.queue}")
            return True
        except Exception as e:
            logger.error(f"Failed to emit event {notification_type} for {notifiable.kind}={notifiable.id}: {e}")
            return False


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency."""
    from ..redis_client import redis_client

    return NotificationDispatcher(redis_client, NotificationConfig.from_settings())
