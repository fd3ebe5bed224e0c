"""
Booking and consultation reminder checker.

Periodically checks for upcoming bookings and scheduled consultations and
dispatches reminder events (reminder_24h, reminder_2h by default) to notify
clients before their appointment.

Offsets come from settings.reminder_offsets_minutes. Each booking or
consultation gets the reminder of the smallest offset that still covers the
time left, once.

Runs as an asyncio task in backend lifespan.
Uses synchronous DB and Redis (via asyncio.to_thread).
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from redis import Redis
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import BookingStatus, ConsultationStatus
from ..models.tables import Bookings, ConsultationBookings
from .events import NotifiableRef, NotificationConfig, NotificationDispatcher
from .slots.config import utcnow

logger = logging.getLogger(__name__)

SENT_KEY_TTL = 2 * 86400  # longer than the largest default offset


def reminder_type(offset_minutes: int) -> str:
    if offset_minutes % 60 == 0:
        return f"reminder_{offset_minutes // 60}h"
    return f"reminder_{offset_minutes}m"


def due_reminder(scheduled_at: datetime, now: datetime, offsets: Sequence[int]) -> Optional[int]:
    """Smallest offset whose window [start - offset, start) contains now."""
    if now >= scheduled_at:
        return None
    minutes_left = (scheduled_at - now).total_seconds() / 60
    covering = [o for o in offsets if o >= minutes_left]
    return min(covering) if covering else None


async def reminder_checker_loop() -> None:
    """
    Periodic loop that checks for bookings needing a reminder.

    For each pending/confirmed booking inside a reminder window:
    - Dispatch reminder event to the events queue
    - Mark as sent in Redis to avoid duplicates
    """
    from ..database import SessionLocal
    from ..redis_client import redis_client

    logger.info("reminder_checker_loop started")
    notifier = NotificationDispatcher(redis_client, NotificationConfig.from_settings())

    try:
        while True:
            try:
                await asyncio.to_thread(_check_with_session, SessionLocal, redis_client, notifier)
            except asyncio.CancelledError:
                logger.info("reminder_checker_loop cancelled")
                raise
            except Exception:
                logger.exception("reminder_checker_loop error")

            await asyncio.sleep(settings.reminder_check_interval_seconds)
    except asyncio.CancelledError:
        pass


def _check_with_session(session_factory, redis: Redis, notifier: NotificationDispatcher) -> int:
    db = session_factory()
    try:
        return check_upcoming_bookings(db, redis, notifier) + check_upcoming_consultations(db, redis, notifier)
    finally:
        db.close()


def check_upcoming_bookings(
    db: Session,
    redis: Redis,
    notifier: NotificationDispatcher,
    now: Optional[datetime] = None,
    offsets: Optional[Sequence[int]] = None,
) -> int:
    """
    Dispatch due booking reminders (synchronous).

    Returns:
        Number of reminders dispatched.
    """
    now = now or utcnow()
    offsets = list(offsets or notifier.config.reminder_offsets_minutes)
    if not offsets:
        return 0

    bookings = (
        db.query(Bookings)
        .filter(
            Bookings.status.in_([BookingStatus.PENDING, BookingStatus.CONFIRMED]),
            Bookings.deleted_at.is_(None),
            Bookings.scheduled_at > now,
            Bookings.scheduled_at <= now + timedelta(minutes=max(offsets)),
        )
        .all()
    )

    sent = 0
    for booking in bookings:
        try:
            if _process_single(
                NotifiableRef.booking(booking.id),
                "bkremind",
                booking.scheduled_at,
                {"booking_reference": booking.booking_reference},
                redis, notifier, now, offsets,
            ):
                sent += 1
        except Exception:
            logger.exception(f"Error processing booking {booking.id} for reminder")
    return sent


def check_upcoming_consultations(
    db: Session,
    redis: Redis,
    notifier: NotificationDispatcher,
    now: Optional[datetime] = None,
    offsets: Optional[Sequence[int]] = None,
) -> int:
    """Same as check_upcoming_bookings, for scheduled consultations."""
    now = now or utcnow()
    offsets = list(offsets or notifier.config.reminder_offsets_minutes)
    if not offsets:
        return 0

    consultations = (
        db.query(ConsultationBookings)
        .filter(
            ConsultationBookings.status == ConsultationStatus.SCHEDULED,
            ConsultationBookings.scheduled_at > now,
            ConsultationBookings.scheduled_at <= now + timedelta(minutes=max(offsets)),
        )
        .all()
    )

    sent = 0
    for consultation in consultations:
        try:
            if _process_single(
                NotifiableRef.consultation(consultation.id),
                "cnremind",
                consultation.scheduled_at,
                {"consultation_reference": consultation.consultation_reference},
                redis, notifier, now, offsets,
            ):
                sent += 1
        except Exception:
            logger.exception(f"Error processing consultation {consultation.id} for reminder")
    return sent


def _process_single(
    ref: NotifiableRef,
    key_prefix: str,
    scheduled_at: datetime,
    payload: dict,
    redis: Redis,
    notifier: NotificationDispatcher,
    now: datetime,
    offsets: Sequence[int],
) -> bool:
    """Dispatch the due reminder of one booking or consultation if not sent yet."""
    offset = due_reminder(scheduled_at, now, offsets)
    if offset is None:
        return False

    notification_type = reminder_type(offset)
    sent_key = f"{key_prefix}:sent:{ref.id}:{notification_type}"
    if redis.exists(sent_key):
        return False

    if not notifier.dispatch(ref, notification_type, payload):
        return False

    redis.setex(sent_key, SENT_KEY_TTL, "1")
    logger.info(
        f"{notification_type} dispatched for {ref.kind}={ref.id} "
        f"(starts at {scheduled_at.strftime('%Y-%m-%d %H:%M')})"
    )
    return True
