# backend/servicebook/services/booking_service.py
"""
Booking orchestration.

create / update / confirm / start / complete / no-show / cancel / reschedule.

Services that require a consultation get a pre-booking consultation
scheduled right after the booking commits (see consultations.py).

Each operation is one DB transaction:
    lock → validate (slot, price, transition) → write booking + history → commit
Any exception rolls the transaction back. Notifications go out only after
commit and never fail the operation.

Creation and reschedule serialise on the capacity pool:
    - Redis lock booking:lock:{service_id}:{location_id|-} (across processes)
    - UPDATE of capacity_version on the location row (or the service row),
      a write lock held to commit on every database
and re-check capacity inside the lock, so two concurrent requests for the
last seat cannot both commit.
"""

import logging
import secrets
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional, Sequence

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..constants import BookingStatus, NotificationType
from ..errors import CapacityError, InvalidTransitionError, NotFoundError, ValidationError
from ..models.tables import (
    BookingAddOns,
    Bookings,
    BookingStatusHistory,
    ServiceLocations,
    Services,
)
from ..schemas.bookings import BookingCreate, BookingUpdate
from .booking_payment import net_paid
from .booking_state import apply_transition, initial_status
from .consultations import schedule_pre_booking_consultation
from .events import NotifiableRef, NotificationDispatcher
from .pricing import AddOnSelection, PriceBreakdown, percent_of, quote_booking
from .refund_policy import RefundPolicy
from .slots import calculate_available_slots
from .slots.calculator import Slot
from .slots.config import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 10  # seconds a holder may keep the lock
LOCK_WAIT = 5      # seconds a creator waits for it
REFERENCE_ATTEMPTS = 5

EDITABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
REQUIRED_CLIENT_FIELDS = ("client_name", "client_email")


# ── Create ───────────────────────────────────────────────────────────────


def create_booking(
    db: Session,
    data: BookingCreate,
    now: Optional[datetime] = None,
    redis: Optional[Redis] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> Bookings:
    """
    Place a booking on an available slot.

    Raises:
        NotFoundError: unknown/inactive service, location or package
        ValidationError: scheduled_at is not a slot, bad add-on selection
        CapacityError: the slot filled up before commit
        PricingError: price invariant violated
    """
    now = now or utcnow()
    scheduled_at = to_naive_utc(data.scheduled_at)
    selections = [AddOnSelection(a.add_on_id, a.quantity) for a in data.add_ons]

    with booking_lock(redis, data.service_id, data.service_location_id):
        try:
            _lock_capacity_pool(db, data.service_id, data.service_location_id)

            slot = find_bookable_slot(
                db,
                service_id=data.service_id,
                location_id=data.service_location_id,
                package_id=data.service_package_id,
                selections=selections,
                scheduled_at=scheduled_at,
                window_id=data.availability_window_id,
                now=now,
                redis=redis,
            )

            service = db.get(Services, data.service_id)
            location = db.get(ServiceLocations, data.service_location_id) if data.service_location_id else None
            package = _get_package(db, data.service_package_id)
            breakdown = quote_booking(service, location, selections, slot, package)

            booking = _build_booking(
                db,
                service=service,
                slot=slot,
                breakdown=breakdown,
                status=initial_status(service),
                user_id=data.user_id,
                location_id=data.service_location_id,
                package_id=data.service_package_id,
                client_name=data.client_name,
                client_email=data.client_email,
                client_phone=data.client_phone,
                notes=data.notes,
                special_requirements=data.special_requirements,
            )
            _record_status(db, booking, None, "Booking created")
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(booking)
    logger.info(
        f"Booking {booking.booking_reference} created: service={booking.service_id} "
        f"at {booking.scheduled_at.isoformat()} status={booking.status} total={booking.total_amount}"
    )

    notification = (
        NotificationType.CONFIRMATION
        if booking.status == BookingStatus.CONFIRMED
        else NotificationType.RECEIVED
    )
    _notify(notifier, booking, notification)

    if service.requires_consultation:
        schedule_pre_booking_consultation(db, booking, service, now=now, notifier=notifier)
    return booking


def find_bookable_slot(
    db: Session,
    service_id: int,
    location_id: Optional[int],
    package_id: Optional[int],
    selections: Sequence[AddOnSelection],
    scheduled_at: datetime,
    window_id: Optional[int],
    now: datetime,
    redis: Optional[Redis] = None,
    exclude_booking_id: Optional[int] = None,
) -> Slot:
    """
    Slot starting at scheduled_at with a free seat.

    Slots are generated without the capacity filter so a full slot can be
    told apart from a time that was never bookable.
    """
    slots = calculate_available_slots(
        db,
        service_id,
        scheduled_at.date(),
        scheduled_at.date(),
        location_id=location_id,
        add_ons=selections,
        package_id=package_id,
        now=now,
        redis=redis,
        exclude_booking_id=exclude_booking_id,
        enforce_capacity=False,
    )

    candidates = [
        s for s in slots
        if s.starts_at == scheduled_at and (window_id is None or s.window_id == window_id)
    ]
    if not candidates:
        raise ValidationError(
            f"{scheduled_at.isoformat()} is not an available slot for service {service_id}",
            "scheduled_at",
        )

    for slot in candidates:
        if slot.remaining > 0:
            return slot

    raise CapacityError(
        f"Slot {scheduled_at.isoformat()} is fully booked; choose another time",
        "scheduled_at",
    )


# ── Lifecycle ────────────────────────────────────────────────────────────


def get_booking(db: Session, booking_id: int) -> Bookings:
    booking = db.get(Bookings, booking_id)
    if not booking or booking.deleted_at is not None:
        raise NotFoundError(f"Booking {booking_id} not found", "booking_id")
    return booking


def update_booking(db: Session, booking_id: int, data: BookingUpdate) -> Bookings:
    """
    Edit client details and notes of a pending or confirmed booking.

    Time, service and price only change through reschedule.
    """
    changes = data.model_dump(exclude_unset=True)
    try:
        booking = _get_booking_for_update(db, booking_id)
        if booking.status not in EDITABLE_STATUSES:
            raise InvalidTransitionError(
                booking.status,
                booking.status,
                f"Booking is {booking.status} and can no longer be changed",
            )
        for field, value in changes.items():
            if value is None and field in REQUIRED_CLIENT_FIELDS:
                raise ValidationError(f"{field} cannot be cleared", field)
            setattr(booking, field, value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking.booking_reference} updated: {sorted(changes)}")
    return booking


def transition_booking(
    db: Session,
    booking_id: int,
    target: str,
    now: Optional[datetime] = None,
    reason: Optional[str] = None,
    notifier: Optional[NotificationDispatcher] = None,
    notification_type: Optional[str] = None,
) -> Bookings:
    now = now or utcnow()
    try:
        booking = _get_booking_for_update(db, booking_id)
        previous = apply_transition(booking, target, now, reason)
        _record_status(db, booking, previous, reason)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(f"Booking {booking.booking_reference}: {previous} → {target}")
    if notification_type:
        _notify(notifier, booking, notification_type)
    return booking


def confirm_booking(db: Session, booking_id: int, now=None, notifier=None) -> Bookings:
    return transition_booking(
        db, booking_id, BookingStatus.CONFIRMED, now,
        notifier=notifier, notification_type=NotificationType.CONFIRMATION,
    )


def start_booking(db: Session, booking_id: int, now=None) -> Bookings:
    return transition_booking(db, booking_id, BookingStatus.IN_PROGRESS, now)


def complete_booking(
    db: Session,
    booking_id: int,
    completion_notes: Optional[str] = None,
    now=None,
    notifier=None,
) -> Bookings:
    now = now or utcnow()
    try:
        booking = _get_booking_for_update(db, booking_id)
        previous = apply_transition(booking, BookingStatus.COMPLETED, now)
        booking.completion_notes = completion_notes
        _record_status(db, booking, previous, None)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(
        f"Booking {booking.booking_reference} completed "
        f"({booking.actual_duration_minutes} of {booking.duration_minutes} min)"
    )
    _notify(notifier, booking, NotificationType.COMPLETED)
    return booking


def mark_no_show(db: Session, booking_id: int, now=None, notifier=None) -> Bookings:
    return transition_booking(
        db, booking_id, BookingStatus.NO_SHOW, now,
        notifier=notifier, notification_type=NotificationType.NO_SHOW,
    )


def cancel_booking(
    db: Session,
    booking_id: int,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    refund_policy: Optional[RefundPolicy] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> tuple[Bookings, int]:
    """
    Cancel a booking and work out what is owed back.

    Returns:
        (booking, refund_amount). The refund itself is a separate payment.
    """
    now = now or utcnow()
    refund_policy = refund_policy or RefundPolicy.from_settings()

    try:
        booking = _get_booking_for_update(db, booking_id)
        previous = apply_transition(booking, BookingStatus.CANCELLED, now, reason)
        booking.refund_percentage = refund_policy.evaluate(booking, now)
        refund_amount = percent_of(net_paid(booking), booking.refund_percentage)
        _record_status(db, booking, previous, reason)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(booking)
    logger.info(
        f"Booking {booking.booking_reference} cancelled: refund {booking.refund_percentage}% "
        f"= {refund_amount}"
    )
    _notify(notifier, booking, NotificationType.CANCELLED, {"refund_amount": refund_amount})
    return booking, refund_amount


def reschedule_booking(
    db: Session,
    booking_id: int,
    scheduled_at: datetime,
    window_id: Optional[int] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
    redis: Optional[Redis] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> Bookings:
    """
    Move a confirmed booking to another slot.

    A new confirmed booking is created (same service, location, package and
    add-ons, re-priced for the new slot); the original becomes rescheduled.
    The capacity check ignores the original, so moving within an
    overlapping slot does not count against itself.
    """
    now = now or utcnow()
    scheduled_at = to_naive_utc(scheduled_at)
    original = get_booking(db, booking_id)
    service_id, location_id = original.service_id, original.service_location_id

    with booking_lock(redis, service_id, location_id):
        try:
            _lock_capacity_pool(db, service_id, location_id)
            original = _get_booking_for_update(db, booking_id)

            previous = apply_transition(original, BookingStatus.RESCHEDULED, now, reason)

            selections = [
                AddOnSelection(a.service_add_on_id, a.quantity)
                for a in original.add_ons
                if a.service_add_on_id is not None
            ]
            slot = find_bookable_slot(
                db,
                service_id=service_id,
                location_id=location_id,
                package_id=original.service_package_id,
                selections=selections,
                scheduled_at=scheduled_at,
                window_id=window_id,
                now=now,
                redis=redis,
                exclude_booking_id=original.id,
            )

            service = db.get(Services, service_id)
            location = db.get(ServiceLocations, location_id) if location_id else None
            package = _get_package(db, original.service_package_id)
            breakdown = quote_booking(service, location, selections, slot, package)

            booking = _build_booking(
                db,
                service=service,
                slot=slot,
                breakdown=breakdown,
                status=BookingStatus.CONFIRMED,
                user_id=original.user_id,
                location_id=location_id,
                package_id=original.service_package_id,
                client_name=original.client_name,
                client_email=original.client_email,
                client_phone=original.client_phone,
                notes=original.notes,
                special_requirements=original.special_requirements,
            )
            booking.payment_status = original.payment_status
            booking.rescheduled_from_booking_id = original.id

            _record_status(db, original, previous, reason or f"Rescheduled to {booking.booking_reference}")
            _record_status(db, booking, None, f"Rescheduled from {original.booking_reference}")
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.refresh(booking)
    logger.info(
        f"Booking {original.booking_reference} rescheduled → {booking.booking_reference} "
        f"at {booking.scheduled_at.isoformat()}"
    )
    _notify(notifier, booking, NotificationType.RESCHEDULED, {"previous_booking_id": original.id})
    return booking


# ── Locking ──────────────────────────────────────────────────────────────


@contextmanager
def booking_lock(redis: Optional[Redis], service_id: int, location_id: Optional[int]):
    """
    Cross-process lock on a (service, location) capacity pool.

    No Redis or Redis down → the capacity_version write lock alone
    serialises creators.
    """
    if redis is None:
        yield
        return

    loc = location_id if location_id is not None else "-"
    lock = redis.lock(f"booking:lock:{service_id}:{loc}", timeout=LOCK_TIMEOUT, blocking_timeout=LOCK_WAIT)

    acquired = None
    try:
        acquired = lock.acquire()
    except RedisError as e:
        logger.warning(f"Booking lock unavailable for service={service_id} location={loc}: {e}")

    if acquired is False:
        raise CapacityError("Another booking for this time is being placed; please retry", "scheduled_at")

    try:
        yield
    finally:
        if acquired:
            try:
                lock.release()
            except RedisError as e:
                logger.warning(f"Booking lock release failed for service={service_id} location={loc}: {e}")


def _lock_capacity_pool(db: Session, service_id: int, location_id: Optional[int]) -> None:
    """
    Write lock on the location (or service) row that owns the capacity pool.

    Bumping capacity_version is a real UPDATE: a row lock on PostgreSQL and
    the database write lock on SQLite, where FOR UPDATE is ignored. Held
    until commit/rollback, so the capacity re-check after it sees every
    booking committed before.
    """
    if location_id is not None:
        table, row_id, field = ServiceLocations, location_id, "service_location_id"
    else:
        table, row_id, field = Services, service_id, "service_id"

    try:
        updated = (
            db.query(table)
            .filter(table.id == row_id)
            .update({table.capacity_version: table.capacity_version + 1}, synchronize_session=False)
        )
    except OperationalError as e:
        logger.warning(f"Capacity lock timed out for service={service_id} location={location_id}: {e}")
        raise CapacityError("Another booking for this time is being placed; please retry", "scheduled_at") from e

    if not updated:
        raise NotFoundError(f"Cannot book: {field} not found", field)


def _get_booking_for_update(db: Session, booking_id: int) -> Bookings:
    booking = (
        db.query(Bookings)
        .filter(Bookings.id == booking_id, Bookings.deleted_at.is_(None))
        .with_for_update()
        .first()
    )
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found", "booking_id")
    return booking


# ── Helpers ──────────────────────────────────────────────────────────────


def generate_booking_reference(db: Session) -> str:
    """"BK" + 8 uppercase hex chars, unique among bookings."""
    for _ in range(REFERENCE_ATTEMPTS):
        reference = "BK" + secrets.token_hex(4).upper()
        exists = db.query(Bookings.id).filter(Bookings.booking_reference == reference).first()
        if not exists:
            return reference
    raise RuntimeError("Could not generate a unique booking reference")


def _get_package(db: Session, package_id: Optional[int]):
    if package_id is None:
        return None
    from .slots.availability import get_bookable_package

    return get_bookable_package(db, package_id)


def _build_booking(
    db: Session,
    service,
    slot: Slot,
    breakdown: PriceBreakdown,
    status: str,
    user_id: int,
    location_id: Optional[int],
    package_id: Optional[int],
    **client_fields,
) -> Bookings:
    duration = slot_duration_minutes(slot)
    booking = Bookings(
        user_id=user_id,
        service_id=service.id,
        service_location_id=location_id,
        service_package_id=package_id,
        availability_window_id=slot.window_id,
        booking_reference=generate_booking_reference(db),
        scheduled_at=slot.starts_at,
        ends_at=slot.starts_at + timedelta(minutes=duration),
        duration_minutes=duration,
        base_price=breakdown.base_price,
        addons_total=breakdown.addons_total,
        location_surcharge=breakdown.location_surcharge,
        window_modifier=breakdown.window_modifier,
        total_amount=breakdown.total_amount,
        deposit_amount=breakdown.deposit_amount,
        remaining_amount=breakdown.remaining_amount,
        status=status,
        **client_fields,
    )
    db.add(booking)
    db.flush()

    for line in breakdown.add_ons:
        db.add(BookingAddOns(
            booking_id=booking.id,
            service_add_on_id=line.add_on_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line.total_price,
            duration_minutes=line.duration_minutes,
        ))

    return booking


def slot_duration_minutes(slot: Slot) -> int:
    return int((slot.ends_at - slot.starts_at).total_seconds() // 60)


def _record_status(db: Session, booking: Bookings, previous: Optional[str], reason: Optional[str]) -> None:
    db.add(BookingStatusHistory(
        booking_id=booking.id,
        previous_status=previous,
        new_status=booking.status,
        reason=reason,
    ))


def _notify(
    notifier: Optional[NotificationDispatcher],
    booking: Bookings,
    notification_type: str,
    payload: Optional[dict] = None,
) -> None:
    if notifier is None:
        return
    try:
        notifier.dispatch(
            NotifiableRef.booking(booking.id),
            notification_type,
            {"booking_reference": booking.booking_reference, **(payload or {})},
        )
    except Exception:
        logger.exception(f"Notification {notification_type} failed for booking {booking.booking_reference}")
