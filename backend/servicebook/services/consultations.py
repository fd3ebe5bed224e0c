# backend/servicebook/services/consultations.py
"""
Consultation bookings.

Short pre-/post-booking calls with their own lifecycle:

    scheduled → in_progress → completed
    scheduled → cancelled   (at least cancel_notice_hours before start)
    scheduled → no_show     (after start)

Scheduling rules:
✓ in the future, at least max(service, consultation) min advance hours ahead
✓ weekdays only, start within business hours
✓ no overlap with another scheduled / in-progress consultation of the service
✓ reschedule re-runs the same checks, ignoring the consultation itself
✓ services with requires_consultation get a pre-booking consultation
  automatically when a booking is placed
✗ no slot grid and no capacity pools (that is the booking engine's job)

Fee: unpaid → paid through the payment gateway; a paid fee is refunded
through the gateway when the consultation is cancelled.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..constants import (
    ConsultationFormat,
    ConsultationPaymentStatus,
    ConsultationStatus,
    ConsultationType,
    NotificationType,
)
from ..errors import (
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    ServicebookError,
    ValidationError,
)
from ..models.tables import Bookings, ConsultationBookings
from ..schemas.consultations import ConsultationCreate, ConsultationUpdate
from .events import NotifiableRef, NotificationDispatcher
from .payment_gateway import PaymentGateway
from .slots.availability import get_bookable_service
from .slots.config import time_str_to_minutes, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

REFERENCE_ATTEMPTS = 5

ACTIVE = (ConsultationStatus.SCHEDULED, ConsultationStatus.IN_PROGRESS)

TRANSITIONS: dict[str, frozenset[str]] = {
    ConsultationStatus.SCHEDULED: frozenset({
        ConsultationStatus.IN_PROGRESS,
        ConsultationStatus.CANCELLED,
        ConsultationStatus.NO_SHOW,
    }),
    ConsultationStatus.IN_PROGRESS: frozenset({ConsultationStatus.COMPLETED}),
}

EDITABLE_FIELDS = ("type", "format", "client_name", "client_email", "client_phone", "consultation_notes")


@dataclass(frozen=True)
class ConsultationRules:
    day_start_minutes: int = 9 * 60
    day_end_minutes: int = 18 * 60
    min_advance_hours: int = 2
    start_grace_minutes: int = 15
    cancel_notice_hours: int = 2
    auto_start_minutes: int = 10 * 60
    auto_min_days: int = 1

    @classmethod
    def from_settings(cls) -> "ConsultationRules":
        return cls(
            day_start_minutes=time_str_to_minutes(settings.consultation_day_start),
            day_end_minutes=time_str_to_minutes(settings.consultation_day_end),
            min_advance_hours=settings.consultation_min_advance_hours,
            start_grace_minutes=settings.consultation_start_grace_minutes,
            cancel_notice_hours=settings.consultation_cancel_notice_hours,
            auto_start_minutes=time_str_to_minutes(settings.consultation_auto_time),
            auto_min_days=settings.consultation_auto_min_days,
        )


def initial_payment_status(fee: int, main_booking, fee_waived_if_booking: bool) -> str:
    if fee <= 0:
        return ConsultationPaymentStatus.FREE
    if main_booking is not None and fee_waived_if_booking:
        return ConsultationPaymentStatus.WAIVED
    return ConsultationPaymentStatus.UNPAID


def check_schedule(
    scheduled_at: datetime,
    now: datetime,
    rules: ConsultationRules,
    service_min_advance_hours: Optional[int] = None,
) -> None:
    if scheduled_at <= now:
        raise ValidationError("Cannot schedule a consultation in the past", "scheduled_at")

    min_hours = max(rules.min_advance_hours, service_min_advance_hours or 0)
    if scheduled_at < now + timedelta(hours=min_hours):
        raise ValidationError(
            f"Consultations must be scheduled at least {min_hours} hours in advance",
            "scheduled_at",
        )

    if scheduled_at.weekday() >= 5:
        raise ValidationError("Consultations are only available on weekdays", "scheduled_at")

    start_minutes = scheduled_at.hour * 60 + scheduled_at.minute
    if not rules.day_start_minutes <= start_minutes < rules.day_end_minutes:
        raise ValidationError("Consultations are only available during business hours", "scheduled_at")


def check_overlap(
    db: Session,
    service_id: int,
    scheduled_at: datetime,
    ends_at: datetime,
    exclude_id: Optional[int] = None,
) -> None:
    query = db.query(ConsultationBookings.id).filter(
        ConsultationBookings.service_id == service_id,
        ConsultationBookings.status.in_(ACTIVE),
        ConsultationBookings.scheduled_at < ends_at,
        ConsultationBookings.ends_at > scheduled_at,
    )
    if exclude_id is not None:
        query = query.filter(ConsultationBookings.id != exclude_id)
    if query.first():
        raise ValidationError("Time conflicts with an existing consultation", "scheduled_at")


def pre_booking_time(booking_start: datetime, now: datetime, lead_days: int, rules: ConsultationRules) -> datetime:
    """
    lead_days before the booking, but no sooner than auto_min_days from now;
    weekends roll forward to Monday; time of day is auto_start_minutes.
    """
    day = max(booking_start - timedelta(days=lead_days), now + timedelta(days=rules.auto_min_days)).date()
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return datetime.combine(day, time()) + timedelta(minutes=rules.auto_start_minutes)


# ── Create / update ──────────────────────────────────────────────────────


def create_consultation(
    db: Session,
    data: ConsultationCreate,
    now: Optional[datetime] = None,
    rules: Optional[ConsultationRules] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> ConsultationBookings:
    now = now or utcnow()
    rules = rules or ConsultationRules.from_settings()
    scheduled_at = to_naive_utc(data.scheduled_at)
    ends_at = scheduled_at + timedelta(minutes=data.duration_minutes)

    try:
        service = get_bookable_service(db, data.service_id)
        check_schedule(scheduled_at, now, rules, service.min_advance_booking_hours)

        main_booking = None
        if data.main_booking_id is not None:
            main_booking = db.get(Bookings, data.main_booking_id)
            if not main_booking or main_booking.service_id != service.id:
                raise ValidationError(
                    f"Booking {data.main_booking_id} is not a booking of service {service.id}",
                    "main_booking_id",
                )

        check_overlap(db, service.id, scheduled_at, ends_at)

        consultation = ConsultationBookings(
            user_id=data.user_id,
            service_id=service.id,
            main_booking_id=data.main_booking_id,
            consultation_reference=generate_consultation_reference(db),
            scheduled_at=scheduled_at,
            ends_at=ends_at,
            duration_minutes=data.duration_minutes,
            status=ConsultationStatus.SCHEDULED,
            type=data.type,
            format=data.format,
            client_name=data.client_name,
            client_email=data.client_email,
            client_phone=data.client_phone,
            consultation_notes=data.consultation_notes,
            consultation_fee=data.consultation_fee,
            fee_waived_if_booking=data.fee_waived_if_booking,
            payment_status=initial_payment_status(
                data.consultation_fee, main_booking, data.fee_waived_if_booking
            ),
        )
        db.add(consultation)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(consultation)
    logger.info(
        f"Consultation {consultation.consultation_reference} scheduled for service={service.id} "
        f"at {scheduled_at.isoformat()} ({consultation.payment_status})"
    )
    _notify(notifier, consultation, NotificationType.CONFIRMATION)
    return consultation


def schedule_pre_booking_consultation(
    db: Session,
    booking: Bookings,
    service,
    now: Optional[datetime] = None,
    rules: Optional[ConsultationRules] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> Optional[ConsultationBookings]:
    """
    Free pre-booking consultation ahead of a booking that needs one.

    The booking is already committed; if no valid time is found the booking
    stands and the failure is logged.
    """
    now = now or utcnow()
    rules = rules or ConsultationRules.from_settings()
    scheduled_at = pre_booking_time(booking.scheduled_at, now, service.consultation_lead_days, rules)

    if scheduled_at + timedelta(minutes=service.consultation_duration_minutes) > booking.scheduled_at:
        logger.warning(
            f"No pre-booking consultation for {booking.booking_reference}: "
            f"{scheduled_at.isoformat()} would not finish before the booking"
        )
        return None

    data = ConsultationCreate(
        user_id=booking.user_id,
        service_id=service.id,
        main_booking_id=booking.id,
        scheduled_at=scheduled_at,
        duration_minutes=service.consultation_duration_minutes,
        type=ConsultationType.PRE_BOOKING,
        format=ConsultationFormat.PHONE,
        client_name=booking.client_name,
        client_email=booking.client_email,
        client_phone=booking.client_phone,
        consultation_notes=f"Pre-booking consultation for {service.name} ({booking.booking_reference})",
    )
    try:
        return create_consultation(db, data, now=now, rules=rules, notifier=notifier)
    except ServicebookError as e:
        logger.warning(f"No pre-booking consultation for {booking.booking_reference}: {e.message}")
        return None


def update_consultation(
    db: Session,
    consultation_id: int,
    data: ConsultationUpdate,
    now: Optional[datetime] = None,
    rules: Optional[ConsultationRules] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> ConsultationBookings:
    """Edit a scheduled consultation; a new time is checked like a new consultation."""
    now = now or utcnow()
    rules = rules or ConsultationRules.from_settings()
    changes = data.model_dump(exclude_unset=True)
    rescheduled = False

    try:
        consultation = get_consultation(db, consultation_id)
        if consultation.status != ConsultationStatus.SCHEDULED:
            raise InvalidTransitionError(
                consultation.status,
                consultation.status,
                f"Only scheduled consultations can be changed (status is {consultation.status})",
            )

        new_start = changes.pop("scheduled_at", None)
        if new_start is not None:
            new_start = to_naive_utc(new_start)
            if new_start != consultation.scheduled_at:
                new_end = new_start + timedelta(minutes=consultation.duration_minutes)
                check_schedule(new_start, now, rules, consultation.service.min_advance_booking_hours)
                check_overlap(db, consultation.service_id, new_start, new_end, exclude_id=consultation.id)
                consultation.scheduled_at = new_start
                consultation.ends_at = new_end
                rescheduled = True

        for field in EDITABLE_FIELDS:
            if field in changes and changes[field] is not None:
                setattr(consultation, field, changes[field])
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(consultation)
    logger.info(
        f"Consultation {consultation.consultation_reference} updated: {sorted(changes)}"
        + (f", moved to {consultation.scheduled_at.isoformat()}" if rescheduled else "")
    )
    if rescheduled:
        _notify(notifier, consultation, NotificationType.RESCHEDULED)
    return consultation


def get_consultation(db: Session, consultation_id: int) -> ConsultationBookings:
    consultation = db.get(ConsultationBookings, consultation_id)
    if not consultation:
        raise NotFoundError(f"Consultation {consultation_id} not found", "consultation_id")
    return consultation


# ── Fee ──────────────────────────────────────────────────────────────────


def pay_consultation_fee(
    db: Session,
    consultation_id: int,
    gateway: PaymentGateway,
    notifier: Optional[NotificationDispatcher] = None,
) -> ConsultationBookings:
    """
    Charge the consultation fee.

    Raises:
        InvalidTransitionError: fee is not unpaid, or consultation is over
        PaymentGatewayError: gateway unreachable or declined the charge
    """
    try:
        consultation = get_consultation(db, consultation_id)
        if consultation.payment_status != ConsultationPaymentStatus.UNPAID:
            raise InvalidTransitionError(consultation.payment_status, ConsultationPaymentStatus.PAID)
        if consultation.status not in ACTIVE:
            raise InvalidTransitionError(
                consultation.payment_status,
                ConsultationPaymentStatus.PAID,
                f"Cannot take a fee for a {consultation.status} consultation",
            )

        result = gateway.charge(
            consultation.consultation_fee,
            consultation.main_booking_id,
            reference=consultation.consultation_reference,
        )
        if not result.succeeded:
            raise PaymentGatewayError(
                f"Consultation fee charge {result.transaction_reference} ended {result.status}"
            )

        consultation.payment_status = ConsultationPaymentStatus.PAID
        consultation.payment_reference = result.transaction_reference
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(consultation)
    logger.info(
        f"Consultation {consultation.consultation_reference}: fee {consultation.consultation_fee} "
        f"paid via {gateway.name} ({consultation.payment_reference})"
    )
    _notify(notifier, consultation, NotificationType.PAYMENT_RECEIVED)
    return consultation


# ── Lifecycle ────────────────────────────────────────────────────────────


def start_consultation(db, consultation_id: int, now=None, rules=None) -> ConsultationBookings:
    now = now or utcnow()
    rules = rules or ConsultationRules.from_settings()

    def guard(c):
        if now < c.scheduled_at - timedelta(minutes=rules.start_grace_minutes):
            raise InvalidTransitionError(
                c.status,
                ConsultationStatus.IN_PROGRESS,
                f"Consultation can only be started within {rules.start_grace_minutes} minutes of its start",
            )

    def apply(c):
        c.started_at = now

    return _transition(db, consultation_id, ConsultationStatus.IN_PROGRESS, guard, apply)


def complete_consultation(db, consultation_id: int, completion_notes=None, now=None, notifier=None):
    now = now or utcnow()

    def apply(c):
        c.completed_at = now
        c.completion_notes = completion_notes

    consultation = _transition(db, consultation_id, ConsultationStatus.COMPLETED, None, apply)
    _notify(notifier, consultation, NotificationType.COMPLETED)
    return consultation


def cancel_consultation(
    db,
    consultation_id: int,
    reason=None,
    now=None,
    rules=None,
    notifier=None,
    gateway: Optional[PaymentGateway] = None,
):
    """A paid fee is refunded through the gateway before the cancel commits."""
    now = now or utcnow()
    rules = rules or ConsultationRules.from_settings()

    def guard(c):
        if c.scheduled_at < now + timedelta(hours=rules.cancel_notice_hours):
            raise InvalidTransitionError(
                c.status,
                ConsultationStatus.CANCELLED,
                f"Consultations must be cancelled at least {rules.cancel_notice_hours} hours in advance",
            )
        if c.payment_status == ConsultationPaymentStatus.PAID and gateway is None:
            raise PaymentGatewayError(f"A payment gateway is needed to refund consultation {c.id}")

    def apply(c):
        c.cancelled_at = now
        c.cancellation_reason = reason
        if c.payment_status == ConsultationPaymentStatus.PAID:
            result = gateway.refund(
                c.consultation_fee,
                c.main_booking_id,
                original_reference=c.payment_reference,
                reference=c.consultation_reference,
            )
            if not result.succeeded:
                raise PaymentGatewayError(
                    f"Consultation fee refund {result.transaction_reference} ended {result.status}"
                )
            c.payment_status = ConsultationPaymentStatus.REFUNDED

    consultation = _transition(db, consultation_id, ConsultationStatus.CANCELLED, guard, apply)
    _notify(notifier, consultation, NotificationType.CANCELLED)
    return consultation


def mark_consultation_no_show(db, consultation_id: int, now=None) -> ConsultationBookings:
    now = now or utcnow()

    def guard(c):
        if now < c.scheduled_at:
            raise InvalidTransitionError(
                c.status, ConsultationStatus.NO_SHOW, "No-show can only be recorded after the scheduled start"
            )

    return _transition(db, consultation_id, ConsultationStatus.NO_SHOW, guard, None)


# ── Helpers ──────────────────────────────────────────────────────────────


def generate_consultation_reference(db: Session) -> str:
    """"CN" + 8 uppercase hex chars."""
    for _ in range(REFERENCE_ATTEMPTS):
        reference = "CN" + secrets.token_hex(4).upper()
        if not db.query(ConsultationBookings.id).filter(
            ConsultationBookings.consultation_reference == reference
        ).first():
            return reference
    raise RuntimeError("Could not generate a unique consultation reference")


def _transition(db: Session, consultation_id: int, target: str, guard, apply) -> ConsultationBookings:
    try:
        consultation = get_consultation(db, consultation_id)
        current = consultation.status
        if current in ConsultationStatus.TERMINAL:
            raise InvalidTransitionError(current, target, f"Consultation is already {current}")
        if target not in TRANSITIONS.get(current, frozenset()):
            raise InvalidTransitionError(current, target)
        if guard is not None:
            guard(consultation)

        consultation.status = target
        if apply is not None:
            apply(consultation)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(consultation)
    logger.info(f"Consultation {consultation.consultation_reference}: {current} → {target}")
    return consultation


def _notify(notifier, consultation: ConsultationBookings, notification_type: str) -> None:
    if notifier is None:
        return
    try:
        notifier.dispatch(
            NotifiableRef.consultation(consultation.id),
            notification_type,
            {"consultation_reference": consultation.consultation_reference},
        )
    except Exception:
        logger.exception(f"Notification {notification_type} failed for consultation {consultation.id}")
