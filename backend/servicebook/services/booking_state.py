# backend/servicebook/services/booking_state.py
"""
Booking lifecycle and payment status state machines.

Booking:
    pending → confirmed → in_progress → completed
    pending | confirmed → cancelled   (before ends_at)
    confirmed → no_show               (after scheduled_at, never started)
    confirmed → rescheduled           (a new booking replaces this one)

    Terminal: completed, cancelled, no_show, rescheduled.

Payment (loosely coupled to the booking status):
    pending → deposit_paid → fully_paid
    pending → fully_paid                (only when no deposit applies)
    deposit_paid | fully_paid → partially_refunded | refunded
    partially_refunded → partially_refunded | refunded
"""

from datetime import datetime
from typing import Optional

from ..constants import BookingStatus, PaymentStatus
from ..errors import InvalidTransitionError


BOOKING_TRANSITIONS: dict[str, frozenset[str]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.IN_PROGRESS,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
        BookingStatus.RESCHEDULED,
    }),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
    BookingStatus.RESCHEDULED: frozenset(),
}

PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.DEPOSIT_PAID, PaymentStatus.FULLY_PAID}),
    PaymentStatus.DEPOSIT_PAID: frozenset({
        PaymentStatus.FULLY_PAID,
        PaymentStatus.PARTIALLY_REFUNDED,
        PaymentStatus.REFUNDED,
    }),
    PaymentStatus.FULLY_PAID: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.PARTIALLY_REFUNDED: frozenset({PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}


def initial_status(service) -> str:
    """Auto-confirm applies unless the service needs a consultation first."""
    if service.auto_confirm_bookings and not service.requires_consultation:
        return BookingStatus.CONFIRMED
    return BookingStatus.PENDING


def is_terminal(status: str) -> bool:
    return status in BookingStatus.TERMINAL


def can_transition(current: str, target: str) -> bool:
    return target in BOOKING_TRANSITIONS.get(current, frozenset())


def check_transition(booking, target: str, now: datetime) -> None:
    """
    Validate a booking status change, including time guards.

    Raises:
        InvalidTransitionError: terminal source, skipped state or failed guard
    """
    current = booking.status

    if target not in BookingStatus.ALL:
        raise InvalidTransitionError(current, target, f"Unknown booking status '{target}'")

    if is_terminal(current):
        raise InvalidTransitionError(current, target, f"Booking is already {current}; no further changes allowed")

    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)

    if target == BookingStatus.CANCELLED and now >= booking.ends_at:
        raise InvalidTransitionError(current, target, "Booking cannot be cancelled after it has ended")

    if target == BookingStatus.NO_SHOW:
        if now < booking.scheduled_at:
            raise InvalidTransitionError(current, target, "No-show can only be recorded after the scheduled start")
        if booking.started_at is not None:
            raise InvalidTransitionError(current, target, "Booking was started; it cannot be a no-show")


def apply_transition(
    booking,
    target: str,
    now: datetime,
    reason: Optional[str] = None,
) -> str:
    """
    Move booking to target and stamp the matching timestamps.

    Returns:
        Previous status.
    """
    check_transition(booking, target, now)
    previous = booking.status
    booking.status = target

    if target == BookingStatus.IN_PROGRESS:
        booking.started_at = now
    elif target == BookingStatus.COMPLETED:
        booking.completed_at = now
        started = booking.started_at or booking.scheduled_at
        booking.actual_duration_minutes = max(int((now - started).total_seconds() // 60), 0)
    elif target == BookingStatus.CANCELLED:
        booking.cancelled_at = now
        booking.cancellation_reason = reason
    elif target == BookingStatus.NO_SHOW:
        booking.no_show_at = now

    return previous


def check_payment_transition(current: str, target: str, has_deposit: bool) -> None:
    if target not in PaymentStatus.ALL:
        raise InvalidTransitionError(current, target, f"Unknown payment status '{target}'", field="payment_status")

    if target not in PAYMENT_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current, target, field="payment_status")

    if current == PaymentStatus.PENDING and target == PaymentStatus.FULLY_PAID and has_deposit:
        raise InvalidTransitionError(
            current,
            target,
            "Deposit must be paid before the booking can be fully paid",
            field="payment_status",
        )
