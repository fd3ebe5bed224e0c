# backend/servicebook/services/booking_payment.py
"""
Booking payment processing service.

Charges or refunds a booking through a payment gateway, records the
Payment row and moves booking.payment_status along its state machine.

    deposit → deposit_paid        (booking must carry a deposit)
    full    → fully_paid          (only when no deposit applies)
    final   → fully_paid          (remaining amount after the deposit)
    refund  → partially_refunded | refunded  (by cumulative refunds)

A failed gateway result is still recorded (status=failed) but leaves
payment_status unchanged.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..constants import BookingStatus, GatewayStatus, NotificationType, PaymentStatus, PaymentType
from ..errors import NotFoundError, ValidationError
from ..models.tables import Bookings as DBBooking, Payments as DBPayment
from .booking_state import check_payment_transition
from .events import NotifiableRef, NotificationDispatcher
from .payment_gateway import PaymentGateway
from .pricing import percent_of

logger = logging.getLogger(__name__)

CHARGE_TYPES = (PaymentType.DEPOSIT, PaymentType.FULL, PaymentType.FINAL)


def _succeeded(booking: DBBooking, payment_type: Optional[str] = None) -> list[DBPayment]:
    return [
        p for p in booking.payments
        if p.status == GatewayStatus.SUCCEEDED and (payment_type is None or p.payment_type == payment_type)
    ]


def total_charged(booking: DBBooking) -> int:
    return sum(p.amount for p in _succeeded(booking) if p.payment_type in CHARGE_TYPES)


def total_refunded(booking: DBBooking) -> int:
    return sum(p.amount for p in _succeeded(booking, PaymentType.REFUND))


def net_paid(booking: DBBooking) -> int:
    """Money currently held for the booking."""
    return total_charged(booking) - total_refunded(booking)


def _amount_due(booking: DBBooking, payment_type: str) -> int:
    """Default amount for a payment type."""
    if payment_type == PaymentType.DEPOSIT:
        return booking.deposit_amount or 0
    if payment_type == PaymentType.FULL:
        return booking.total_amount
    if payment_type == PaymentType.FINAL:
        return booking.total_amount - total_charged(booking)

    # refund
    held = net_paid(booking)
    if booking.refund_percentage is not None:
        return percent_of(held, booking.refund_percentage)
    return held


def _target_status(booking: DBBooking, payment_type: str, amount: int) -> str:
    if payment_type == PaymentType.DEPOSIT:
        return PaymentStatus.DEPOSIT_PAID
    if payment_type in (PaymentType.FULL, PaymentType.FINAL):
        return PaymentStatus.FULLY_PAID
    if amount >= net_paid(booking):
        return PaymentStatus.REFUNDED
    return PaymentStatus.PARTIALLY_REFUNDED


def record_payment(
    db: Session,
    booking_id: int,
    payment_type: str,
    gateway: PaymentGateway,
    amount: Optional[int] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> DBPayment:
    """
    Charge or refund a booking and record the result.

    Algorithm:
    1. Lock the booking, resolve the amount (default: amount due for the type)
    2. Check the payment status transition before touching the gateway
    3. Call the gateway, record a Payment row with its result
    4. On success move payment_status; commit

    Raises:
        NotFoundError: unknown booking
        ValidationError: payment not applicable / amount out of range
        InvalidTransitionError: payment_status cannot move that way
        PaymentGatewayError: gateway unreachable
    """
    try:
        booking = (
            db.query(DBBooking)
            .filter(DBBooking.id == booking_id, DBBooking.deleted_at.is_(None))
            .with_for_update()
            .first()
        )
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found", "booking_id")

        if payment_type not in PaymentType.ALL:
            raise ValidationError(f"Unknown payment type '{payment_type}'", "payment_type")

        if payment_type in CHARGE_TYPES and booking.status in (BookingStatus.CANCELLED, BookingStatus.RESCHEDULED):
            raise ValidationError(f"Cannot charge a {booking.status} booking", "payment_type")

        if payment_type == PaymentType.DEPOSIT and booking.deposit_amount is None:
            raise ValidationError("This booking does not require a deposit", "payment_type")

        if amount is None:
            amount = _amount_due(booking, payment_type)
        if amount <= 0:
            raise ValidationError(f"Nothing to pay for a {payment_type} payment", "amount")

        if payment_type == PaymentType.REFUND and amount > net_paid(booking):
            raise ValidationError(
                f"Refund {amount} exceeds the {net_paid(booking)} held for booking {booking_id}",
                "amount",
            )
        if payment_type in CHARGE_TYPES and total_charged(booking) + amount > booking.total_amount:
            raise ValidationError(
                f"Payment {amount} exceeds the outstanding {booking.total_amount - total_charged(booking)}",
                "amount",
            )

        target = _target_status(booking, payment_type, amount)
        check_payment_transition(booking.payment_status, target, booking.deposit_amount is not None)

        if payment_type == PaymentType.REFUND:
            original = next(iter(_succeeded(booking)), None)
            result = gateway.refund(amount, booking.id, original.transaction_reference if original else None)
        else:
            result = gateway.charge(amount, booking.id)

        payment = DBPayment(
            booking_id=booking.id,
            payment_type=payment_type,
            amount=amount,
            status=result.status,
            gateway=gateway.name,
            transaction_reference=result.transaction_reference,
        )
        db.add(payment)

        if result.succeeded:
            booking.payment_status = target

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    logger.info(
        f"Booking {booking.booking_reference} {payment_type} {amount}: "
        f"{result.status} via {gateway.name} ({result.transaction_reference}) → {booking.payment_status}"
    )

    if result.succeeded and notifier is not None:
        try:
            notifier.dispatch(
                NotifiableRef.booking(booking.id),
                NotificationType.PAYMENT_RECEIVED,
                {"payment_type": payment_type, "amount": amount},
            )
        except Exception:
            logger.exception(f"Payment notification failed for booking {booking.booking_reference}")

    return payment
