# backend/servicebook/routers/bookings.py
# PATCH edits client fields only, DELETE = 405; status changes go through the action endpoints

from datetime import date, datetime, time, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.tables import Bookings as DBBookings
from ..redis_client import get_redis
from ..schemas.bookings import (
    BookingCancel,
    BookingCancelResult,
    BookingComplete,
    BookingCreate,
    BookingDetailRead,
    BookingRead,
    BookingReschedule,
    BookingUpdate,
)
from ..schemas.payments import PaymentCreate, PaymentRead
from ..services import booking_service
from ..services.booking_payment import record_payment
from ..services.events import NotificationDispatcher, get_notification_dispatcher
from ..services.payment_gateway import PaymentGateway, get_payment_gateway
from ..services.refund_policy import RefundPolicy, get_refund_policy

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("/", response_model=list[BookingRead])
def list_bookings(
    service_id: Optional[int] = None,
    status_: Optional[str] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
):
    query = db.query(DBBookings).filter(DBBookings.deleted_at.is_(None))
    if service_id is not None:
        query = query.filter(DBBookings.service_id == service_id)
    if status_ is not None:
        query = query.filter(DBBookings.status == status_)
    if date_from is not None:
        query = query.filter(DBBookings.scheduled_at >= datetime.combine(date_from, time.min))
    if date_to is not None:
        query = query.filter(DBBookings.scheduled_at < datetime.combine(date_to + timedelta(days=1), time.min))
    return query.order_by(DBBookings.scheduled_at).all()


@router.get("/{id}", response_model=BookingDetailRead)
def get_booking(id: int, db: Session = Depends(get_db)):
    return booking_service.get_booking(db, id)


@router.post("/", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return booking_service.create_booking(db, data, redis=redis, notifier=notifier)


@router.post("/{id}/confirm", response_model=BookingRead)
def confirm_booking(
    id: int,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return booking_service.confirm_booking(db, id, notifier=notifier)


@router.post("/{id}/start", response_model=BookingRead)
def start_booking(id: int, db: Session = Depends(get_db)):
    return booking_service.start_booking(db, id)


@router.post("/{id}/complete", response_model=BookingRead)
def complete_booking(
    id: int,
    data: BookingComplete,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return booking_service.complete_booking(db, id, data.completion_notes, notifier=notifier)


@router.post("/{id}/no-show", response_model=BookingRead)
def mark_no_show(
    id: int,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return booking_service.mark_no_show(db, id, notifier=notifier)


@router.post("/{id}/cancel", response_model=BookingCancelResult)
def cancel_booking(
    id: int,
    data: BookingCancel,
    db: Session = Depends(get_db),
    refund_policy: RefundPolicy = Depends(get_refund_policy),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    booking, refund_amount = booking_service.cancel_booking(
        db, id, data.reason, refund_policy=refund_policy, notifier=notifier
    )
    return BookingCancelResult(
        booking=BookingRead.model_validate(booking),
        refund_percentage=booking.refund_percentage,
        refund_amount=refund_amount,
    )


@router.post("/{id}/reschedule", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
def reschedule_booking(
    id: int,
    data: BookingReschedule,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return booking_service.reschedule_booking(
        db,
        id,
        data.scheduled_at,
        window_id=data.availability_window_id,
        reason=data.reason,
        redis=redis,
        notifier=notifier,
    )


@router.get("/{id}/payments", response_model=list[PaymentRead])
def list_payments(id: int, db: Session = Depends(get_db)):
    return booking_service.get_booking(db, id).payments


@router.post("/{id}/payments", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
def create_payment(
    id: int,
    data: PaymentCreate,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return record_payment(db, id, data.payment_type, gateway, amount=data.amount, notifier=notifier)


@router.patch("/{id}", response_model=BookingRead)
def update_booking(id: int, data: BookingUpdate, db: Session = Depends(get_db)):
    return booking_service.update_booking(db, id, data)


@router.delete("/{id}")
def delete_not_allowed():
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method not allowed",
    )
