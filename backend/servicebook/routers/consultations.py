# backend/servicebook/routers/consultations.py

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.tables import ConsultationBookings as DBConsultation
from ..schemas.consultations import (
    ConsultationCancel,
    ConsultationComplete,
    ConsultationCreate,
    ConsultationRead,
    ConsultationUpdate,
)
from ..services import consultations
from ..services.events import NotificationDispatcher, get_notification_dispatcher
from ..services.payment_gateway import PaymentGateway, get_payment_gateway

router = APIRouter(prefix="/consultations", tags=["consultations"])


@router.get("/", response_model=list[ConsultationRead])
def list_consultations(service_id: int | None = None, db: Session = Depends(get_db)):
    query = db.query(DBConsultation)
    if service_id is not None:
        query = query.filter(DBConsultation.service_id == service_id)
    return query.order_by(DBConsultation.scheduled_at).all()


@router.get("/{id}", response_model=ConsultationRead)
def get_consultation(id: int, db: Session = Depends(get_db)):
    return consultations.get_consultation(db, id)


@router.post("/", response_model=ConsultationRead, status_code=status.HTTP_201_CREATED)
def create_consultation(
    data: ConsultationCreate,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return consultations.create_consultation(db, data, notifier=notifier)


@router.patch("/{id}", response_model=ConsultationRead)
def update_consultation(
    id: int,
    data: ConsultationUpdate,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return consultations.update_consultation(db, id, data, notifier=notifier)


@router.post("/{id}/payments", response_model=ConsultationRead)
def pay_consultation_fee(
    id: int,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return consultations.pay_consultation_fee(db, id, gateway, notifier=notifier)


@router.post("/{id}/start", response_model=ConsultationRead)
def start_consultation(id: int, db: Session = Depends(get_db)):
    return consultations.start_consultation(db, id)


@router.post("/{id}/complete", response_model=ConsultationRead)
def complete_consultation(
    id: int,
    data: ConsultationComplete,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return consultations.complete_consultation(db, id, data.completion_notes, notifier=notifier)


@router.post("/{id}/cancel", response_model=ConsultationRead)
def cancel_consultation(
    id: int,
    data: ConsultationCancel,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    return consultations.cancel_consultation(db, id, data.reason, notifier=notifier, gateway=gateway)


@router.post("/{id}/no-show", response_model=ConsultationRead)
def mark_no_show(id: int, db: Session = Depends(get_db)):
    return consultations.mark_consultation_no_show(db, id)
