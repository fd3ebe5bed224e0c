# backend/servicebook/schemas/consultations.py

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, model_validator

from ..constants import ConsultationFormat, ConsultationType


def _check_kind(value: Optional[str], allowed: tuple, field: str) -> None:
    if value is not None and value not in allowed:
        raise ValueError(f"{field} must be one of: {', '.join(allowed)}")


class ConsultationCreate(BaseModel):
    user_id: int
    service_id: int
    main_booking_id: Optional[int] = None

    scheduled_at: datetime
    duration_minutes: int = Field(30, gt=0, le=240)
    type: str = ConsultationType.PRE_BOOKING
    format: str = ConsultationFormat.PHONE

    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    consultation_notes: Optional[str] = None

    consultation_fee: int = Field(0, ge=0)
    fee_waived_if_booking: bool = True

    @model_validator(mode="after")
    def check_kind(self):
        _check_kind(self.type, ConsultationType.ALL, "type")
        _check_kind(self.format, ConsultationFormat.ALL, "format")
        return self


class ConsultationUpdate(BaseModel):
    """Only provided fields change; a new scheduled_at re-runs the schedule checks."""
    scheduled_at: Optional[datetime] = None
    type: Optional[str] = None
    format: Optional[str] = None

    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    consultation_notes: Optional[str] = None

    @model_validator(mode="after")
    def check_kind(self):
        _check_kind(self.type, ConsultationType.ALL, "type")
        _check_kind(self.format, ConsultationFormat.ALL, "format")
        return self


class ConsultationRead(BaseModel):
    id: int
    consultation_reference: str
    user_id: int
    service_id: int
    main_booking_id: Optional[int] = None

    scheduled_at: datetime
    ends_at: datetime
    duration_minutes: int
    status: str
    type: str
    format: str

    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    consultation_notes: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completion_notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    consultation_fee: int
    fee_waived_if_booking: bool
    payment_status: str
    payment_reference: Optional[str] = None

    model_config = {"from_attributes": True}


class ConsultationComplete(BaseModel):
    completion_notes: Optional[str] = None


class ConsultationCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
