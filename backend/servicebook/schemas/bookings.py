# backend/servicebook/schemas/bookings.py

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from .consultations import ConsultationRead


class AddOnSelectionIn(BaseModel):
    add_on_id: int
    quantity: int = 1  # range is checked against max_quantity by the pricing resolver


class BookingCreate(BaseModel):
    user_id: int
    service_id: int
    service_location_id: Optional[int] = None
    service_package_id: Optional[int] = None
    availability_window_id: Optional[int] = None

    scheduled_at: datetime
    add_ons: list[AddOnSelectionIn] = []

    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    notes: Optional[str] = None
    special_requirements: Optional[str] = None

    model_config = {"from_attributes": True}


class BookingAddOnRead(BaseModel):
    id: int
    service_add_on_id: Optional[int] = None
    name: str
    quantity: int
    unit_price: int
    total_price: int
    duration_minutes: int

    model_config = {"from_attributes": True}


class BookingStatusHistoryRead(BaseModel):
    previous_status: Optional[str] = None
    new_status: str
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingRead(BaseModel):
    id: int
    booking_reference: str

    user_id: int
    service_id: int
    service_location_id: Optional[int] = None
    service_package_id: Optional[int] = None
    availability_window_id: Optional[int] = None

    scheduled_at: datetime
    ends_at: datetime
    duration_minutes: int

    base_price: int
    addons_total: int
    location_surcharge: int
    window_modifier: int
    total_amount: int
    deposit_amount: Optional[int] = None
    remaining_amount: Optional[int] = None

    status: str
    payment_status: str

    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    notes: Optional[str] = None
    special_requirements: Optional[str] = None

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    actual_duration_minutes: Optional[int] = None
    completion_notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refund_percentage: Optional[int] = None
    no_show_at: Optional[datetime] = None
    rescheduled_from_booking_id: Optional[int] = None

    add_ons: list[BookingAddOnRead] = []

    model_config = {"from_attributes": True}


class BookingDetailRead(BookingRead):
    status_history: list[BookingStatusHistoryRead] = []
    consultations: list[ConsultationRead] = []


class BookingUpdate(BaseModel):
    """Client-facing fields of a pending or confirmed booking. Only provided fields change."""
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    notes: Optional[str] = None
    special_requirements: Optional[str] = None


class BookingComplete(BaseModel):
    completion_notes: Optional[str] = None


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingCancelResult(BaseModel):
    booking: BookingRead
    refund_percentage: int
    refund_amount: int


class BookingReschedule(BaseModel):
    scheduled_at: datetime
    availability_window_id: Optional[int] = None
    reason: Optional[str] = None
