# backend/servicebook/schemas/slots.py
"""
Pydantic schemas for slots and pricing API.
"""

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field

from .bookings import AddOnSelectionIn


class SlotRead(BaseModel):
    """One bookable start time."""
    starts_at: datetime
    ends_at: datetime
    window_id: Optional[int] = None
    location_id: Optional[int] = None
    capacity: int
    booked: int
    remaining: int
    price_modifier: int = 0
    price_modifier_type: str = "fixed"

    model_config = {"from_attributes": True}


class SlotsResponse(BaseModel):
    service_id: int
    location_id: Optional[int] = None
    start_date: date
    end_date: date
    duration_minutes: int = Field(description="Required duration incl. add-ons")
    slots: list[SlotRead]


class SlotsInvalidateRequest(BaseModel):
    service_id: int
    dates: Optional[list[date]] = Field(None, description="None = every cached date of the service")


class PriceQuoteRequest(BaseModel):
    service_id: int
    service_location_id: Optional[int] = None
    service_package_id: Optional[int] = None
    scheduled_at: Optional[datetime] = Field(None, description="Applies the window price modifier of this slot")
    availability_window_id: Optional[int] = None
    add_ons: list[AddOnSelectionIn] = []


class PriceLineRead(BaseModel):
    add_on_id: int
    name: str
    quantity: int
    unit_price: int
    total_price: int
    duration_minutes: int


class PriceQuoteResponse(BaseModel):
    base_price: int
    addons_total: int
    location_surcharge: int
    window_modifier: int
    total_amount: int
    deposit_amount: Optional[int] = None
    remaining_amount: Optional[int] = None
    add_ons: list[PriceLineRead] = []
