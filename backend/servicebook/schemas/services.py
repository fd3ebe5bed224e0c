# backend/servicebook/schemas/services.py

from datetime import date, datetime, time
from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator

from ..constants import WindowPattern, WindowType


class ServiceCreate(BaseModel):
    name: str
    description: Optional[str] = None
    base_price: int = Field(..., ge=0, description="Minor units (pence)")
    duration_minutes: int = Field(..., gt=0)
    buffer_minutes: int = Field(0, ge=0)
    requires_deposit: bool = False
    deposit_percentage: Optional[float] = Field(None, gt=0, le=100)
    deposit_amount: Optional[int] = Field(None, ge=0)
    min_advance_booking_hours: Optional[int] = Field(None, ge=0)
    max_advance_booking_days: Optional[int] = Field(None, ge=0)
    status: Literal["active", "inactive", "draft"] = "draft"
    auto_confirm_bookings: bool = False
    requires_consultation: bool = False
    consultation_duration_minutes: int = Field(30, gt=0, le=240)
    consultation_lead_days: int = Field(5, ge=0)

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_deposit(self):
        if self.requires_deposit and (self.deposit_percentage is None) == (self.deposit_amount is None):
            raise ValueError("Exactly one of deposit_percentage / deposit_amount is required when requires_deposit")
        if not self.requires_deposit and (self.deposit_percentage is not None or self.deposit_amount is not None):
            raise ValueError("Deposit values are only allowed when requires_deposit")
        return self


class ServiceRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    base_price: int
    duration_minutes: int
    buffer_minutes: int
    requires_deposit: bool
    deposit_percentage: Optional[float] = None
    deposit_amount: Optional[int] = None
    min_advance_booking_hours: Optional[int] = None
    max_advance_booking_days: Optional[int] = None
    status: str
    auto_confirm_bookings: bool
    requires_consultation: bool
    consultation_duration_minutes: int
    consultation_lead_days: int
    deleted_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LocationCreate(BaseModel):
    name: str
    type: Literal["business_premises", "client_location", "virtual", "outdoor"]
    address: Optional[str] = None
    additional_charge: int = 0  # may be negative
    max_capacity: Optional[int] = Field(None, ge=0)
    is_active: bool = True

    model_config = {"from_attributes": True}


class LocationRead(BaseModel):
    id: int
    service_id: int
    name: str
    type: str
    address: Optional[str] = None
    additional_charge: int
    max_capacity: Optional[int] = None
    is_active: bool

    model_config = {"from_attributes": True}


class WindowCreate(BaseModel):
    service_location_id: Optional[int] = None
    title: Optional[str] = None
    type: Literal["regular", "exception", "special_hours", "blocked"] = "regular"
    pattern: Literal["weekly", "daily", "date_range", "specific_date"]
    day_of_week: Optional[int] = Field(None, ge=0, le=6, description="0 = Monday")
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: time
    end_time: time
    slot_duration_minutes: Optional[int] = Field(None, gt=0)
    break_duration_minutes: int = Field(0, ge=0)
    max_bookings: Optional[int] = Field(None, ge=0)
    min_advance_booking_hours: Optional[int] = Field(None, ge=0)
    max_advance_booking_days: Optional[int] = Field(None, ge=0)
    price_modifier: Optional[int] = None
    price_modifier_type: Optional[Literal["fixed", "percentage"]] = None
    is_bookable: bool = True
    is_active: bool = True

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_pattern(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")

        if self.pattern == WindowPattern.WEEKLY:
            if self.day_of_week is None:
                raise ValueError("weekly windows require day_of_week")
            if self.start_date is not None or self.end_date is not None:
                raise ValueError("weekly windows must not set start_date / end_date")
        elif self.pattern in WindowPattern.DATE_BASED:
            if self.start_date is None:
                raise ValueError(f"{self.pattern} windows require start_date")
            if self.day_of_week is not None:
                raise ValueError(f"{self.pattern} windows must not set day_of_week")
            if self.pattern == WindowPattern.DATE_RANGE:
                if self.end_date is None or self.end_date < self.start_date:
                    raise ValueError("date_range windows require end_date >= start_date")
        elif self.day_of_week is not None:
            raise ValueError("daily windows must not set day_of_week")

        if self.type == WindowType.BLOCKED and (self.is_bookable or self.max_bookings != 0):
            raise ValueError("blocked windows require is_bookable = false and max_bookings = 0")

        if self.price_modifier is not None and self.price_modifier_type is None:
            self.price_modifier_type = "fixed"
        return self


class WindowRead(BaseModel):
    id: int
    service_id: int
    service_location_id: Optional[int] = None
    title: Optional[str] = None
    type: str
    pattern: str
    day_of_week: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    start_time: time
    end_time: time
    slot_duration_minutes: Optional[int] = None
    break_duration_minutes: int
    max_bookings: Optional[int] = None
    min_advance_booking_hours: Optional[int] = None
    max_advance_booking_days: Optional[int] = None
    price_modifier: Optional[int] = None
    price_modifier_type: Optional[str] = None
    is_bookable: bool
    is_active: bool

    model_config = {"from_attributes": True}


class AddOnCreate(BaseModel):
    name: str
    price: int = Field(..., ge=0)
    duration_minutes: int = Field(0, ge=0)
    max_quantity: int = Field(1, ge=1)
    is_required: bool = False
    is_active: bool = True

    model_config = {"from_attributes": True}


class AddOnRead(BaseModel):
    id: int
    service_id: int
    name: str
    price: int
    duration_minutes: int
    max_quantity: int
    is_required: bool
    is_active: bool

    model_config = {"from_attributes": True}


class CapacityBlockCreate(BaseModel):
    service_location_id: Optional[int] = None
    slot_datetime: datetime
    is_blocked: bool = True
    available_slots: Optional[int] = Field(None, ge=0)
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


class CapacityBlockRead(CapacityBlockCreate):
    id: int
    service_id: int
