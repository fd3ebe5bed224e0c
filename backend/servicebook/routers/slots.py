# backend/servicebook/routers/slots.py
"""
Slots and pricing API endpoints.

GET  /slots             - Bookable slots of a service over a date range
POST /slots/invalidate  - Drop cached windows of a service
POST /pricing/quote     - Price breakdown of a candidate booking
"""

from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from redis import Redis
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import ValidationError
from ..models.tables import ServiceLocations
from ..redis_client import get_redis
from ..schemas.slots import (
    PriceLineRead,
    PriceQuoteRequest,
    PriceQuoteResponse,
    SlotRead,
    SlotsInvalidateRequest,
    SlotsResponse,
)
from ..services.booking_service import find_bookable_slot
from ..services.pricing import AddOnSelection, quote_booking
from ..services.slots import calculate_available_slots, invalidate_service_cache
from ..services.slots.availability import get_bookable_package, get_bookable_service, required_duration_minutes
from ..services.slots.config import to_naive_utc, utcnow


router = APIRouter(tags=["slots"])


@router.get("/slots", response_model=SlotsResponse)
def get_slots(
    service_id: int,
    location_id: Optional[int] = None,
    package_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    add_on_ids: list[int] = Query(default=[]),
    add_on_quantities: list[int] = Query(default=[]),
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
):
    """
    Bookable slots in [start_date, end_date] (default: next 7 days).

    Add-ons are passed as parallel lists: ?add_on_ids=3&add_on_quantities=2
    (missing quantities default to 1).
    """
    now = utcnow()
    start_date = start_date or now.date()
    end_date = end_date or start_date + timedelta(days=6)

    if len(add_on_quantities) > len(add_on_ids):
        raise ValidationError("More add-on quantities than add-on ids", "add_on_quantities")
    quantities = list(add_on_quantities) + [1] * (len(add_on_ids) - len(add_on_quantities))
    selections = [AddOnSelection(a, q) for a, q in zip(add_on_ids, quantities)]

    slots = calculate_available_slots(
        db,
        service_id,
        start_date,
        end_date,
        location_id=location_id,
        add_ons=selections,
        package_id=package_id,
        now=now,
        redis=redis,
    )

    service = get_bookable_service(db, service_id)
    package = get_bookable_package(db, package_id) if package_id is not None else None

    return SlotsResponse(
        service_id=service_id,
        location_id=location_id,
        start_date=start_date,
        end_date=end_date,
        duration_minutes=required_duration_minutes(service, package, selections),
        slots=[
            SlotRead(
                starts_at=s.starts_at,
                ends_at=s.ends_at,
                window_id=s.window_id,
                location_id=s.location_id,
                capacity=s.capacity,
                booked=s.booked,
                remaining=s.remaining,
                price_modifier=s.price_modifier,
                price_modifier_type=s.price_modifier_type,
            )
            for s in slots
        ],
    )


@router.post("/slots/invalidate")
def invalidate_slots(
    data: SlotsInvalidateRequest,
    redis: Redis | None = Depends(get_redis),
):
    if redis is None:
        return {"deleted": 0}
    return {"deleted": invalidate_service_cache(redis, data.service_id, data.dates)}


@router.post("/pricing/quote", response_model=PriceQuoteResponse)
def quote_price(
    data: PriceQuoteRequest,
    db: Session = Depends(get_db),
    redis: Redis | None = Depends(get_redis),
):
    """Price a candidate booking; with scheduled_at the slot's modifier applies."""
    now = utcnow()
    selections = [AddOnSelection(a.add_on_id, a.quantity) for a in data.add_ons]

    service = get_bookable_service(db, data.service_id)
    location = None
    if data.service_location_id is not None:
        location = db.get(ServiceLocations, data.service_location_id)
        if location is None or location.service_id != service.id:
            raise ValidationError("Location does not belong to this service", "service_location_id")
    package = get_bookable_package(db, data.service_package_id) if data.service_package_id else None

    slot = None
    if data.scheduled_at is not None:
        slot = find_bookable_slot(
            db,
            service_id=service.id,
            location_id=data.service_location_id,
            package_id=data.service_package_id,
            selections=selections,
            scheduled_at=to_naive_utc(data.scheduled_at),
            window_id=data.availability_window_id,
            now=now,
            redis=redis,
        )

    breakdown = quote_booking(service, location, selections, slot, package)
    return PriceQuoteResponse(
        base_price=breakdown.base_price,
        addons_total=breakdown.addons_total,
        location_surcharge=breakdown.location_surcharge,
        window_modifier=breakdown.window_modifier,
        total_amount=breakdown.total_amount,
        deposit_amount=breakdown.deposit_amount,
        remaining_amount=breakdown.remaining_amount,
        add_ons=[
            PriceLineRead(
                add_on_id=line.add_on_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
                duration_minutes=line.duration_minutes,
            )
            for line in breakdown.add_ons
        ],
    )
