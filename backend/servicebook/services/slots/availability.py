# backend/servicebook/services/slots/availability.py
"""
Level 2: Service availability calculation.

Builds the slot sequence for a service/location over a date range.

Takes into account:
- Resolved day windows (Level 1, cached in Redis Sorted Sets)
- Required duration (service or package + add-ons)
- Existing occupying bookings (+ service buffer)
- Manual capacity blocks
- Location max_capacity
"""

from datetime import date, datetime, timedelta
from typing import Optional, Sequence

from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session
import logging

from ...constants import BookingStatus, ServiceStatus
from ...errors import NotFoundError, ValidationError
from ..pricing import AddOnSelection, resolve_add_ons
from .calculator import OccupiedInterval, SlotSequence
from .config import BookingConfig, get_booking_config, utcnow
from .redis_store import SlotsRedisStore
from .windows import ResolvedWindow, load_service_windows, resolve_day_windows

logger = logging.getLogger(__name__)


def calculate_available_slots(
    db: Session,
    service_id: int,
    start_date: date,
    end_date: date,
    location_id: Optional[int] = None,
    add_ons: Sequence[AddOnSelection] = (),
    package_id: Optional[int] = None,
    now: Optional[datetime] = None,
    config: BookingConfig | None = None,
    redis: Redis | None = None,
    exclude_booking_id: Optional[int] = None,
    enforce_capacity: bool = True,
) -> SlotSequence:
    """
    Calculate available slots for a service.

    Returns:
        SlotSequence (lazy, chronological, restartable).

    Raises:
        NotFoundError: unknown/inactive service, location or package
        ValidationError: bad date range or add-on selection
    """
    config = config or get_booking_config()
    now = now or utcnow()

    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date", "end_date")
    if (end_date - start_date).days + 1 > config.max_range_days:
        raise ValidationError(f"Date range cannot exceed {config.max_range_days} days", "end_date")

    service = get_bookable_service(db, service_id)
    location = get_bookable_location(db, service_id, location_id) if location_id is not None else None
    package = get_bookable_package(db, package_id) if package_id is not None else None

    duration_min = required_duration_minutes(service, package, add_ons)

    range_start = datetime.combine(start_date, datetime.min.time())
    range_end = datetime.combine(end_date + timedelta(days=1), datetime.min.time())

    occupied = _get_occupied_intervals(
        db, service, location_id, range_start, range_end, exclude_booking_id
    )
    blocked_starts = _get_blocked_starts(db, service_id, location_id, range_start, range_end)

    windows_for = _windows_resolver(db, service_id, location_id, now, config, redis)

    return SlotSequence(
        windows_for,
        start_date,
        end_date,
        duration_minutes=duration_min,
        default_step_minutes=service.duration_minutes,
        now=now,
        occupied=occupied,
        blocked_starts=blocked_starts,
        location_capacity=location.max_capacity if location is not None else None,
        service_min_advance_hours=service.min_advance_booking_hours,
        service_max_advance_days=service.max_advance_booking_days,
        enforce_capacity=enforce_capacity,
        config=config,
    )


def required_duration_minutes(service, package=None, add_ons: Sequence[AddOnSelection] = ()) -> int:
    """Service (or package) duration plus add-on durations × quantity."""
    lines = resolve_add_ons(service.add_ons, add_ons)
    base_duration = package.total_duration_minutes if package is not None else service.duration_minutes
    return base_duration + sum(line.total_duration for line in lines)


# ── Windows (Level 1 with cache) ─────────────────────────────────────────


def _windows_resolver(
    db: Session,
    service_id: int,
    location_id: Optional[int],
    now: datetime,
    config: BookingConfig,
    redis: Redis | None,
):
    """Per-day window lookup, memoized so re-iteration is stable."""
    rows = load_service_windows(db, service_id, location_id)
    store = SlotsRedisStore(redis, config) if redis is not None else None
    memo: dict[date, list[ResolvedWindow]] = {}

    def windows_for(target_date: date) -> list[ResolvedWindow]:
        if target_date in memo:
            return memo[target_date]

        windows = None
        if store is not None:
            try:
                windows = store.get_day_windows(service_id, location_id, target_date, now)
            except RedisError:
                logger.warning(f"Slots cache read failed for service={service_id} date={target_date}")

        if windows is None:
            windows = resolve_day_windows(rows, target_date, location_id)
            if store is not None:
                try:
                    store.store_day_windows(service_id, location_id, target_date, windows)
                except RedisError:
                    logger.warning(f"Slots cache write failed for service={service_id} date={target_date}")

        memo[target_date] = windows
        return windows

    return windows_for


# ── Database helpers ─────────────────────────────────────────────────────


def get_bookable_service(db: Session, service_id: int):
    """Active, not soft-deleted service or NotFoundError."""
    from ...models.tables import Services

    service = (
        db.query(Services)
        .filter(
            Services.id == service_id,
            Services.status == ServiceStatus.ACTIVE,
            Services.deleted_at.is_(None),
        )
        .first()
    )
    if not service:
        raise NotFoundError(f"Service {service_id} is not available for booking", "service_id")
    return service


def get_bookable_location(db: Session, service_id: int, location_id: int):
    from ...models.tables import ServiceLocations

    location = (
        db.query(ServiceLocations)
        .filter(
            ServiceLocations.id == location_id,
            ServiceLocations.service_id == service_id,
            ServiceLocations.is_active.is_(True),
            ServiceLocations.deleted_at.is_(None),
        )
        .first()
    )
    if not location:
        raise NotFoundError(f"Location {location_id} is not available for this service", "service_location_id")
    return location


def get_bookable_package(db: Session, package_id: int):
    from ...models.tables import ServicePackages

    package = (
        db.query(ServicePackages)
        .filter(
            ServicePackages.id == package_id,
            ServicePackages.is_active.is_(True),
            ServicePackages.deleted_at.is_(None),
        )
        .first()
    )
    if not package:
        raise NotFoundError(f"Package {package_id} is not available", "service_package_id")
    return package


def _get_occupied_intervals(
    db: Session,
    service,
    location_id: Optional[int],
    range_start: datetime,
    range_end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> list[OccupiedInterval]:
    """Occupying bookings in range, each extended by the service buffer."""
    from ...models.tables import Bookings

    buffer = timedelta(minutes=service.buffer_minutes or 0)

    query = db.query(Bookings).filter(
        Bookings.service_id == service.id,
        Bookings.status.in_(BookingStatus.OCCUPYING),
        Bookings.deleted_at.is_(None),
        Bookings.scheduled_at < range_end,
        Bookings.ends_at > range_start - buffer,
    )
    if location_id is None:
        query = query.filter(Bookings.service_location_id.is_(None))
    else:
        query = query.filter(Bookings.service_location_id == location_id)
    if exclude_booking_id is not None:
        query = query.filter(Bookings.id != exclude_booking_id)

    return [
        OccupiedInterval(b.scheduled_at, b.ends_at + buffer, b.id, b.availability_window_id)
        for b in query.all()
    ]


def _get_blocked_starts(
    db: Session,
    service_id: int,
    location_id: Optional[int],
    range_start: datetime,
    range_end: datetime,
) -> set[datetime]:
    """Slot starts closed by manual capacity blocks."""
    from ...models.tables import BookingCapacitySlots

    query = db.query(BookingCapacitySlots).filter(
        BookingCapacitySlots.service_id == service_id,
        BookingCapacitySlots.slot_datetime >= range_start,
        BookingCapacitySlots.slot_datetime < range_end,
    )
    if location_id is None:
        query = query.filter(BookingCapacitySlots.service_location_id.is_(None))
    else:
        query = query.filter(BookingCapacitySlots.service_location_id == location_id)

    return {
        row.slot_datetime
        for row in query.all()
        if row.is_blocked or (row.available_slots is not None and row.available_slots <= 0)
    }
