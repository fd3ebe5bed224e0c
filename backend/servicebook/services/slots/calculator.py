# backend/servicebook/services/slots/calculator.py
"""
Slot generation from resolved windows.

Produces concrete bookable start times:
✓ window grid (slot_duration_minutes, fallback service duration, + break gap)
✓ required duration must fit before window end_time
✓ blocking windows and manual capacity blocks
✓ min/max advance booking (window override > service override > none)
✓ capacity: window pool (bookings in that window) and location pool (all
  bookings at the location); a slot closes when either is full

Pure functions of their inputs: no DB, no Redis, no clock.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Iterator, Optional

from .config import BookingConfig, get_booking_config
from .windows import ResolvedWindow


@dataclass(frozen=True)
class Slot:
    starts_at: datetime
    ends_at: datetime
    window_id: Optional[int]
    location_id: Optional[int]
    capacity: int
    booked: int
    price_modifier: int
    price_modifier_type: str

    @property
    def remaining(self) -> int:
        return max(self.capacity - self.booked, 0)


@dataclass(frozen=True)
class OccupiedInterval:
    """Time held by an existing booking (buffer already included).

    window_id None counts against every window's pool.
    """
    starts_at: datetime
    ends_at: datetime
    booking_id: Optional[int] = None
    window_id: Optional[int] = None


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


def binding_pool(
    window_limit: Optional[int],
    window_booked: int,
    location_limit: Optional[int],
    location_booked: int,
    default: int,
) -> tuple[int, int]:
    """
    (capacity, booked) of the pool with the fewest free seats.

    The window pool counts bookings placed in that window; the location
    pool counts every booking at the location. With neither limit set the
    window pool gets the default capacity.
    """
    if window_limit is None and location_limit is None:
        window_limit = default

    pools = []
    if window_limit is not None:
        pools.append((window_limit, window_booked))
    if location_limit is not None:
        pools.append((location_limit, location_booked))
    return min(pools, key=lambda pool: pool[0] - pool[1])


def window_slot_starts(
    window: ResolvedWindow,
    duration_minutes: int,
    default_step_minutes: int,
) -> Iterator[datetime]:
    """Start times on the window grid whose [start, start+duration) fits."""
    step = (window.slot_duration_minutes or default_step_minutes) + window.break_duration_minutes
    if step <= 0:
        raise ValueError(f"Slot step must be positive, got {step} for window {window.window_id}")

    day_start = datetime.combine(window.date, datetime.min.time())
    t = window.start_minutes
    while t + duration_minutes <= window.end_minutes:
        yield day_start + timedelta(minutes=t)
        t += step


def generate_day_slots(
    day_windows: list[ResolvedWindow],
    *,
    duration_minutes: int,
    default_step_minutes: int,
    now: datetime,
    occupied: Iterable[OccupiedInterval] = (),
    blocked_starts: Iterable[datetime] = (),
    location_capacity: Optional[int] = None,
    service_min_advance_hours: Optional[int] = None,
    service_max_advance_days: Optional[int] = None,
    enforce_capacity: bool = True,
    config: BookingConfig | None = None,
) -> list[Slot]:
    """
    Calculate slots for one day.

    Returns:
        Slots sorted by (starts_at, window_id). Empty list = no slots.
    """
    config = config or get_booking_config()
    occupied = list(occupied)
    blocked = set(blocked_starts)

    blocking = [w for w in day_windows if w.is_blocking]
    open_windows = [w for w in day_windows if not w.is_blocking]

    slots: list[Slot] = []

    for window in open_windows:
        min_hours = _first_set(window.min_advance_booking_hours, service_min_advance_hours, 0)
        max_days = _first_set(window.max_advance_booking_days, service_max_advance_days, None)

        earliest = now + timedelta(hours=min_hours)
        latest = now + timedelta(days=max_days) if max_days is not None else None

        in_window = [o for o in occupied if o.window_id is None or o.window_id == window.window_id]

        for start in window_slot_starts(window, duration_minutes, default_step_minutes):
            end = start + timedelta(minutes=duration_minutes)

            if start < now or start < earliest:
                continue
            if latest is not None and start > latest:
                break

            if any(overlaps(start, end, b.starts_at, b.ends_at) for b in blocking):
                continue
            if start in blocked:
                continue

            capacity, booked = binding_pool(
                window.max_bookings,
                sum(1 for o in in_window if overlaps(start, end, o.starts_at, o.ends_at)),
                location_capacity,
                sum(1 for o in occupied if overlaps(start, end, o.starts_at, o.ends_at)),
                config.default_capacity,
            )
            if enforce_capacity and booked >= capacity:
                continue

            slots.append(Slot(
                starts_at=start,
                ends_at=end,
                window_id=window.window_id,
                location_id=window.location_id,
                capacity=capacity,
                booked=booked,
                price_modifier=window.price_modifier,
                price_modifier_type=window.price_modifier_type,
            ))

    slots.sort(key=lambda s: (s.starts_at, s.window_id or 0))
    return slots


class SlotSequence:
    """
    Lazy, finite, restartable sequence of slots over [start_date, end_date].

    Every iter() starts from scratch; no iterator state is kept between
    iterations. Windows are fetched per day through ``windows_for``.
    """

    def __init__(
        self,
        windows_for: Callable[[date], list[ResolvedWindow]],
        start_date: date,
        end_date: date,
        **day_kwargs,
    ):
        self._windows_for = windows_for
        self.start_date = start_date
        self.end_date = end_date
        self._day_kwargs = day_kwargs

    def __iter__(self) -> Iterator[Slot]:
        current = self.start_date
        while current <= self.end_date:
            yield from generate_day_slots(self._windows_for(current), **self._day_kwargs)
            current += timedelta(days=1)


# ── Helpers ──────────────────────────────────────────────────────────────


def _first_set(*values):
    for value in values[:-1]:
        if value is not None:
            return value
    return values[-1]
