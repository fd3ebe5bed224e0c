# backend/servicebook/services/slots/windows.py
"""
Availability window index.

Answers "which windows apply to this service/location on this date".

Applicability:
  weekly         day_of_week == date.weekday()  (0 = Monday)
  daily          every day (bounded by start_date/end_date when set)
  date_range     start_date <= date <= end_date
  specific_date  start_date == date

Precedence:
  specific_date (3) > date_range (2) > weekly (1) > daily (0)

- Blocking windows (type=blocked, is_bookable=false or max_bookings=0)
  always win: they come first and every slot overlapping them is removed.
- Non-blocking windows overlapping each other are separate capacity pools,
  unless a higher-ranked window fully covers a lower-ranked one on that
  date; the lower one is then suppressed for that date only.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...constants import ModifierType, WindowPattern, WindowType
from .config import time_to_minutes


PATTERN_RANK = {
    WindowPattern.SPECIFIC_DATE: 3,
    WindowPattern.DATE_RANGE: 2,
    WindowPattern.WEEKLY: 1,
    WindowPattern.DAILY: 0,
}


@dataclass(frozen=True)
class ResolvedWindow:
    """A window pinned to a concrete date. Plain values only (cacheable)."""
    window_id: Optional[int]
    date: date
    start_minutes: int
    end_minutes: int
    type: str
    pattern: str
    rank: int
    is_blocking: bool
    location_id: Optional[int] = None
    slot_duration_minutes: Optional[int] = None
    break_duration_minutes: int = 0
    max_bookings: Optional[int] = None
    min_advance_booking_hours: Optional[int] = None
    max_advance_booking_days: Optional[int] = None
    price_modifier: int = 0
    price_modifier_type: str = ModifierType.FIXED

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, datetime.min.time()) + timedelta(minutes=self.start_minutes)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, datetime.min.time()) + timedelta(minutes=self.end_minutes)

    def covers(self, other: "ResolvedWindow") -> bool:
        return self.start_minutes <= other.start_minutes and self.end_minutes >= other.end_minutes

    def to_dict(self) -> dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ResolvedWindow":
        data = dict(data)
        data["date"] = date.fromisoformat(data["date"])
        return cls(**data)


def is_blocking_window(window) -> bool:
    return (
        window.type == WindowType.BLOCKED
        or not window.is_bookable
        or window.max_bookings == 0
    )


def is_window_applicable(window, target_date: date, location_id: Optional[int] = None) -> bool:
    """Check pattern, dates, active flag and location scope for one window."""
    if not window.is_active:
        return False

    if window.service_location_id is not None and window.service_location_id != location_id:
        return False

    pattern = window.pattern

    if pattern == WindowPattern.WEEKLY:
        return window.day_of_week == target_date.weekday()

    if pattern == WindowPattern.DAILY:
        if window.start_date and target_date < window.start_date:
            return False
        if window.end_date and target_date > window.end_date:
            return False
        return True

    if pattern == WindowPattern.DATE_RANGE:
        if not window.start_date or not window.end_date:
            return False
        return window.start_date <= target_date <= window.end_date

    if pattern == WindowPattern.SPECIFIC_DATE:
        return window.start_date == target_date

    return False


def resolve_window(window, target_date: date) -> ResolvedWindow:
    """Pin a window row to a date."""
    blocking = is_blocking_window(window)
    return ResolvedWindow(
        window_id=window.id,
        date=target_date,
        start_minutes=time_to_minutes(window.start_time),
        end_minutes=time_to_minutes(window.end_time),
        type=window.type,
        pattern=window.pattern,
        rank=PATTERN_RANK.get(window.pattern, 0),
        is_blocking=blocking,
        location_id=window.service_location_id,
        slot_duration_minutes=window.slot_duration_minutes,
        break_duration_minutes=window.break_duration_minutes or 0,
        max_bookings=0 if blocking else window.max_bookings,
        min_advance_booking_hours=window.min_advance_booking_hours,
        max_advance_booking_days=window.max_advance_booking_days,
        price_modifier=window.price_modifier or 0,
        price_modifier_type=window.price_modifier_type or ModifierType.FIXED,
    )


def resolve_day_windows(
    windows: Iterable,
    target_date: date,
    location_id: Optional[int] = None,
) -> list[ResolvedWindow]:
    """
    Resolve the ordered set of windows applicable on target_date.

    Returns:
        Blocking windows first, then open windows by rank (desc),
        start time, id. Empty list = the day is unbookable.
    """
    resolved = [
        resolve_window(w, target_date)
        for w in windows
        if is_window_applicable(w, target_date, location_id)
    ]
    resolved = [r for r in resolved if r.start_minutes < r.end_minutes]

    blocking = [r for r in resolved if r.is_blocking]
    open_windows = [r for r in resolved if not r.is_blocking]

    # A more specific window covering a less specific one replaces it
    kept = [
        r for r in open_windows
        if not any(o.rank > r.rank and o.covers(r) for o in open_windows)
    ]

    def order_key(r: ResolvedWindow):
        return (-r.rank, r.start_minutes, r.window_id or 0)

    return sorted(blocking, key=order_key) + sorted(kept, key=order_key)


# ── Database helpers ─────────────────────────────────────────────────────


def load_service_windows(
    db: Session,
    service_id: int,
    location_id: Optional[int] = None,
) -> list:
    """Active windows of a service scoped to the location (or location-less)."""
    from ...models.tables import ServiceAvailabilityWindows as DBWindow

    query = db.query(DBWindow).filter(
        DBWindow.service_id == service_id,
        DBWindow.is_active.is_(True),
    )
    if location_id is None:
        query = query.filter(DBWindow.service_location_id.is_(None))
    else:
        query = query.filter(
            (DBWindow.service_location_id == location_id)
            | (DBWindow.service_location_id.is_(None))
        )
    return query.order_by(DBWindow.start_time, DBWindow.id).all()
