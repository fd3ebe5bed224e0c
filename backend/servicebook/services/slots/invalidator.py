# backend/servicebook/services/slots/invalidator.py
"""
Cache invalidation for resolved service windows.

Triggers:
✓ Availability window created/updated → invalidate affected dates
  (weekly/daily windows → all cached dates of the service)
✓ Location deactivated → invalidate all dates of the service

Does NOT trigger:
✗ Booking created/cancelled (capacity is calculated on-the-fly)
✗ Manual capacity blocks (read live with bookings)
"""

from datetime import date, timedelta
import logging

from redis import Redis

from ...constants import WindowPattern
from .redis_store import SlotsRedisStore

logger = logging.getLogger(__name__)


def invalidate_service_cache(
    redis: Redis,
    service_id: int,
    dates: list[date] | None = None,
) -> int:
    """
    Invalidate cached windows for a service.

    Args:
        redis: Redis client
        service_id: Service ID
        dates: Specific dates to invalidate, or None for all cached dates

    Returns:
        Number of deleted cache keys
    """
    store = SlotsRedisStore(redis)
    deleted = store.delete_day_windows(service_id, dates)
    logger.info(f"Slots cache invalidated for service={service_id}: {deleted} keys")
    return deleted


def get_affected_dates(
    date_start: date,
    date_end: date,
) -> list[date]:
    """List of dates in [date_start, date_end] (inclusive, order-insensitive)."""
    if date_start > date_end:
        date_start, date_end = date_end, date_start

    dates = []
    current = date_start
    while current <= date_end:
        dates.append(current)
        current += timedelta(days=1)

    return dates


def get_affected_dates_from_window(window) -> list[date] | None:
    """
    Dates touched by a window change.

    Returns:
        List of dates, or None when the window recurs (all dates affected).
    """
    if window.pattern == WindowPattern.SPECIFIC_DATE and window.start_date:
        return [window.start_date]
    if window.pattern == WindowPattern.DATE_RANGE and window.start_date and window.end_date:
        return get_affected_dates(window.start_date, window.end_date)
    return None
