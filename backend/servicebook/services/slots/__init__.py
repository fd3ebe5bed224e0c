# backend/servicebook/services/slots/__init__.py
"""
Slots calculation module.

Level 1: Resolved day windows (cached in Redis Sorted Sets)
Level 2: Bookable slots with capacity (calculated on-the-fly)
"""

from .config import BookingConfig, get_booking_config
from .windows import ResolvedWindow, resolve_day_windows
from .calculator import Slot, SlotSequence, generate_day_slots
from .redis_store import SlotsRedisStore
from .invalidator import invalidate_service_cache
from .availability import calculate_available_slots

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "ResolvedWindow",
    "resolve_day_windows",
    "Slot",
    "SlotSequence",
    "generate_day_slots",
    "SlotsRedisStore",
    "invalidate_service_cache",
    "calculate_available_slots",
]
