# backend/servicebook/services/slots/config.py
"""
Booking configuration for slots calculation.
"""

from dataclasses import dataclass
from datetime import datetime, time, timezone
from functools import lru_cache


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for booking/slots system.

    Attributes:
        default_capacity: Concurrent bookings per slot when neither the window
                          nor the location sets a limit
        max_range_days: Longest date range a single slots query may cover
        cache_ttl_seconds: Redis cache TTL for resolved day windows
    """
    default_capacity: int = 1
    max_range_days: int = 92
    cache_ttl_seconds: int = 86400  # 24 hours

    def __post_init__(self):
        """Validate configuration."""
        if self.default_capacity < 1:
            raise ValueError(f"default_capacity must be >= 1, got {self.default_capacity}")
        if self.max_range_days < 1:
            raise ValueError(f"max_range_days must be >= 1, got {self.max_range_days}")


@lru_cache
def get_booking_config() -> BookingConfig:
    """
    Get booking configuration (singleton).

    In the future, this can read from environment or database.
    """
    return BookingConfig()


# ── Time helpers ─────────────────────────────────────────────────────────


def utcnow() -> datetime:
    """Naive UTC now; all stored datetimes are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def time_str_to_minutes(value: str) -> int:
    """"HH:MM" → minutes since midnight."""
    hour, minute = value.split(":")
    return int(hour) * 60 + int(minute)
