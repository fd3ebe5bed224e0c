# backend/servicebook/services/refund_policy.py
"""Refund eligibility for cancelled bookings."""

from dataclasses import dataclass
from datetime import datetime

from ..config import settings


@dataclass(frozen=True)
class RefundTier:
    min_hours_before: int
    percent: int


class RefundPolicy:
    """
    Hours between cancellation and scheduled start → refund percentage.

    Tiers are checked from the largest notice down; the first one whose
    min_hours_before is met wins. No tier met → 0%.
    """

    def __init__(self, tiers: list[RefundTier]):
        self.tiers = sorted(tiers, key=lambda t: t.min_hours_before, reverse=True)

    @classmethod
    def from_settings(cls) -> "RefundPolicy":
        return cls([
            RefundTier(settings.refund_full_hours, 100),
            RefundTier(settings.refund_partial_hours, settings.refund_partial_percent),
        ])

    def evaluate(self, booking, cancelled_at: datetime) -> int:
        hours_before = (booking.scheduled_at - cancelled_at).total_seconds() / 3600
        for tier in self.tiers:
            if hours_before >= tier.min_hours_before:
                return tier.percent
        return 0


def get_refund_policy() -> RefundPolicy:
    """FastAPI dependency."""
    return RefundPolicy.from_settings()
