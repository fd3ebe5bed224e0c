# backend/servicebook/services/slots/redis_store.py
"""
Redis storage for resolved day windows using Sorted Sets.

Key format: slots:windows:{service_id}:{location_id|-}:{date}
Value: Sorted Set where member = JSON of ResolvedWindow,
       score = window end timestamp (window stops producing slots).

Query: ZRANGEBYSCORE key {now_ts} +inf → only windows that can still
produce slots. Bookings are never cached (capacity is checked live).
Sentinel: "__empty__" with score=0 marks "calculated, zero windows".
"""

import json
from datetime import date, datetime
from typing import Optional

from redis import Redis

from .config import BookingConfig, get_booking_config
from .windows import ResolvedWindow


EMPTY_SENTINEL = "__empty__"


class SlotsRedisStore:
    """Redis storage wrapper using Sorted Sets for resolved windows."""

    KEY_PREFIX = "slots:windows"

    def __init__(self, redis: Redis, config: BookingConfig | None = None):
        self.redis = redis
        self.config = config or get_booking_config()

    def _key(self, service_id: int, location_id: Optional[int], dt: date) -> str:
        loc = location_id if location_id is not None else "-"
        return f"{self.KEY_PREFIX}:{service_id}:{loc}:{dt.isoformat()}"

    def _pattern(self, service_id: int) -> str:
        return f"{self.KEY_PREFIX}:{service_id}:*"

    # ── Write ────────────────────────────────────────────────────────────

    def store_day_windows(
        self,
        service_id: int,
        location_id: Optional[int],
        dt: date,
        windows: list[ResolvedWindow],
    ) -> None:
        """
        Store resolved windows for a day.

        Empty list → sentinel is stored.
        """
        key = self._key(service_id, location_id, dt)
        pipe = self.redis.pipeline()

        pipe.delete(key)

        if windows:
            mapping = {
                json.dumps(w.to_dict(), sort_keys=True): w.ends_at.timestamp()
                for w in windows
            }
            pipe.zadd(key, mapping)
        else:
            pipe.zadd(key, {EMPTY_SENTINEL: 0})

        pipe.expire(key, self.config.cache_ttl_seconds)
        pipe.execute()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_day_windows(
        self,
        service_id: int,
        location_id: Optional[int],
        dt: date,
        now: datetime,
    ) -> list[ResolvedWindow] | None:
        """
        Get live windows for a day.

        Returns:
            Windows in stored precedence order, or None on cache miss.
        """
        key = self._key(service_id, location_id, dt)
        if not self.redis.exists(key):
            return None

        members = self.redis.zrangebyscore(key, now.timestamp(), "+inf")
        windows = []
        for m in members:
            raw = m.decode() if isinstance(m, bytes) else m
            if raw == EMPTY_SENTINEL:
                continue
            windows.append(ResolvedWindow.from_dict(json.loads(raw)))

        # Sorted set orders by score; restore precedence order
        blocking = [w for w in windows if w.is_blocking]
        open_windows = [w for w in windows if not w.is_blocking]

        def order_key(w: ResolvedWindow):
            return (-w.rank, w.start_minutes, w.window_id or 0)

        return sorted(blocking, key=order_key) + sorted(open_windows, key=order_key)

    # ── Delete ───────────────────────────────────────────────────────────

    def delete_day_windows(
        self,
        service_id: int,
        dates: list[date] | None = None,
    ) -> int:
        """
        Delete cached windows of a service (all locations).

        Returns:
            Number of deleted keys.
        """
        if dates is None:
            keys = list(self.redis.scan_iter(match=self._pattern(service_id)))
        else:
            keys = []
            for dt in dates:
                keys.extend(self.redis.scan_iter(
                    match=f"{self.KEY_PREFIX}:{service_id}:*:{dt.isoformat()}"
                ))

        if not keys:
            return 0
        return self.redis.delete(*keys)
