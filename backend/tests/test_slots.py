import json
from datetime import datetime, time, timedelta

import pytest

from conftest import MONDAY, NOW, make_add_on, make_location, make_service, make_window
from servicebook.errors import NotFoundError, ValidationError
from servicebook.models.tables import BookingCapacitySlots, Bookings
from servicebook.services.pricing import AddOnSelection
from servicebook.services.slots import calculate_available_slots, generate_day_slots
from servicebook.services.slots.calculator import OccupiedInterval, binding_pool
from servicebook.services.slots.windows import ResolvedWindow


def rw(window_id=1, start="09:00", end="12:00", **kw):
    sh, sm = map(int, start.split(":"))
    eh, em = map(int, end.split(":"))
    values = dict(
        window_id=window_id,
        date=MONDAY,
        start_minutes=sh * 60 + sm,
        end_minutes=eh * 60 + em,
        type="regular",
        pattern="weekly",
        rank=1,
        is_blocking=False,
    )
    values.update(kw)
    return ResolvedWindow(**values)


def at(hour, minute=0, day=MONDAY):
    return datetime.combine(day, time(hour, minute))


def starts(slots):
    return [s.starts_at.strftime("%H:%M") for s in slots]


class TestGenerateDaySlots:
    def test_grid_uses_service_duration_by_default(self):
        slots = generate_day_slots([rw()], duration_minutes=60, default_step_minutes=60, now=NOW)
        assert starts(slots) == ["09:00", "10:00", "11:00"]

    def test_slot_duration_and_break_define_the_step(self):
        window = rw(slot_duration_minutes=30, break_duration_minutes=15)
        slots = generate_day_slots([window], duration_minutes=30, default_step_minutes=60, now=NOW)
        assert starts(slots) == ["09:00", "09:45", "10:30", "11:15"]

    def test_slot_must_fit_before_window_end(self):
        slots = generate_day_slots([rw()], duration_minutes=90, default_step_minutes=60, now=NOW)
        assert starts(slots) == ["09:00", "10:00"]

    def test_blocking_window_removes_overlapping_slots(self):
        blocked = rw(2, "10:30", "11:30", type="blocked", is_blocking=True, max_bookings=0)
        slots = generate_day_slots([blocked, rw()], duration_minutes=60, default_step_minutes=60, now=NOW)
        assert starts(slots) == ["09:00"]

    def test_slots_before_now_are_excluded(self):
        slots = generate_day_slots([rw()], duration_minutes=60, default_step_minutes=60, now=at(10, 30))
        assert starts(slots) == ["11:00"]

    def test_window_min_advance_overrides_service(self):
        window = rw(min_advance_booking_hours=2)
        slots = generate_day_slots(
            [window], duration_minutes=60, default_step_minutes=60, now=NOW, service_min_advance_hours=24
        )
        assert starts(slots) == ["10:00", "11:00"]

    def test_service_max_advance_applies_without_window_value(self):
        slots = generate_day_slots(
            [rw()], duration_minutes=60, default_step_minutes=60,
            now=NOW - timedelta(days=10), service_max_advance_days=7,
        )
        assert slots == []

    def test_full_slot_is_excluded(self):
        occupied = [OccupiedInterval(at(10), at(11), 1)]
        slots = generate_day_slots([rw()], duration_minutes=60, default_step_minutes=60, now=NOW, occupied=occupied)
        assert starts(slots) == ["09:00", "11:00"]

    def test_capacity_counts_overlapping_bookings(self):
        occupied = [OccupiedInterval(at(10), at(11), 1), OccupiedInterval(at(10, 30), at(11, 30), 2)]
        slots = generate_day_slots(
            [rw(max_bookings=3)], duration_minutes=60, default_step_minutes=60, now=NOW, occupied=occupied
        )
        by_start = {s.starts_at.strftime("%H:%M"): s for s in slots}
        assert by_start["10:00"].booked == 2
        assert by_start["10:00"].remaining == 1
        assert by_start["11:00"].booked == 1

    def test_location_capacity_caps_window_capacity(self):
        slots = generate_day_slots(
            [rw(max_bookings=5)], duration_minutes=60, default_step_minutes=60, now=NOW, location_capacity=2
        )
        assert {s.capacity for s in slots} == {2}

    def test_manual_capacity_block_removes_slot(self):
        slots = generate_day_slots(
            [rw()], duration_minutes=60, default_step_minutes=60, now=NOW, blocked_starts={at(9)}
        )
        assert starts(slots) == ["10:00", "11:00"]

    def test_overlapping_windows_sorted_chronologically(self):
        slots = generate_day_slots(
            [rw(2, "09:30", "11:30", rank=2), rw(1)], duration_minutes=60, default_step_minutes=60, now=NOW
        )
        assert starts(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00"]

    def test_slot_carries_window_price_modifier(self):
        slots = generate_day_slots(
            [rw(price_modifier=20, price_modifier_type="percentage")],
            duration_minutes=60, default_step_minutes=60, now=NOW,
        )
        assert slots[0].price_modifier == 20
        assert slots[0].price_modifier_type == "percentage"

    def test_overlapping_windows_keep_separate_pools(self):
        first, second = rw(1, "09:00", "12:00", max_bookings=1), rw(2, "10:00", "13:00", max_bookings=1)
        occupied = [OccupiedInterval(at(10), at(11), 1, window_id=1)]

        slots = generate_day_slots(
            [first, second], duration_minutes=60, default_step_minutes=60, now=NOW, occupied=occupied
        )

        assert [(s.starts_at.strftime("%H:%M"), s.window_id) for s in slots] == [
            ("09:00", 1), ("10:00", 2), ("11:00", 1), ("11:00", 2), ("12:00", 2),
        ]

    def test_location_pool_counts_bookings_of_every_window(self):
        first, second = rw(1, "09:00", "12:00", max_bookings=1), rw(2, "10:00", "13:00", max_bookings=1)
        occupied = [OccupiedInterval(at(10), at(11), 1, window_id=1)]

        slots = generate_day_slots(
            [first, second], duration_minutes=60, default_step_minutes=60, now=NOW,
            occupied=occupied, location_capacity=1,
        )

        assert "10:00" not in starts(slots)


def test_binding_pool_is_the_one_with_fewest_free_seats():
    assert binding_pool(None, 0, None, 0, 1) == (1, 0)
    assert binding_pool(4, 1, None, 3, 1) == (4, 1)
    assert binding_pool(None, 0, 3, 2, 1) == (3, 2)
    assert binding_pool(4, 1, 3, 2, 1) == (3, 2)
    assert binding_pool(2, 1, 5, 1, 1) == (2, 1)


class TestCalculateAvailableSlots:
    def test_sequence_is_restartable(self, db, service, monday_window):
        slots = calculate_available_slots(db, service.id, MONDAY, MONDAY + timedelta(days=7), now=NOW)
        first = list(slots)
        assert first == list(slots)
        assert len(first) == 6  # two Mondays × 3

    def test_existing_bookings_and_buffer_reduce_availability(self, db, user, service, monday_window):
        service.buffer_minutes = 15
        db.add(Bookings(
            user_id=user.id,
            service_id=service.id,
            booking_reference="BK00000001",
            scheduled_at=at(9),
            ends_at=at(10),
            duration_minutes=60,
            base_price=10000,
            total_amount=10000,
            status="confirmed",
            client_name="Ada",
            client_email="ada@example.com",
        ))
        db.commit()

        slots = calculate_available_slots(db, service.id, MONDAY, MONDAY, now=NOW)
        # 10:00 overlaps the 15-minute buffer of the 09:00 booking
        assert starts(slots) == ["11:00"]

    def test_cancelled_bookings_free_the_slot(self, db, user, service, monday_window):
        db.add(Bookings(
            user_id=user.id,
            service_id=service.id,
            booking_reference="BK00000002",
            scheduled_at=at(9),
            ends_at=at(10),
            duration_minutes=60,
            base_price=10000,
            total_amount=10000,
            status="cancelled",
            client_name="Ada",
            client_email="ada@example.com",
        ))
        db.commit()

        assert starts(calculate_available_slots(db, service.id, MONDAY, MONDAY, now=NOW)) == [
            "09:00", "10:00", "11:00",
        ]

    def test_add_on_duration_extends_required_duration(self, db, service, monday_window):
        add_on = make_add_on(db, service, duration_minutes=30, max_quantity=2)
        slots = calculate_available_slots(
            db, service.id, MONDAY, MONDAY, add_ons=[AddOnSelection(add_on.id, 2)], now=NOW
        )
        # 120 minutes needed in a 09:00-12:00 window on a 60-minute grid
        assert starts(slots) == ["09:00", "10:00"]
        assert all(s.ends_at - s.starts_at == timedelta(minutes=120) for s in slots)

    def test_location_windows_only_for_that_location(self, db, service, monday_window):
        location = make_location(db, service, max_capacity=3)
        make_window(db, service, service_location_id=location.id, start_time=time(14), end_time=time(15))

        without = calculate_available_slots(db, service.id, MONDAY, MONDAY, now=NOW)
        with_location = calculate_available_slots(db, service.id, MONDAY, MONDAY, location_id=location.id, now=NOW)

        assert starts(without) == ["09:00", "10:00", "11:00"]
        assert starts(with_location) == ["09:00", "10:00", "11:00", "14:00"]
        assert {s.capacity for s in with_location} == {3}

    def test_capacity_block_rows_are_applied(self, db, service, monday_window):
        db.add(BookingCapacitySlots(service_id=service.id, slot_datetime=at(10), is_blocked=True))
        db.commit()
        assert starts(calculate_available_slots(db, service.id, MONDAY, MONDAY, now=NOW)) == ["09:00", "11:00"]

    def test_inactive_service_is_not_found(self, db):
        draft = make_service(db, status="draft")
        with pytest.raises(NotFoundError):
            calculate_available_slots(db, draft.id, MONDAY, MONDAY, now=NOW)

    def test_reversed_range_is_rejected(self, db, service):
        with pytest.raises(ValidationError):
            calculate_available_slots(db, service.id, MONDAY, MONDAY - timedelta(days=1), now=NOW)

    def test_quantity_over_max_is_rejected(self, db, service, monday_window):
        add_on = make_add_on(db, service, max_quantity=2)
        with pytest.raises(ValidationError):
            calculate_available_slots(db, service.id, MONDAY, MONDAY, add_ons=[AddOnSelection(add_on.id, 3)], now=NOW)

    def test_windows_are_read_from_cache_when_present(self, db, service, monday_window, redis_mock):
        cached = rw(window_id=monday_window.id, start="09:00", end="10:00")
        redis_mock.exists.return_value = 1
        redis_mock.zrangebyscore.return_value = [
            json.dumps(cached.to_dict(), sort_keys=True)
        ]

        slots = calculate_available_slots(db, service.id, MONDAY, MONDAY, now=NOW, redis=redis_mock)
        assert starts(slots) == ["09:00"]

    def test_cache_miss_stores_resolved_windows(self, db, service, monday_window, redis_mock):
        redis_mock.exists.return_value = 0
        slots = calculate_available_slots(db, service.id, MONDAY, MONDAY, now=NOW, redis=redis_mock)
        assert len(list(slots)) == 3
        redis_mock.pipeline.return_value.zadd.assert_called_once()

    def test_booking_in_one_window_leaves_overlapping_window_open(self, db, user, service, monday_window):
        monday_window.max_bookings = 1
        later_window = make_window(
            db, service, type="special_hours", start_time=time(10), end_time=time(13), max_bookings=1
        )
        db.add(Bookings(
            user_id=user.id,
            service_id=service.id,
            availability_window_id=monday_window.id,
            booking_reference="BK00000003",
            scheduled_at=at(10),
            ends_at=at(11),
            duration_minutes=60,
            base_price=10000,
            total_amount=10000,
            status="confirmed",
            client_name="Ada",
            client_email="ada@example.com",
        ))
        db.commit()

        slots = list(calculate_available_slots(db, service.id, MONDAY, MONDAY, now=NOW))

        assert starts(s for s in slots if s.window_id == later_window.id) == ["10:00", "11:00", "12:00"]
        assert starts(s for s in slots if s.window_id == monday_window.id) == ["09:00", "11:00"]
