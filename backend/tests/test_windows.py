from datetime import date, time
from types import SimpleNamespace

from servicebook.services.slots.windows import (
    ResolvedWindow,
    is_window_applicable,
    resolve_day_windows,
)

MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)


def win(id, **kw):
    values = dict(
        id=id,
        service_location_id=None,
        type="regular",
        pattern="weekly",
        day_of_week=0,
        start_date=None,
        end_date=None,
        start_time=time(9),
        end_time=time(17),
        slot_duration_minutes=None,
        break_duration_minutes=0,
        max_bookings=None,
        min_advance_booking_hours=None,
        max_advance_booking_days=None,
        price_modifier=None,
        price_modifier_type=None,
        is_bookable=True,
        is_active=True,
    )
    values.update(kw)
    return SimpleNamespace(**values)


class TestApplicability:
    def test_weekly_matches_weekday(self):
        w = win(1, pattern="weekly", day_of_week=0)
        assert is_window_applicable(w, MONDAY)
        assert not is_window_applicable(w, TUESDAY)

    def test_daily_respects_optional_bounds(self):
        w = win(1, pattern="daily", day_of_week=None, start_date=TUESDAY)
        assert not is_window_applicable(w, MONDAY)
        assert is_window_applicable(w, TUESDAY)
        assert is_window_applicable(win(2, pattern="daily", day_of_week=None), MONDAY)

    def test_date_range_inclusive(self):
        w = win(1, pattern="date_range", day_of_week=None, start_date=MONDAY, end_date=TUESDAY)
        assert is_window_applicable(w, MONDAY)
        assert is_window_applicable(w, TUESDAY)
        assert not is_window_applicable(w, date(2030, 1, 9))

    def test_specific_date(self):
        w = win(1, pattern="specific_date", day_of_week=None, start_date=TUESDAY)
        assert is_window_applicable(w, TUESDAY)
        assert not is_window_applicable(w, MONDAY)

    def test_inactive_window_never_applies(self):
        assert not is_window_applicable(win(1, is_active=False), MONDAY)

    def test_location_scoped_window_needs_that_location(self):
        w = win(1, service_location_id=5)
        assert not is_window_applicable(w, MONDAY, None)
        assert not is_window_applicable(w, MONDAY, 6)
        assert is_window_applicable(w, MONDAY, 5)
        assert is_window_applicable(win(2), MONDAY, 5)


class TestResolveDayWindows:
    def test_no_windows_means_unbookable_day(self):
        assert resolve_day_windows([win(1)], TUESDAY) == []

    def test_blocking_windows_come_first(self):
        windows = [
            win(1, pattern="weekly"),
            win(2, pattern="daily", day_of_week=None, type="blocked", is_bookable=False, max_bookings=0,
                start_time=time(12), end_time=time(13)),
        ]
        resolved = resolve_day_windows(windows, MONDAY)
        assert [r.window_id for r in resolved] == [2, 1]
        assert resolved[0].is_blocking

    def test_zero_max_bookings_or_not_bookable_is_blocking(self):
        resolved = resolve_day_windows([win(1, max_bookings=0), win(2, is_bookable=False)], MONDAY)
        assert all(r.is_blocking for r in resolved)

    def test_specific_date_covering_weekly_suppresses_it(self):
        windows = [
            win(1, pattern="weekly", start_time=time(10), end_time=time(12)),
            win(2, pattern="specific_date", day_of_week=None, start_date=MONDAY,
                start_time=time(9), end_time=time(13), price_modifier=2000),
        ]
        resolved = resolve_day_windows(windows, MONDAY)
        assert [r.window_id for r in resolved] == [2]
        assert resolved[0].rank == 3

    def test_partially_overlapping_windows_are_separate_pools(self):
        windows = [
            win(1, pattern="weekly", start_time=time(9), end_time=time(12)),
            win(2, pattern="date_range", day_of_week=None, start_date=MONDAY, end_date=MONDAY,
                start_time=time(11), end_time=time(14)),
        ]
        resolved = resolve_day_windows(windows, MONDAY)
        assert [r.window_id for r in resolved] == [2, 1]

    def test_equal_rank_windows_ordered_by_start_then_id(self):
        windows = [
            win(3, start_time=time(13), end_time=time(15)),
            win(2, start_time=time(9), end_time=time(11)),
            win(1, start_time=time(9), end_time=time(10)),
        ]
        assert [r.window_id for r in resolve_day_windows(windows, MONDAY)] == [1, 2, 3]

    def test_resolution_is_per_date(self):
        windows = [
            win(1, pattern="weekly", day_of_week=1, start_time=time(10), end_time=time(12)),
            win(2, pattern="specific_date", day_of_week=None, start_date=MONDAY,
                start_time=time(9), end_time=time(13)),
        ]
        assert [r.window_id for r in resolve_day_windows(windows, TUESDAY)] == [1]

    def test_resolved_window_serialises(self):
        resolved = resolve_day_windows([win(1, price_modifier=500)], MONDAY)[0]
        assert ResolvedWindow.from_dict(resolved.to_dict()) == resolved
