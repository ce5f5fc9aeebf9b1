from datetime import datetime, timedelta, timezone

from agenda.domain.scheduling.time_windows import (
    BufferPolicy,
    TimeWindow,
    coerce_datetime,
    find_conflict,
    local_day_bounds,
)
from agenda.models import Professional


class TestTimeWindow:
    def test_touching_windows_do_not_overlap(self):
        first = TimeWindow(datetime(2026, 3, 11, 14, 0), datetime(2026, 3, 11, 15, 0))
        second = TimeWindow(datetime(2026, 3, 11, 15, 0), datetime(2026, 3, 11, 16, 0))
        assert not first.overlaps(second)
        assert not second.overlaps(first)

    def test_partial_overlap(self):
        first = TimeWindow(datetime(2026, 3, 11, 14, 0), datetime(2026, 3, 11, 15, 0))
        second = TimeWindow(datetime(2026, 3, 11, 14, 59), datetime(2026, 3, 11, 16, 0))
        assert first.overlaps(second)

    def test_buffered_extends_both_edges(self):
        window = TimeWindow.from_duration(datetime(2026, 3, 11, 14, 0), 50).buffered(10, 15)
        assert window.start == datetime(2026, 3, 11, 13, 50)
        assert window.end == datetime(2026, 3, 11, 15, 5)


class TestBufferPolicy:
    def test_missing_settings_fall_back_to_defaults(self):
        professional = Professional(name="Ana", buffer_before_minutes=5)
        policy = BufferPolicy.for_professional(professional)
        assert policy.buffer_before_minutes == 5
        assert policy.buffer_after_minutes == BufferPolicy().buffer_after_minutes
        assert policy.reservation_hold_minutes == BufferPolicy().reservation_hold_minutes

    def test_zero_is_kept(self):
        professional = Professional(name="Ana", buffer_before_minutes=0, min_notice_hours=0)
        policy = BufferPolicy.for_professional(professional)
        assert policy.buffer_before_minutes == 0
        assert policy.min_notice_hours == 0

    def test_find_conflict_needs_gap_of_both_buffers(self):
        class Entry:
            def __init__(self, date_time, duration_minutes):
                self.date_time = date_time
                self.duration_minutes = duration_minutes

        policy = BufferPolicy(buffer_before_minutes=10, buffer_after_minutes=10)
        booked = Entry(datetime(2026, 3, 11, 14, 0), 50)

        too_close = policy.buffered_window(datetime(2026, 3, 11, 15, 9), 30)
        far_enough = policy.buffered_window(datetime(2026, 3, 11, 15, 10), 30)
        assert find_conflict(too_close, policy, [booked]) is booked
        assert find_conflict(far_enough, policy, [booked]) is None


class TestDates:
    def test_coerce_accepts_zulu_strings(self):
        assert coerce_datetime("2026-03-11T14:00:00Z") == datetime(2026, 3, 11, 14, 0)

    def test_coerce_converts_aware_values_to_naive_utc(self):
        aware = datetime(2026, 3, 11, 11, 0, tzinfo=timezone(timedelta(hours=-3)))
        assert coerce_datetime(aware) == datetime(2026, 3, 11, 14, 0)

    def test_coerce_rejects_garbage(self):
        assert coerce_datetime("next tuesday") is None
        assert coerce_datetime(None) is None
        assert coerce_datetime(42) is None

    def test_local_day_bounds_follow_professional_timezone(self):
        # 01:00 UTC on the 11th is still the 10th in Sao Paulo (UTC-3)
        start, end = local_day_bounds(datetime(2026, 3, 11, 1, 0), "America/Sao_Paulo")
        assert start == datetime(2026, 3, 10, 3, 0)
        assert end == datetime(2026, 3, 11, 3, 0)

    def test_unknown_timezone_uses_default(self):
        start, end = local_day_bounds(datetime(2026, 3, 11, 12, 0), "Mars/Olympus_Mons")
        assert end - start == timedelta(days=1)
