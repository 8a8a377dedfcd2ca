"""Tests for schedule predictions and sleep statistics."""

import random
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from sovelogg.prediction import (
    WAKE_WINDOWS,
    calculate_age_months,
    detect_nap_transition,
    expected_nap_count,
    find_by_age,
    get_average_wake_window,
    get_today_stats,
    get_wake_window,
    get_week_stats,
    predict_day_naps,
    predict_next_nap,
    recommend_bedtime,
    sleep_duration_minutes,
)
from sovelogg.projection.state import Pause, SleepSession

UTC = timezone.utc
OSLO = ZoneInfo("Europe/Oslo")


def session(sid: int, start: datetime, end: datetime | None, kind: str = "nap", **kw) -> SleepSession:
    return SleepSession(id=sid, subject_id=1, start_time=start, end_time=end, kind=kind, **kw)


def day_at(hour: int, minute: int = 0, day: int = 2) -> datetime:
    return datetime(2026, 3, day, hour, minute, tzinfo=UTC)


class TestAge:
    """Tests for age in whole months."""

    def test_exact_months(self):
        assert calculate_age_months(date(2025, 11, 2), date(2026, 3, 2)) == 4

    def test_day_before_anniversary(self):
        assert calculate_age_months(date(2025, 11, 2), date(2026, 3, 1)) == 3

    def test_never_negative(self):
        assert calculate_age_months(date(2026, 5, 1), date(2026, 3, 1)) == 0

    def test_accepts_datetime(self):
        assert calculate_age_months(date(2025, 11, 2), day_at(12)) == 4


class TestWakeWindow:
    """Tests for wake window recommendations."""

    def test_default_is_floor_midpoint(self):
        """Test the 4-6 month bracket midpoint in whole minutes."""
        assert get_wake_window(4) == (105 + 150) // 2 == 127

    def test_one_session_uses_default(self):
        assert get_wake_window(4, [session(1, day_at(8), day_at(9))]) == 127

    def test_observed_average_used(self):
        sessions = [
            session(1, day_at(8), day_at(9)),
            session(2, day_at(11, 10), day_at(12)),
        ]

        assert get_wake_window(4, sessions) == 130

    def test_observed_average_clamped_to_max(self):
        sessions = [
            session(1, day_at(6), day_at(7)),
            session(2, day_at(11), day_at(12)),
        ]

        assert get_wake_window(4, sessions) == 150

    def test_observed_average_clamped_to_min(self):
        sessions = [
            session(1, day_at(6), day_at(7)),
            session(2, day_at(7, 30), day_at(8)),
        ]

        assert get_wake_window(4, sessions) == 105

    def test_ages_past_last_bracket(self):
        assert get_wake_window(40) == (300 + 360) // 2

    @pytest.mark.parametrize("seed", range(20))
    def test_always_within_bracket(self, seed):
        """Test the clamp for arbitrary histories and ages."""
        rng = random.Random(seed)
        age = rng.randint(0, 30)
        start = day_at(0, day=1)
        sessions = []
        for i in range(rng.randint(0, 12)):
            start = start + timedelta(minutes=rng.randint(-60, 700))
            end = start + timedelta(minutes=rng.randint(0, 200))
            sessions.append(session(i + 1, start, end if rng.random() > 0.1 else None))
            start = end

        bracket = find_by_age(WAKE_WINDOWS, age)
        window = get_wake_window(age, sessions)

        assert bracket.min_minutes <= window <= bracket.max_minutes
        assert isinstance(window, int)


class TestAverageWakeWindow:
    """Tests for observed wake windows."""

    def test_single_valid_gap(self):
        """Test 08:00-09:00 and 11:30-12:15 average exactly 150 minutes."""
        sessions = [
            session(1, day_at(8), day_at(9)),
            session(2, day_at(11, 30), day_at(12, 15)),
        ]

        assert get_average_wake_window(sessions) == 150

    def test_gaps_outside_filter_ignored(self):
        sessions = [
            session(1, day_at(8), day_at(9)),
            session(2, day_at(9, 5), day_at(10)),  # 5 min gap
            session(3, day_at(12), day_at(13)),  # 120 min gap
            session(4, day_at(23), day_at(23, 30)),  # 600 min gap
        ]

        assert get_average_wake_window(sessions) == 120

    def test_unordered_input(self):
        sessions = [
            session(2, day_at(11, 30), day_at(12, 15)),
            session(1, day_at(8), day_at(9)),
        ]

        assert get_average_wake_window(sessions) == 150

    def test_active_and_deleted_skipped(self):
        sessions = [
            session(1, day_at(8), day_at(9)),
            session(2, day_at(10), day_at(11), soft_deleted=True),
            session(3, day_at(13), None),
        ]

        assert get_average_wake_window(sessions) is None


class TestDayPlan:
    """Tests for nap predictions."""

    def test_four_month_day_plan(self):
        """Test three 60 minute naps chained from a 07:00 wake-up."""
        wake = day_at(7)
        age = calculate_age_months(date(2025, 11, 2), wake)

        naps = predict_day_naps(wake, age)

        assert age == 4
        assert len(naps) == 3
        assert naps[0].start_time == wake + timedelta(minutes=get_wake_window(4))
        for nap in naps:
            assert nap.end_time - nap.start_time == timedelta(minutes=60)
        for prev, nxt in zip(naps, naps[1:]):
            gap = (nxt.start_time - prev.end_time).total_seconds() / 60
            assert 105 <= gap <= 150

    def test_next_nap(self):
        assert predict_next_nap(day_at(9), 4) == day_at(9) + timedelta(minutes=127)

    def test_nap_count_by_age(self):
        assert expected_nap_count(1) == 4
        assert expected_nap_count(7) == 2
        assert expected_nap_count(14) == 1


class TestBedtime:
    """Tests for bedtime recommendations."""

    def test_no_naps_uses_default(self):
        now = datetime(2026, 3, 2, 10, 0, tzinfo=OSLO)

        bedtime = recommend_bedtime([], 4, now, OSLO)

        assert bedtime == datetime(2026, 3, 2, 19, 0, tzinfo=OSLO)

    def test_clamped_to_earliest(self):
        now = datetime(2026, 3, 2, 12, 0, tzinfo=OSLO)
        naps = [session(1, datetime(2026, 3, 2, 10, 0, tzinfo=OSLO), datetime(2026, 3, 2, 11, 0, tzinfo=OSLO))]

        bedtime = recommend_bedtime(naps, 4, now, OSLO)

        assert bedtime == datetime(2026, 3, 2, 18, 0, tzinfo=OSLO)

    def test_clamped_to_latest(self):
        now = datetime(2026, 3, 2, 20, 0, tzinfo=OSLO)
        naps = [session(1, datetime(2026, 3, 2, 18, 0, tzinfo=OSLO), datetime(2026, 3, 2, 19, 30, tzinfo=OSLO))]

        bedtime = recommend_bedtime(naps, 4, now, OSLO)

        assert bedtime == datetime(2026, 3, 2, 20, 30, tzinfo=OSLO)

    def test_longer_last_window_after_all_naps(self):
        """Test the 1.15 multiplier once the typical nap count is reached."""
        naps = [
            session(1, datetime(2026, 3, 2, 9, 0, tzinfo=OSLO), datetime(2026, 3, 2, 10, 0, tzinfo=OSLO)),
            session(2, datetime(2026, 3, 2, 12, 0, tzinfo=OSLO), datetime(2026, 3, 2, 13, 0, tzinfo=OSLO)),
            session(3, datetime(2026, 3, 2, 15, 30, tzinfo=OSLO), datetime(2026, 3, 2, 16, 30, tzinfo=OSLO)),
        ]
        now = datetime(2026, 3, 2, 17, 0, tzinfo=OSLO)

        bedtime = recommend_bedtime(naps, 4, now, OSLO)

        expected = datetime(2026, 3, 2, 16, 30, tzinfo=OSLO) + timedelta(minutes=round(127 * 1.15))
        assert bedtime == expected


class TestStats:
    """Tests for day and week statistics."""

    def test_pauses_excluded_from_duration(self):
        s = session(
            1, day_at(8), day_at(9),
            pauses=(Pause(day_at(8, 20), day_at(8, 30)),),
        )

        assert sleep_duration_minutes(s) == 50

    def test_active_session_measured_to_now(self):
        s = session(1, day_at(8), None, pauses=(Pause(day_at(8, 40)),))

        assert sleep_duration_minutes(s, now=day_at(9)) == 40
        assert sleep_duration_minutes(s) == 0

    def test_today_stats(self):
        stats = get_today_stats([
            session(1, day_at(9), day_at(10)),
            session(2, day_at(13), day_at(13, 45)),
            session(3, day_at(19), None, kind="night"),
            session(4, day_at(0, day=2) - timedelta(hours=4), day_at(6), kind="night"),
        ])

        assert stats.nap_count == 2
        assert stats.total_nap_minutes == 105
        assert stats.total_night_minutes == 600
        assert stats.to_dict()["napCount"] == 2

    def test_week_stats_averages(self):
        sessions = [
            session(1, day_at(9, day=1), day_at(10, day=1)),
            session(2, day_at(9, day=2), day_at(10, day=2)),
            session(3, day_at(13, day=2), day_at(14, day=2)),
        ]

        week = get_week_stats(sessions, UTC)

        assert [d for d, _ in week.days] == [date(2026, 3, 1), date(2026, 3, 2)]
        assert week.avg_nap_minutes_per_day == 90
        assert week.avg_naps_per_day == 1.5


class TestNapTransition:
    """Tests for detecting a move to fewer naps."""

    def _days(self, counts: list[int]) -> list[list[SleepSession]]:
        days = []
        sid = 1
        for d, count in enumerate(counts):
            day = []
            for n in range(count):
                start = day_at(9 + 3 * n, day=d + 1)
                day.append(session(sid, start, start + timedelta(minutes=45)))
                sid += 1
            days.append(day)
        return days

    def test_needs_five_days(self):
        assert detect_nap_transition(self._days([3, 3, 3, 3])) is None

    def test_dropping(self):
        transition = detect_nap_transition(self._days([3, 3, 3, 2, 2, 2]))

        assert transition.dropping is True
        assert transition.suggested_naps == 2
        assert transition.current_avg_naps == 2.5

    def test_stable(self):
        transition = detect_nap_transition(self._days([2, 2, 2, 2, 2]))

        assert transition.dropping is False
        assert transition.suggested_naps == 2
