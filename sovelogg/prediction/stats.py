"""Sleep statistics over projected sessions."""

from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Any, Iterable

from ..projection.state import SleepSession
from ..timeutil import local_date, minutes_between
from .constants import MAX_WAKE_GAP_MINUTES, MIN_WAKE_GAP_MINUTES


@dataclass
class DayStats:
    total_nap_minutes: int = 0
    total_night_minutes: int = 0
    nap_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalNapMinutes": self.total_nap_minutes,
            "totalNightMinutes": self.total_night_minutes,
            "napCount": self.nap_count,
        }


@dataclass
class WeekStats:
    days: list[tuple[date, DayStats]] = field(default_factory=list)
    avg_nap_minutes_per_day: int = 0
    avg_night_minutes_per_day: int = 0
    avg_naps_per_day: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": [{"date": d.isoformat(), "stats": s.to_dict()} for d, s in self.days],
            "avgNapMinutesPerDay": self.avg_nap_minutes_per_day,
            "avgNightMinutesPerDay": self.avg_night_minutes_per_day,
            "avgNapsPerDay": self.avg_naps_per_day,
        }


def sleep_duration_minutes(session: SleepSession, now: datetime | None = None) -> float:
    """Minutes actually slept, excluding pauses.

    An active session is measured up to ``now``; while it is paused the
    clock stops at the pause time. Returns 0 for an active session when
    ``now`` is not given.
    """
    end = session.end_time or now
    if end is None:
        return 0.0

    total = minutes_between(session.start_time, end)
    for pause in session.pauses:
        pause_end = pause.resume_time or end
        start = max(pause.pause_time, session.start_time)
        stop = min(pause_end, end)
        if stop > start:
            total -= minutes_between(start, stop)
    return max(total, 0.0)


def get_today_stats(sessions: Iterable[SleepSession]) -> DayStats:
    """Totals over completed sessions; zero-length sessions are skipped."""
    nap_minutes = 0.0
    night_minutes = 0.0
    nap_count = 0

    for s in sessions:
        if s.end_time is None or s.soft_deleted:
            continue
        duration = sleep_duration_minutes(s)
        if duration <= 0:
            continue
        if s.kind == "nap":
            nap_minutes += duration
            nap_count += 1
        else:
            night_minutes += duration

    return DayStats(
        total_nap_minutes=round(nap_minutes),
        total_night_minutes=round(night_minutes),
        nap_count=nap_count,
    )


def group_by_day(sessions: Iterable[SleepSession], tz: tzinfo) -> dict[date, list[SleepSession]]:
    """Sessions grouped by the local date they started on, oldest day first."""
    by_date: dict[date, list[SleepSession]] = {}
    for s in sessions:
        by_date.setdefault(local_date(s.start_time, tz), []).append(s)
    return dict(sorted(by_date.items()))


def get_week_stats(sessions: Iterable[SleepSession], tz: tzinfo) -> WeekStats:
    """Per-day stats and daily averages."""
    days = [(d, get_today_stats(day)) for d, day in group_by_day(sessions, tz).items()]
    count = len(days) or 1

    return WeekStats(
        days=days,
        avg_nap_minutes_per_day=round(sum(s.total_nap_minutes for _, s in days) / count),
        avg_night_minutes_per_day=round(sum(s.total_night_minutes for _, s in days) / count),
        avg_naps_per_day=round(sum(s.nap_count for _, s in days) / count, 1),
    )


def get_average_wake_window(sessions: Iterable[SleepSession]) -> int | None:
    """Average wake window in minutes between consecutive completed sessions.

    Only gaps between 10 and 480 minutes count. Returns None when there
    are fewer than two completed sessions or no gap qualifies.
    """
    completed = sorted(
        (s for s in sessions if s.end_time is not None and not s.soft_deleted),
        key=lambda s: s.start_time,
    )
    if len(completed) < 2:
        return None

    gaps = []
    for prev, nxt in zip(completed, completed[1:]):
        gap = minutes_between(prev.end_time, nxt.start_time)
        if MIN_WAKE_GAP_MINUTES <= gap <= MAX_WAKE_GAP_MINUTES:
            gaps.append(gap)

    if not gaps:
        return None
    return round(sum(gaps) / len(gaps))
