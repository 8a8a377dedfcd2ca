"""Schedule predictions: wake windows, naps, bedtime and nap transitions.

All arithmetic is done in whole minutes.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Sequence

from ..projection.state import SleepSession
from ..timeutil import to_iso
from .constants import (
    DEFAULT_BEDTIME,
    EARLIEST_BEDTIME,
    LAST_WAKE_WINDOW_MULTIPLIER,
    LATEST_BEDTIME,
    NAP_COUNTS,
    WAKE_WINDOWS,
    find_by_age,
)
from .stats import get_average_wake_window


@dataclass(frozen=True)
class PredictedNap:
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"startTime": to_iso(self.start_time), "endTime": to_iso(self.end_time)}


@dataclass(frozen=True)
class NapTransition:
    dropping: bool
    current_avg_naps: float
    suggested_naps: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "dropping": self.dropping,
            "currentAvgNaps": self.current_avg_naps,
            "suggestedNaps": self.suggested_naps,
        }


def calculate_age_months(birthdate: date, now: date | datetime) -> int:
    """Whole calendar months since birth, never negative."""
    ref = now.date() if isinstance(now, datetime) else now
    months = (ref.year - birthdate.year) * 12 + (ref.month - birthdate.month)
    if ref.day < birthdate.day:
        months -= 1
    return max(0, months)


def get_wake_window(
    age_months: int, recent_sessions: Sequence[SleepSession] | None = None
) -> int:
    """Recommended wake window in minutes.

    Uses the midpoint of the age bracket unless at least two recent
    sessions yield an observed average, which is then clamped into the
    bracket.
    """
    bracket = find_by_age(WAKE_WINDOWS, age_months)
    default = (bracket.min_minutes + bracket.max_minutes) // 2

    if not recent_sessions or len(recent_sessions) < 2:
        return default

    average = get_average_wake_window(recent_sessions)
    if average is None:
        return default

    return max(bracket.min_minutes, min(bracket.max_minutes, average))


def expected_nap_count(age_months: int) -> int:
    return find_by_age(NAP_COUNTS, age_months).naps


def nap_duration_minutes(age_months: int) -> int:
    """Estimated nap length; younger babies nap longer."""
    if age_months < 6:
        return 60
    if age_months < 12:
        return 45
    return 30


def predict_next_nap(
    last_wake_time: datetime,
    age_months: int,
    recent_sessions: Sequence[SleepSession] | None = None,
) -> datetime:
    """Next nap start: last wake time plus the wake window."""
    return last_wake_time + timedelta(minutes=get_wake_window(age_months, recent_sessions))


def predict_day_naps(
    wake_up_time: datetime,
    age_months: int,
    recent_sessions: Sequence[SleepSession] | None = None,
) -> list[PredictedNap]:
    """Plan every nap of the day, chaining each nap's end to the next wake window."""
    wake_window = timedelta(minutes=get_wake_window(age_months, recent_sessions))
    duration = timedelta(minutes=nap_duration_minutes(age_months))

    naps = []
    current_wake = wake_up_time
    for _ in range(expected_nap_count(age_months)):
        start = current_wake + wake_window
        end = start + duration
        naps.append(PredictedNap(start_time=start, end_time=end))
        current_wake = end
    return naps


def recommend_bedtime(
    today_sessions: Sequence[SleepSession],
    age_months: int,
    now: datetime,
    tz: tzinfo,
) -> datetime:
    """Recommended bedtime, clamped to the local 18:00-20:30 band.

    The last wake window of the day runs longer once the age-typical
    number of naps has been reached.
    """
    completed = [s for s in today_sessions if s.end_time is not None and not s.soft_deleted]
    if not completed:
        return datetime.combine(now.astimezone(tz).date(), time(*DEFAULT_BEDTIME), tzinfo=tz)

    last_end = max(s.end_time for s in completed)
    wake_window = get_wake_window(age_months)
    if len(today_sessions) >= expected_nap_count(age_months):
        wake_window = round(wake_window * LAST_WAKE_WINDOW_MULTIPLIER)

    bedtime = last_end + timedelta(minutes=wake_window)

    day = last_end.astimezone(tz).date()
    earliest = datetime.combine(day, time(*EARLIEST_BEDTIME), tzinfo=tz)
    latest = datetime.combine(day, time(*LATEST_BEDTIME), tzinfo=tz)
    return min(max(bedtime, earliest), latest)


def detect_nap_transition(days: Sequence[Sequence[SleepSession]]) -> NapTransition | None:
    """Detect a move to fewer naps.

    Args:
        days: Sessions grouped per day, oldest first. At least five days
            are needed.

    Returns:
        The transition verdict, or None with too little history.
    """
    if len(days) < 5:
        return None

    nap_counts = [
        sum(1 for s in day if s.kind == "nap" and s.end_time is not None and not s.soft_deleted)
        for day in days
    ]
    average = sum(nap_counts) / len(nap_counts)
    recent = nap_counts[-3:]
    earlier = nap_counts[:-3]
    recent_avg = sum(recent) / len(recent)
    earlier_avg = sum(earlier) / len(earlier)

    if earlier_avg - recent_avg >= 0.5:
        return NapTransition(
            dropping=True,
            current_avg_naps=round(average, 1),
            suggested_naps=round(recent_avg),
        )
    return NapTransition(
        dropping=False,
        current_avg_naps=round(average, 1),
        suggested_naps=round(average),
    )
