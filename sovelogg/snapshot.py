"""Snapshot assembly: projected state plus predictions as one document.

A snapshot is never stored or patched. It is rebuilt from the projected
state whenever someone needs it, so assembling twice from the same state
at the same instant yields equal snapshots.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from typing import Any

from .prediction import (
    DayStats,
    NapTransition,
    PredictedNap,
    calculate_age_months,
    detect_nap_transition,
    get_today_stats,
    group_by_day,
    predict_day_naps,
    predict_next_nap,
    recommend_bedtime,
)
from .projection.state import DayStart, DiaperEntry, ProjectedState, SleepSession, Subject
from .timeutil import local_midnight, to_iso


@dataclass
class Prediction:
    next_nap: datetime | None = None
    bedtime: datetime | None = None
    day_naps: list[PredictedNap] = field(default_factory=list)
    nap_transition: NapTransition | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "nextNap": to_iso(self.next_nap),
            "bedtime": to_iso(self.bedtime),
            "dayNaps": [n.to_dict() for n in self.day_naps],
            "napTransition": self.nap_transition.to_dict() if self.nap_transition else None,
        }


@dataclass
class Snapshot:
    """The full application state sent to clients."""

    subject: Subject | None = None
    active_session: SleepSession | None = None
    today_sessions: list[SleepSession] = field(default_factory=list)
    diapers_today: list[DiaperEntry] = field(default_factory=list)
    day_start: DayStart | None = None
    age_months: int | None = None
    stats: DayStats | None = None
    prediction: Prediction | None = None
    sequence: int = 0

    @property
    def diaper_count_today(self) -> int:
        return len(self.diapers_today)

    def to_dict(self) -> dict[str, Any]:
        """Render as the JSON document served by the API."""
        return {
            "subject": self.subject.to_dict() if self.subject else None,
            "activeSession": self.active_session.to_dict() if self.active_session else None,
            "todaySessions": [s.to_dict() for s in self.today_sessions],
            "diaperCountToday": self.diaper_count_today,
            "diapersToday": [d.to_dict() for d in self.diapers_today],
            "dayStart": self.day_start.to_dict() if self.day_start else None,
            "ageMonths": self.age_months,
            "stats": self.stats.to_dict() if self.stats else None,
            "prediction": self.prediction.to_dict() if self.prediction else None,
            "sequence": self.sequence,
        }


def assemble(
    state: ProjectedState,
    now: datetime,
    tz: tzinfo,
    history_days: int = 7,
) -> Snapshot:
    """Compose the snapshot for the active subject at instant ``now``.

    Args:
        state: Projected state to read from. It is not modified.
        now: Reference instant for "today" and the history window.
        tz: Timezone defining the local day boundary.
        history_days: How many days of sessions feed the predictions.
    """
    subject = state.active_subject()
    if subject is None:
        return Snapshot(sequence=state.last_sequence)

    midnight = local_midnight(now, tz)
    history_start = now - timedelta(days=history_days)

    sessions = state.sessions_for(subject.id)
    today_sessions = sorted(
        (s for s in sessions if s.start_time >= midnight),
        key=lambda s: (s.start_time, s.id),
        reverse=True,
    )
    recent_sessions = sorted(
        (s for s in sessions if s.start_time >= history_start),
        key=lambda s: (s.start_time, s.id),
    )
    diapers_today = sorted(
        (d for d in state.diapers_for(subject.id) if d.time >= midnight),
        key=lambda d: (d.time, d.id),
        reverse=True,
    )

    active_session = state.active_session(subject.id)
    day_start = state.day_start(subject.id, midnight.date())
    age_months = calculate_age_months(subject.birthdate, now.astimezone(tz))

    prediction = None
    if active_session is None:
        prediction = _predict(
            today_sessions, recent_sessions, day_start, age_months, now, tz
        )

    return Snapshot(
        subject=subject,
        active_session=active_session,
        today_sessions=today_sessions,
        diapers_today=diapers_today,
        day_start=day_start,
        age_months=age_months,
        stats=get_today_stats(today_sessions),
        prediction=prediction,
        sequence=state.last_sequence,
    )


def _predict(
    today_sessions: list[SleepSession],
    recent_sessions: list[SleepSession],
    day_start: DayStart | None,
    age_months: int,
    now: datetime,
    tz: tzinfo,
) -> Prediction | None:
    """Predictions from the last wake-up, or None if nothing happened today."""
    completed_today = [s for s in today_sessions if s.end_time is not None]
    if completed_today:
        last_wake = max(s.end_time for s in completed_today)
    elif day_start is not None:
        last_wake = day_start.wake_time
    else:
        return None

    completed_recent = [s for s in recent_sessions if s.end_time is not None]
    days = list(group_by_day(completed_recent, tz).values())

    return Prediction(
        next_nap=predict_next_nap(last_wake, age_months, completed_recent),
        bedtime=recommend_bedtime(today_sessions, age_months, now, tz),
        day_naps=(
            predict_day_naps(day_start.wake_time, age_months, completed_recent)
            if day_start is not None
            else []
        ),
        nap_transition=detect_nap_transition(days),
    )
