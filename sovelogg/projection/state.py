"""Derived entity tables produced by projecting the event log."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from ..timeutil import to_iso


@dataclass(frozen=True)
class Subject:
    """The tracked baby."""

    id: int
    name: str
    birthdate: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "birthdate": self.birthdate.isoformat(),
        }


@dataclass(frozen=True)
class Pause:
    pause_time: datetime
    resume_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pauseTime": to_iso(self.pause_time),
            "resumeTime": to_iso(self.resume_time),
        }


@dataclass(frozen=True)
class SleepSession:
    """One nap or night sleep, with any pauses taken during it."""

    id: int
    subject_id: int
    start_time: datetime
    end_time: datetime | None = None
    kind: str = "nap"
    mood: str | None = None
    soothing_method: str | None = None
    notes: str | None = None
    soft_deleted: bool = False
    pauses: tuple[Pause, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.end_time is None and not self.soft_deleted

    @property
    def current_pause(self) -> Pause | None:
        """The unresumed pause, if the session is paused right now."""
        if self.pauses and self.pauses[-1].resume_time is None:
            return self.pauses[-1]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "babyId": self.subject_id,
            "startTime": to_iso(self.start_time),
            "endTime": to_iso(self.end_time),
            "type": self.kind,
            "mood": self.mood,
            "method": self.soothing_method,
            "notes": self.notes,
            "deleted": self.soft_deleted,
            "paused": self.current_pause is not None,
            "pauses": [p.to_dict() for p in self.pauses],
        }


@dataclass(frozen=True)
class DiaperEntry:
    id: int
    subject_id: int
    time: datetime
    kind: str
    amount: str | None = None
    note: str | None = None
    soft_deleted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "babyId": self.subject_id,
            "time": to_iso(self.time),
            "type": self.kind,
            "amount": self.amount,
            "note": self.note,
            "deleted": self.soft_deleted,
        }


@dataclass(frozen=True)
class DayStart:
    """Morning wake-up time anchoring one calendar day."""

    subject_id: int
    date: date
    wake_time: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "babyId": self.subject_id,
            "date": self.date.isoformat(),
            "wakeTime": to_iso(self.wake_time),
        }


@dataclass(frozen=True)
class ProjectedState:
    """All derived tables at one point in the log.

    Instances are never modified once built; the projection engine returns
    a new state for every event, sharing unchanged entities. Two states
    compare equal when every table holds equal rows.
    """

    subjects: dict[int, Subject] = field(default_factory=dict)
    sessions: dict[int, SleepSession] = field(default_factory=dict)
    diapers: dict[int, DiaperEntry] = field(default_factory=dict)
    day_starts: dict[tuple[int, date], DayStart] = field(default_factory=dict)
    next_subject_id: int = 1
    next_session_id: int = 1
    next_diaper_id: int = 1
    last_sequence: int = 0

    def active_subject(self) -> Subject | None:
        """The latest-created subject is the one this deployment tracks."""
        if not self.subjects:
            return None
        return self.subjects[max(self.subjects)]

    def active_session(self, subject_id: int) -> SleepSession | None:
        active = [
            s for s in self.sessions.values()
            if s.subject_id == subject_id and s.is_active
        ]
        return max(active, key=lambda s: s.id) if active else None

    def sessions_for(self, subject_id: int, include_deleted: bool = False) -> list[SleepSession]:
        return [
            s for s in self.sessions.values()
            if s.subject_id == subject_id and (include_deleted or not s.soft_deleted)
        ]

    def diapers_for(self, subject_id: int, include_deleted: bool = False) -> list[DiaperEntry]:
        return [
            d for d in self.diapers.values()
            if d.subject_id == subject_id and (include_deleted or not d.soft_deleted)
        ]

    def day_start(self, subject_id: int, day: date) -> DayStart | None:
        return self.day_starts.get((subject_id, day))

    def tables(self) -> dict[str, Any]:
        """Entity tables rendered as plain dicts, keyed by table name."""
        return {
            "subjects": {k: v.to_dict() for k, v in sorted(self.subjects.items())},
            "sessions": {k: v.to_dict() for k, v in sorted(self.sessions.items())},
            "diapers": {k: v.to_dict() for k, v in sorted(self.diapers.items())},
            "day_starts": {
                f"{k[0]}:{k[1].isoformat()}": v.to_dict()
                for k, v in sorted(self.day_starts.items())
            },
        }
