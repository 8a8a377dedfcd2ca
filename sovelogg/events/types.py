"""Event records and the closed set of typed event payloads.

Every mutation of the tracker is one of the variants below. Payloads
arrive as loosely-typed JSON dicts; :func:`decode_payload` is the single
boundary where they become typed values. Unrecognized types decode to
:class:`UnknownPayload` so that newer clients can write to an older
server without breaking projection.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Callable, Union

from ..errors import PayloadError
from ..timeutil import parse_date, parse_timestamp, to_iso


class EventType(str, Enum):
    """Wire names of the known event variants."""

    BABY_CREATED = "baby.created"
    BABY_UPDATED = "baby.updated"
    SLEEP_STARTED = "sleep.started"
    SLEEP_ENDED = "sleep.ended"
    SLEEP_UPDATED = "sleep.updated"
    SLEEP_MANUAL = "sleep.manual"
    SLEEP_DELETED = "sleep.deleted"
    SLEEP_PAUSED = "sleep.paused"
    SLEEP_RESUMED = "sleep.resumed"
    SLEEP_TAGGED = "sleep.tagged"
    DIAPER_LOGGED = "diaper.logged"
    DIAPER_DELETED = "diaper.deleted"
    DAY_STARTED = "day.started"


SLEEP_KINDS = ("nap", "night")


class _Unset:
    """Marker for optional update fields that were absent from the payload."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class BabyCreated:
    name: str
    birthdate: date


@dataclass(frozen=True)
class BabyUpdated:
    name: Any = UNSET
    birthdate: Any = UNSET


@dataclass(frozen=True)
class SleepStarted:
    start_time: datetime
    kind: str = "nap"
    baby_id: int | None = None


@dataclass(frozen=True)
class SleepEnded:
    sleep_id: int
    end_time: datetime


@dataclass(frozen=True)
class SleepUpdated:
    sleep_id: int
    start_time: Any = UNSET
    end_time: Any = UNSET
    kind: Any = UNSET
    notes: Any = UNSET
    mood: Any = UNSET
    method: Any = UNSET


@dataclass(frozen=True)
class SleepManual:
    start_time: datetime
    end_time: datetime
    kind: str = "nap"
    baby_id: int | None = None


@dataclass(frozen=True)
class SleepDeleted:
    sleep_id: int


@dataclass(frozen=True)
class SleepPaused:
    sleep_id: int
    pause_time: datetime


@dataclass(frozen=True)
class SleepResumed:
    sleep_id: int
    resume_time: datetime


@dataclass(frozen=True)
class SleepTagged:
    sleep_id: int
    mood: Any = UNSET
    method: Any = UNSET


@dataclass(frozen=True)
class DiaperLogged:
    time: datetime
    kind: str
    amount: str | None = None
    note: str | None = None
    baby_id: int | None = None


@dataclass(frozen=True)
class DiaperDeleted:
    diaper_id: int


@dataclass(frozen=True)
class DayStarted:
    wake_time: datetime
    date: date
    baby_id: int | None = None


@dataclass(frozen=True)
class UnknownPayload:
    """A payload whose type this version does not understand."""

    type: str
    raw: dict[str, Any] = field(default_factory=dict)


Payload = Union[
    BabyCreated,
    BabyUpdated,
    SleepStarted,
    SleepEnded,
    SleepUpdated,
    SleepManual,
    SleepDeleted,
    SleepPaused,
    SleepResumed,
    SleepTagged,
    DiaperLogged,
    DiaperDeleted,
    DayStarted,
    UnknownPayload,
]


# ==================== Field parsing ====================


def _required(event_type: str, raw: dict, key: str) -> Any:
    if raw.get(key) is None:
        raise PayloadError(event_type, f"missing required field '{key}'")
    return raw[key]


def _as_int(event_type: str, value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise PayloadError(event_type, f"'{key}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise PayloadError(event_type, f"'{key}' must be an integer") from None


def _as_time(event_type: str, value: Any, key: str, tz: tzinfo) -> datetime:
    try:
        return parse_timestamp(value, tz)
    except (TypeError, ValueError, AttributeError):
        raise PayloadError(event_type, f"'{key}' is not an ISO-8601 timestamp") from None


def _as_date(event_type: str, value: Any, key: str) -> date:
    try:
        return parse_date(value)
    except (TypeError, ValueError, AttributeError):
        raise PayloadError(event_type, f"'{key}' is not a YYYY-MM-DD date") from None


def _as_kind(event_type: str, value: Any) -> str:
    if value not in SLEEP_KINDS:
        raise PayloadError(event_type, f"'type' must be one of {SLEEP_KINDS}, got {value!r}")
    return value


def _optional_id(event_type: str, raw: dict, key: str) -> int | None:
    if raw.get(key) is None:
        return None
    return _as_int(event_type, raw[key], key)


def _update_field(raw: dict, key: str, convert: Callable[[Any], Any]) -> Any:
    """Absent -> UNSET, null -> None, otherwise converted."""
    if key not in raw:
        return UNSET
    if raw[key] is None:
        return None
    return convert(raw[key])


# ==================== Decoders ====================


def _baby_created(t: str, raw: dict, tz: tzinfo) -> BabyCreated:
    return BabyCreated(
        name=str(_required(t, raw, "name")),
        birthdate=_as_date(t, _required(t, raw, "birthdate"), "birthdate"),
    )


def _baby_updated(t: str, raw: dict, tz: tzinfo) -> BabyUpdated:
    name = raw.get("name")
    birthdate = raw.get("birthdate")
    return BabyUpdated(
        name=UNSET if name is None else str(name),
        birthdate=UNSET if birthdate is None else _as_date(t, birthdate, "birthdate"),
    )


def _sleep_started(t: str, raw: dict, tz: tzinfo) -> SleepStarted:
    return SleepStarted(
        start_time=_as_time(t, _required(t, raw, "startTime"), "startTime", tz),
        kind=_as_kind(t, raw.get("type") or "nap"),
        baby_id=_optional_id(t, raw, "babyId"),
    )


def _sleep_ended(t: str, raw: dict, tz: tzinfo) -> SleepEnded:
    return SleepEnded(
        sleep_id=_as_int(t, _required(t, raw, "sleepId"), "sleepId"),
        end_time=_as_time(t, _required(t, raw, "endTime"), "endTime", tz),
    )


def _sleep_updated(t: str, raw: dict, tz: tzinfo) -> SleepUpdated:
    start_time = _update_field(raw, "startTime", lambda v: _as_time(t, v, "startTime", tz))
    if start_time is None:
        raise PayloadError(t, "'startTime' cannot be cleared")
    kind = _update_field(raw, "type", lambda v: _as_kind(t, v))
    if kind is None:
        raise PayloadError(t, "'type' cannot be cleared")
    return SleepUpdated(
        sleep_id=_as_int(t, _required(t, raw, "sleepId"), "sleepId"),
        start_time=start_time,
        end_time=_update_field(raw, "endTime", lambda v: _as_time(t, v, "endTime", tz)),
        kind=kind,
        notes=_update_field(raw, "notes", str),
        mood=_update_field(raw, "mood", str),
        method=_update_field(raw, "method", str),
    )


def _sleep_manual(t: str, raw: dict, tz: tzinfo) -> SleepManual:
    return SleepManual(
        start_time=_as_time(t, _required(t, raw, "startTime"), "startTime", tz),
        end_time=_as_time(t, _required(t, raw, "endTime"), "endTime", tz),
        kind=_as_kind(t, raw.get("type") or "nap"),
        baby_id=_optional_id(t, raw, "babyId"),
    )


def _sleep_deleted(t: str, raw: dict, tz: tzinfo) -> SleepDeleted:
    return SleepDeleted(sleep_id=_as_int(t, _required(t, raw, "sleepId"), "sleepId"))


def _sleep_paused(t: str, raw: dict, tz: tzinfo) -> SleepPaused:
    return SleepPaused(
        sleep_id=_as_int(t, _required(t, raw, "sleepId"), "sleepId"),
        pause_time=_as_time(t, _required(t, raw, "pauseTime"), "pauseTime", tz),
    )


def _sleep_resumed(t: str, raw: dict, tz: tzinfo) -> SleepResumed:
    return SleepResumed(
        sleep_id=_as_int(t, _required(t, raw, "sleepId"), "sleepId"),
        resume_time=_as_time(t, _required(t, raw, "resumeTime"), "resumeTime", tz),
    )


def _sleep_tagged(t: str, raw: dict, tz: tzinfo) -> SleepTagged:
    return SleepTagged(
        sleep_id=_as_int(t, _required(t, raw, "sleepId"), "sleepId"),
        mood=_update_field(raw, "mood", str),
        method=_update_field(raw, "method", str),
    )


def _diaper_logged(t: str, raw: dict, tz: tzinfo) -> DiaperLogged:
    amount = raw.get("amount")
    note = raw.get("note")
    return DiaperLogged(
        time=_as_time(t, _required(t, raw, "time"), "time", tz),
        kind=str(_required(t, raw, "type")),
        amount=None if amount is None else str(amount),
        note=None if note is None else str(note),
        baby_id=_optional_id(t, raw, "babyId"),
    )


def _diaper_deleted(t: str, raw: dict, tz: tzinfo) -> DiaperDeleted:
    return DiaperDeleted(diaper_id=_as_int(t, _required(t, raw, "diaperId"), "diaperId"))


def _day_started(t: str, raw: dict, tz: tzinfo) -> DayStarted:
    wake_time = _as_time(t, _required(t, raw, "wakeTime"), "wakeTime", tz)
    day = raw.get("date")
    return DayStarted(
        wake_time=wake_time,
        date=wake_time.astimezone(tz).date() if day is None else _as_date(t, day, "date"),
        baby_id=_optional_id(t, raw, "babyId"),
    )


_DECODERS: dict[EventType, Callable[[str, dict, tzinfo], Payload]] = {
    EventType.BABY_CREATED: _baby_created,
    EventType.BABY_UPDATED: _baby_updated,
    EventType.SLEEP_STARTED: _sleep_started,
    EventType.SLEEP_ENDED: _sleep_ended,
    EventType.SLEEP_UPDATED: _sleep_updated,
    EventType.SLEEP_MANUAL: _sleep_manual,
    EventType.SLEEP_DELETED: _sleep_deleted,
    EventType.SLEEP_PAUSED: _sleep_paused,
    EventType.SLEEP_RESUMED: _sleep_resumed,
    EventType.SLEEP_TAGGED: _sleep_tagged,
    EventType.DIAPER_LOGGED: _diaper_logged,
    EventType.DIAPER_DELETED: _diaper_deleted,
    EventType.DAY_STARTED: _day_started,
}


def decode_payload(
    event_type: str,
    raw: dict[str, Any] | None,
    tz: tzinfo = timezone.utc,
) -> Payload:
    """Turn a wire payload into its typed variant.

    Timestamps without an offset are read in ``tz``.

    Raises:
        PayloadError: If a known event type has a malformed payload.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise PayloadError(event_type, "payload must be a JSON object")
    try:
        known = EventType(event_type)
    except ValueError:
        return UnknownPayload(type=event_type, raw=dict(raw))
    return _DECODERS[known](event_type, raw, tz)


@dataclass
class Event:
    """A single appended entry of the event log."""

    sequence: int
    type: str
    payload: dict[str, Any]
    appended_at: datetime
    origin_device: str | None = None
    local_seq: int | None = None

    def decoded(self, tz: tzinfo = timezone.utc) -> Payload:
        """Typed payload of this event."""
        return decode_payload(self.type, self.payload, tz)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "sequence": self.sequence,
            "type": self.type,
            "payload": self.payload,
            "originDevice": self.origin_device,
            "localSeq": self.local_seq,
            "appendedAt": to_iso(self.appended_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create from dictionary."""
        return cls(
            sequence=data["sequence"],
            type=data["type"],
            payload=data.get("payload") or {},
            appended_at=parse_timestamp(data["appendedAt"]),
            origin_device=data.get("originDevice"),
            local_seq=data.get("localSeq"),
        )
