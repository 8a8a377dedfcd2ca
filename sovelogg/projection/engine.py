"""Projection engine.

Pure functions: (state, event) -> new state. No IO, no clock reads.
Replaying the same events from :func:`empty_state` always produces an
equal state, which is what makes the derived tables disposable.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone, tzinfo
from typing import Callable, Iterable

from ..errors import InvalidEventError
from ..events.types import (
    UNSET,
    BabyCreated,
    BabyUpdated,
    DayStarted,
    DiaperDeleted,
    DiaperLogged,
    Event,
    Payload,
    SleepDeleted,
    SleepEnded,
    SleepManual,
    SleepPaused,
    SleepResumed,
    SleepStarted,
    SleepTagged,
    SleepUpdated,
    UnknownPayload,
)
from .state import DayStart, DiaperEntry, Pause, ProjectedState, SleepSession, Subject

logger = logging.getLogger(__name__)


def empty_state() -> ProjectedState:
    """The derived state of an empty log."""
    return ProjectedState()


def apply(state: ProjectedState, event: Event, tz: tzinfo = timezone.utc) -> ProjectedState:
    """Apply one logged event. The input state is never modified."""
    new_state = apply_payload(state, event.decoded(tz))
    return replace(new_state, last_sequence=event.sequence)


def apply_payload(state: ProjectedState, payload: Payload) -> ProjectedState:
    """Apply one typed payload to the state."""
    handler = _HANDLERS[type(payload)]
    return handler(state, payload)


def replay(events: Iterable[Event], tz: tzinfo = timezone.utc) -> ProjectedState:
    """Rebuild state from scratch by applying every event in order.

    ``tz`` is the zone naive timestamps in the log are read in.
    """
    state = empty_state()
    for event in events:
        state = apply(state, event, tz)
    return state


def validate(state: ProjectedState, payload: Payload) -> None:
    """Reject payloads that are caller errors in the given state.

    Raises:
        InvalidEventError: If a sleep is started while one is already active.
    """
    if isinstance(payload, SleepStarted):
        subject_id = _resolve_subject(state, payload.baby_id)
        if subject_id is None:
            return
        active = state.active_session(subject_id)
        if active is not None:
            raise InvalidEventError(
                f"Sleep {active.id} is already in progress; end it before starting another"
            )
    elif isinstance(payload, SleepUpdated) and payload.end_time is None:
        session = state.sessions.get(payload.sleep_id)
        if session is not None and _reopens_second_session(state, session, None):
            raise InvalidEventError(
                f"Cannot reopen sleep {session.id} while another sleep is in progress"
            )


# ==================== Helpers ====================


def _resolve_subject(state: ProjectedState, baby_id: int | None) -> int | None:
    """Explicit subject id if it exists, otherwise the active subject."""
    if baby_id is not None:
        return baby_id if baby_id in state.subjects else None
    subject = state.active_subject()
    return subject.id if subject else None


def _reopens_second_session(
    state: ProjectedState, session: SleepSession, end_time: datetime | None
) -> bool:
    """Clearing an end time must not leave two sessions active."""
    if end_time is not None or session.end_time is None or session.soft_deleted:
        return False
    return state.active_session(session.subject_id) is not None


def _with_session(state: ProjectedState, session: SleepSession) -> ProjectedState:
    sessions = dict(state.sessions)
    sessions[session.id] = session
    return replace(state, sessions=sessions)


def _with_diaper(state: ProjectedState, entry: DiaperEntry) -> ProjectedState:
    diapers = dict(state.diapers)
    diapers[entry.id] = entry
    return replace(state, diapers=diapers)


# ==================== Handlers ====================


def _baby_created(state: ProjectedState, p: BabyCreated) -> ProjectedState:
    subject = Subject(id=state.next_subject_id, name=p.name, birthdate=p.birthdate)
    subjects = dict(state.subjects)
    subjects[subject.id] = subject
    return replace(state, subjects=subjects, next_subject_id=subject.id + 1)


def _baby_updated(state: ProjectedState, p: BabyUpdated) -> ProjectedState:
    subject = state.active_subject()
    if subject is None:
        return state
    changes = {}
    if p.name is not UNSET:
        changes["name"] = str(p.name)
    if p.birthdate is not UNSET:
        changes["birthdate"] = p.birthdate
    if not changes:
        return state
    subjects = dict(state.subjects)
    subjects[subject.id] = replace(subject, **changes)
    return replace(state, subjects=subjects)


def _sleep_started(state: ProjectedState, p: SleepStarted) -> ProjectedState:
    subject_id = _resolve_subject(state, p.baby_id)
    if subject_id is None:
        return state
    if state.active_session(subject_id) is not None:
        # At most one active session per subject.
        return state
    session = SleepSession(
        id=state.next_session_id,
        subject_id=subject_id,
        start_time=p.start_time,
        kind=p.kind,
    )
    return replace(_with_session(state, session), next_session_id=session.id + 1)


def _sleep_ended(state: ProjectedState, p: SleepEnded) -> ProjectedState:
    session = state.sessions.get(p.sleep_id)
    if session is None:
        return state
    pauses = session.pauses
    if session.current_pause is not None:
        pauses = pauses[:-1] + (replace(pauses[-1], resume_time=p.end_time),)
    return _with_session(state, replace(session, end_time=p.end_time, pauses=pauses))


def _sleep_updated(state: ProjectedState, p: SleepUpdated) -> ProjectedState:
    session = state.sessions.get(p.sleep_id)
    if session is None:
        return state
    changes = {}
    if p.start_time is not UNSET:
        changes["start_time"] = p.start_time
    if p.end_time is not UNSET and not _reopens_second_session(state, session, p.end_time):
        changes["end_time"] = p.end_time
    if p.kind is not UNSET:
        changes["kind"] = p.kind
    if p.notes is not UNSET:
        changes["notes"] = p.notes
    if p.mood is not UNSET:
        changes["mood"] = p.mood
    if p.method is not UNSET:
        changes["soothing_method"] = p.method
    if not changes:
        return state
    return _with_session(state, replace(session, **changes))


def _sleep_manual(state: ProjectedState, p: SleepManual) -> ProjectedState:
    subject_id = _resolve_subject(state, p.baby_id)
    if subject_id is None:
        return state
    session = SleepSession(
        id=state.next_session_id,
        subject_id=subject_id,
        start_time=p.start_time,
        end_time=p.end_time,
        kind=p.kind,
    )
    return replace(_with_session(state, session), next_session_id=session.id + 1)


def _sleep_deleted(state: ProjectedState, p: SleepDeleted) -> ProjectedState:
    session = state.sessions.get(p.sleep_id)
    if session is None or session.soft_deleted:
        return state
    return _with_session(state, replace(session, soft_deleted=True))


def _sleep_paused(state: ProjectedState, p: SleepPaused) -> ProjectedState:
    session = state.sessions.get(p.sleep_id)
    if session is None or not session.is_active or session.current_pause is not None:
        return state
    pauses = session.pauses + (Pause(pause_time=p.pause_time),)
    return _with_session(state, replace(session, pauses=pauses))


def _sleep_resumed(state: ProjectedState, p: SleepResumed) -> ProjectedState:
    session = state.sessions.get(p.sleep_id)
    if session is None or session.current_pause is None:
        return state
    pauses = session.pauses[:-1] + (replace(session.pauses[-1], resume_time=p.resume_time),)
    return _with_session(state, replace(session, pauses=pauses))


def _sleep_tagged(state: ProjectedState, p: SleepTagged) -> ProjectedState:
    session = state.sessions.get(p.sleep_id)
    if session is None:
        return state
    changes = {}
    if p.mood is not UNSET:
        changes["mood"] = p.mood
    if p.method is not UNSET:
        changes["soothing_method"] = p.method
    if not changes:
        return state
    return _with_session(state, replace(session, **changes))


def _diaper_logged(state: ProjectedState, p: DiaperLogged) -> ProjectedState:
    subject_id = _resolve_subject(state, p.baby_id)
    if subject_id is None:
        return state
    entry = DiaperEntry(
        id=state.next_diaper_id,
        subject_id=subject_id,
        time=p.time,
        kind=p.kind,
        amount=p.amount,
        note=p.note,
    )
    return replace(_with_diaper(state, entry), next_diaper_id=entry.id + 1)


def _diaper_deleted(state: ProjectedState, p: DiaperDeleted) -> ProjectedState:
    entry = state.diapers.get(p.diaper_id)
    if entry is None or entry.soft_deleted:
        return state
    return _with_diaper(state, replace(entry, soft_deleted=True))


def _day_started(state: ProjectedState, p: DayStarted) -> ProjectedState:
    subject_id = _resolve_subject(state, p.baby_id)
    if subject_id is None:
        return state
    day_starts = dict(state.day_starts)
    day_starts[(subject_id, p.date)] = DayStart(
        subject_id=subject_id, date=p.date, wake_time=p.wake_time
    )
    return replace(state, day_starts=day_starts)


def _unknown(state: ProjectedState, p: UnknownPayload) -> ProjectedState:
    logger.debug(f"Ignoring unknown event type {p.type!r}")
    return state


_HANDLERS: dict[type, Callable[[ProjectedState, Payload], ProjectedState]] = {
    BabyCreated: _baby_created,
    BabyUpdated: _baby_updated,
    SleepStarted: _sleep_started,
    SleepEnded: _sleep_ended,
    SleepUpdated: _sleep_updated,
    SleepManual: _sleep_manual,
    SleepDeleted: _sleep_deleted,
    SleepPaused: _sleep_paused,
    SleepResumed: _sleep_resumed,
    SleepTagged: _sleep_tagged,
    DiaperLogged: _diaper_logged,
    DiaperDeleted: _diaper_deleted,
    DayStarted: _day_started,
    UnknownPayload: _unknown,
}
