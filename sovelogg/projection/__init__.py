"""Projection of the event log into queryable entity tables."""

from .engine import apply, apply_payload, empty_state, replay, validate
from .state import DayStart, DiaperEntry, Pause, ProjectedState, SleepSession, Subject

__all__ = [
    "DayStart",
    "DiaperEntry",
    "Pause",
    "ProjectedState",
    "SleepSession",
    "Subject",
    "apply",
    "apply_payload",
    "empty_state",
    "replay",
    "validate",
]
