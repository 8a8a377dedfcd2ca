"""Event log and the typed event vocabulary.

The log is the source of truth; every other table is derived from it.
"""

from .log import EventLog
from .types import Event, EventType, UnknownPayload, decode_payload

__all__ = ["Event", "EventLog", "EventType", "UnknownPayload", "decode_payload"]
