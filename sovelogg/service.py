"""Coordinating service: the single writer of the event log.

All mutations go through :meth:`SyncService.submit`, which serializes
append-then-project under one lock so sequence numbers are assigned
without races and readers never see a half-applied batch. The service
owns the current projected state; nothing else holds it.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable

from .broadcast import Broadcaster, snapshot_message
from .errors import BatchTooLargeError, InvalidEventError, PayloadError
from .events import Event, EventLog, decode_payload
from .prediction import SLEEP_NEEDS, calculate_age_months, find_by_age, get_week_stats
from .projection import ProjectedState, apply_payload, empty_state, replay, validate
from .projection.state import DiaperEntry, SleepSession
from .snapshot import Snapshot, assemble

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IncomingEvent:
    """A mutation as submitted by a client, before it is appended."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    client_id: str | None = None
    local_seq: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "IncomingEvent":
        """Parse one element of a ``POST /events`` body.

        Raises:
            PayloadError: If the element is not an object with a string type.
        """
        if not isinstance(data, dict):
            raise PayloadError("?", "event must be a JSON object")
        event_type = data.get("type")
        if not isinstance(event_type, str) or not event_type:
            raise PayloadError("?", "event is missing its 'type'")
        payload = data.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise PayloadError(event_type, "payload must be a JSON object")
        client_id = data.get("clientId")
        if client_id is not None and not isinstance(client_id, str):
            raise PayloadError(event_type, "'clientId' must be a string")
        local_seq = data.get("localSeq")
        if local_seq is not None and (isinstance(local_seq, bool) or not isinstance(local_seq, int)):
            raise PayloadError(event_type, "'localSeq' must be an integer")
        return cls(
            type=event_type,
            payload=payload,
            client_id=client_id,
            local_seq=local_seq,
        )


@dataclass
class SubmitResult:
    events: list[Event]
    snapshot: Snapshot
    duplicates: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "state": self.snapshot.to_dict(),
        }


class SyncService:
    """Owns the event log, the projected state and the fan-out."""

    def __init__(
        self,
        log: EventLog,
        tz: tzinfo,
        broadcaster: Broadcaster | None = None,
        clock: Callable[[], datetime] = _utc_now,
        history_days: int = 7,
        deduplicate: bool = True,
        max_batch_size: int = 500,
    ):
        """Initialize the service.

        Args:
            log: Event log holding the source of truth.
            tz: Timezone that defines "today" for snapshots.
            broadcaster: Optional fan-out notified after every append.
            clock: Returns the current instant (injectable for tests).
            history_days: Days of history fed to the predictions.
            deduplicate: Skip events whose (clientId, localSeq) was already logged.
            max_batch_size: Largest accepted batch.
        """
        self._log = log
        self._tz = tz
        self._broadcaster = broadcaster
        self._clock = clock
        self._history_days = history_days
        self._deduplicate = deduplicate
        self._max_batch_size = max_batch_size
        self._lock = threading.Lock()
        self._state: ProjectedState = empty_state()

    @property
    def state(self) -> ProjectedState:
        """Current projected state (an immutable value)."""
        return self._state

    @property
    def tz(self) -> tzinfo:
        """Zone that defines local days and naive timestamps."""
        return self._tz

    @property
    def broadcaster(self) -> Broadcaster | None:
        return self._broadcaster

    def start(self) -> None:
        """Project the existing log. Called once at startup."""
        self.rebuild_all(notify=False)

    def close(self) -> None:
        self._log.close()

    # ==================== Writes ====================

    def submit(self, incoming: list[IncomingEvent]) -> SubmitResult:
        """Append and project a batch of events, in order.

        The batch is validated against the state it will be applied to
        before anything is written; it is then appended in one
        transaction. Either the whole batch lands or none of it does.

        Raises:
            PayloadError: A payload is malformed.
            InvalidEventError: An event is a caller error.
            BatchTooLargeError: The batch exceeds ``max_batch_size``.
            DurabilityError: The log could not persist the batch.
        """
        if not incoming:
            return SubmitResult(events=[], snapshot=self.snapshot())
        if len(incoming) > self._max_batch_size:
            raise BatchTooLargeError(
                f"Too many events in one request: {len(incoming)} (max {self._max_batch_size})"
            )

        with self._lock:
            scratch = self._state
            to_append: list[IncomingEvent] = []
            # Each slot is an already-logged Event or an index into to_append.
            slots: list[Event | int] = []
            batch_keys: dict[tuple[str, int], int] = {}

            for i, item in enumerate(incoming):
                key = self._idempotency_key(item)
                if key is not None:
                    if key in batch_keys:
                        slots.append(batch_keys[key])
                        continue
                    existing = self._log.find_duplicate(*key)
                    if existing is not None:
                        logger.info(
                            f"Skipping retried event {key[0]}#{key[1]} "
                            f"(already logged as {existing.sequence})"
                        )
                        slots.append(existing)
                        continue

                payload = decode_payload(item.type, item.payload, self._tz)
                try:
                    validate(scratch, payload)
                except InvalidEventError as e:
                    e.index = i
                    raise
                scratch = apply_payload(scratch, payload)

                if key is not None:
                    batch_keys[key] = len(to_append)
                slots.append(len(to_append))
                to_append.append(item)

            appended = self._log.append_batch(
                (item.type, item.payload, item.client_id, item.local_seq)
                for item in to_append
            )
            if appended:
                self._state = replace(scratch, last_sequence=appended[-1].sequence)
            snapshot = self._assemble(self._state)

            # Broadcast before releasing the lock so channels see sequence order.
            if appended:
                self._notify(snapshot, appended[-1].origin_device)

        events = [s if isinstance(s, Event) else appended[s] for s in slots]
        duplicates = len(slots) - len(appended)

        if appended:
            logger.info(
                f"Committed {len(appended)} event(s) up to sequence {appended[-1].sequence}"
                + (f", skipped {duplicates} duplicate(s)" if duplicates else "")
            )

        return SubmitResult(events=events, snapshot=snapshot, duplicates=duplicates)

    def _idempotency_key(self, item: IncomingEvent) -> tuple[str, int] | None:
        if not self._deduplicate or not item.client_id or item.local_seq is None:
            return None
        return (item.client_id, item.local_seq)

    def rebuild_all(self, notify: bool = True) -> ProjectedState:
        """Discard the derived state and replay the full log.

        The current state is only replaced once every event has replayed
        cleanly; if any handler raises, the previous state is kept.
        """
        with self._lock:
            events = self._log.read()
            try:
                new_state = replay(events, self._tz)
            except Exception as e:
                logger.error(f"Rebuild failed, keeping previous state: {e}", exc_info=True)
                raise
            self._state = new_state
            if notify:
                self._notify(self._assemble(new_state), None)

        logger.info(f"Rebuilt state from {len(events)} event(s)")
        return new_state

    def _notify(self, snapshot: Snapshot, origin_device: str | None) -> None:
        if self._broadcaster is None:
            return
        self._broadcaster.broadcast(snapshot_message(snapshot.to_dict(), origin_device))

    # ==================== Reads ====================

    def _assemble(self, state: ProjectedState) -> Snapshot:
        return assemble(state, self._clock(), self._tz, self._history_days)

    def snapshot(self) -> Snapshot:
        """Snapshot of the current state at the current instant."""
        return self._assemble(self._state)

    def read_events(self, since: int | None = None) -> list[Event]:
        with self._lock:
            return self._log.read(since)

    def list_sleeps(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
    ) -> list[SleepSession]:
        """Non-deleted sessions of the active subject, newest first."""
        state = self._state
        subject = state.active_subject()
        if subject is None:
            return []
        sessions = [
            s for s in state.sessions_for(subject.id)
            if (start is None or s.start_time >= start)
            and (end is None or s.start_time <= end)
        ]
        sessions.sort(key=lambda s: (s.start_time, s.id), reverse=True)
        return sessions[:limit]

    def list_diapers(self, limit: int = 50) -> list[DiaperEntry]:
        """Non-deleted diaper entries of the active subject, newest first."""
        state = self._state
        subject = state.active_subject()
        if subject is None:
            return []
        diapers = sorted(
            state.diapers_for(subject.id),
            key=lambda d: (d.time, d.id),
            reverse=True,
        )
        return diapers[:limit]

    def week_stats(self) -> dict[str, Any] | None:
        """Daily totals over the history window and the age-typical sleep need."""
        state = self._state
        subject = state.active_subject()
        if subject is None:
            return None
        now = self._clock()
        since = now - timedelta(days=self._history_days)
        sessions = [
            s for s in state.sessions_for(subject.id)
            if s.end_time is not None and s.start_time >= since
        ]
        age_months = calculate_age_months(subject.birthdate, now.astimezone(self._tz))
        need = find_by_age(SLEEP_NEEDS, age_months)
        return {
            **get_week_stats(sessions, self._tz).to_dict(),
            "sleepNeed": {"totalHours": need.total_hours, "range": list(need.range)},
        }

    def log_stats(self) -> dict[str, Any]:
        with self._lock:
            return self._log.get_stats()

    def health(self) -> dict[str, Any]:
        with self._lock:
            latest = self._log.latest_sequence()
        return {
            "status": "ok",
            "latestSequence": latest,
            "projectedSequence": self._state.last_sequence,
            "channels": self._broadcaster.channel_count if self._broadcaster else 0,
        }
