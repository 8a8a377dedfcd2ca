"""Tests for event payload decoding."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from sovelogg.errors import PayloadError
from sovelogg.events import Event, EventType, UnknownPayload, decode_payload
from sovelogg.events.types import (
    UNSET,
    BabyCreated,
    BabyUpdated,
    DayStarted,
    DiaperLogged,
    SleepStarted,
    SleepUpdated,
)


class TestDecodePayload:
    """Tests for turning wire payloads into typed variants."""

    def test_baby_created(self):
        payload = decode_payload("baby.created", {"name": "Ada", "birthdate": "2025-11-02"})

        assert payload == BabyCreated(name="Ada", birthdate=date(2025, 11, 2))

    def test_sleep_started_defaults_to_nap(self):
        payload = decode_payload("sleep.started", {"startTime": "2026-03-01T09:00:00Z"})

        assert isinstance(payload, SleepStarted)
        assert payload.kind == "nap"
        assert payload.start_time == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert payload.baby_id is None

    def test_naive_timestamp_is_utc(self):
        """Test that timestamps without an offset are read as UTC."""
        payload = decode_payload("sleep.started", {"startTime": "2026-03-01T09:00:00"})

        assert payload.start_time.utcoffset().total_seconds() == 0

    def test_naive_timestamp_read_in_given_zone(self):
        """Test that wall-clock timestamps take the configured zone."""
        oslo = ZoneInfo("Europe/Oslo")

        payload = decode_payload("day.started", {"wakeTime": "2026-03-02T07:00:00"}, oslo)

        assert payload.wake_time.astimezone(oslo).hour == 7
        assert payload.wake_time == datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)
        assert payload.date == date(2026, 3, 2)

    def test_offset_timestamp_kept(self):
        payload = decode_payload(
            "sleep.started", {"startTime": "2026-03-01T09:00:00+01:00", "type": "night"}
        )

        assert payload.kind == "night"
        assert payload.start_time == datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def test_sleep_updated_distinguishes_absent_and_null(self):
        """Test that an absent field is UNSET while null clears it."""
        payload = decode_payload("sleep.updated", {"sleepId": 3, "notes": None})

        assert isinstance(payload, SleepUpdated)
        assert payload.sleep_id == 3
        assert payload.notes is None
        assert payload.mood is UNSET
        assert payload.end_time is UNSET

    def test_diaper_logged(self):
        payload = decode_payload(
            "diaper.logged",
            {"time": "2026-03-01T07:15:00Z", "type": "wet", "amount": "lots"},
        )

        assert isinstance(payload, DiaperLogged)
        assert payload.kind == "wet"
        assert payload.amount == "lots"
        assert payload.note is None

    def test_day_started_date_from_wake_time(self):
        payload = decode_payload("day.started", {"wakeTime": "2026-03-01T06:30:00Z"})

        assert isinstance(payload, DayStarted)
        assert payload.date == date(2026, 3, 1)

    def test_day_started_date_is_local_day(self):
        payload = decode_payload(
            "day.started", {"wakeTime": "2026-03-01T23:30:00Z"}, ZoneInfo("Europe/Oslo")
        )

        assert payload.date == date(2026, 3, 2)

    def test_baby_updated_name_only(self):
        """Test that a rename leaves the birthdate untouched."""
        payload = decode_payload("baby.updated", {"name": "Ada Lovelace"})

        assert payload == BabyUpdated(name="Ada Lovelace", birthdate=UNSET)

    def test_baby_updated_birthdate_only(self):
        payload = decode_payload("baby.updated", {"birthdate": "2025-11-03"})

        assert payload.name is UNSET
        assert payload.birthdate == date(2025, 11, 3)

    def test_unknown_type_decodes_to_unknown(self):
        """Test that future event types do not raise."""
        payload = decode_payload("feeding.logged", {"ml": 120})

        assert payload == UnknownPayload(type="feeding.logged", raw={"ml": 120})

    @pytest.mark.parametrize(
        "event_type,raw",
        [
            ("baby.created", {"name": "Ada"}),
            ("sleep.started", {}),
            ("sleep.started", {"startTime": "yesterday"}),
            ("sleep.started", {"startTime": "2026-03-01T09:00:00Z", "type": "siesta"}),
            ("sleep.ended", {"sleepId": "one", "endTime": "2026-03-01T10:00:00Z"}),
            ("sleep.ended", {"sleepId": True, "endTime": "2026-03-01T10:00:00Z"}),
            ("sleep.updated", {"sleepId": 1, "startTime": None}),
            ("diaper.logged", {"type": "wet"}),
            ("diaper.deleted", {}),
        ],
    )
    def test_malformed_payloads_raise(self, event_type, raw):
        with pytest.raises(PayloadError):
            decode_payload(event_type, raw)

    def test_payload_must_be_object(self):
        with pytest.raises(PayloadError):
            decode_payload("diaper.logged", ["not", "a", "dict"])

    def test_every_known_type_has_decoder(self):
        """Test that each vocabulary entry decodes without falling back."""
        for event_type in EventType:
            try:
                payload = decode_payload(event_type.value, {})
            except PayloadError:
                continue
            assert not isinstance(payload, UnknownPayload)


class TestEvent:
    """Tests for the Event record."""

    def test_to_dict_uses_wire_names(self):
        event = Event(
            sequence=4,
            type="diaper.logged",
            payload={"type": "dirty"},
            appended_at=datetime(2026, 3, 1, 7, 0, tzinfo=timezone.utc),
            origin_device="phone-a",
            local_seq=2,
        )

        d = event.to_dict()

        assert d == {
            "sequence": 4,
            "type": "diaper.logged",
            "payload": {"type": "dirty"},
            "originDevice": "phone-a",
            "localSeq": 2,
            "appendedAt": "2026-03-01T07:00:00Z",
        }

    def test_from_dict(self):
        event = Event.from_dict({
            "sequence": 9,
            "type": "sleep.deleted",
            "payload": {"sleepId": 2},
            "appendedAt": "2026-03-01T07:00:00Z",
        })

        assert event.sequence == 9
        assert event.origin_device is None
        assert event.appended_at.tzinfo is not None
        assert event.decoded().sleep_id == 2
