"""Tests for the append-only event log."""

import pytest

from sovelogg.errors import DurabilityError
from sovelogg.events import EventLog


@pytest.fixture
def event_log():
    """Create an in-memory event log."""
    log = EventLog(":memory:")
    log.connect()
    yield log
    log.close()


class TestAppend:
    """Tests for appending events."""

    def test_first_sequence_is_one(self, event_log):
        """Test that an empty log starts numbering at 1."""
        event = event_log.append("baby.created", {"name": "Ada", "birthdate": "2026-01-01"})

        assert event.sequence == 1
        assert event.type == "baby.created"
        assert event.payload == {"name": "Ada", "birthdate": "2026-01-01"}
        assert event.appended_at.tzinfo is not None

    def test_sequences_increase_without_gaps(self, event_log):
        """Test that consecutive appends get consecutive sequence numbers."""
        sequences = [event_log.append("diaper.logged", {"n": i}).sequence for i in range(5)]

        assert sequences == [1, 2, 3, 4, 5]

    def test_append_records_origin(self, event_log):
        """Test that device id and local sequence are stored."""
        event_log.append("diaper.logged", {}, origin_device="phone-a", local_seq=7)

        stored = event_log.read()[0]
        assert stored.origin_device == "phone-a"
        assert stored.local_seq == 7

    def test_append_batch_keeps_order(self, event_log):
        """Test that a batch is appended in the given order."""
        events = event_log.append_batch([
            ("sleep.started", {"startTime": "2026-03-01T09:00:00Z"}, "d", 1),
            ("sleep.ended", {"sleepId": 1, "endTime": "2026-03-01T10:00:00Z"}, "d", 2),
        ])

        assert [e.sequence for e in events] == [1, 2]
        assert [e.type for e in event_log.read()] == ["sleep.started", "sleep.ended"]

    def test_failed_batch_appends_nothing(self, event_log):
        """Test that a batch failing midway leaves the log untouched."""
        event_log.append("diaper.logged", {"n": 0})

        with pytest.raises(DurabilityError):
            event_log.append_batch([
                ("diaper.logged", {"n": 1}, None, None),
                ("diaper.logged", {"bad": object()}, None, None),
            ])

        assert event_log.latest_sequence() == 1
        assert len(event_log.read()) == 1

    def test_closed_database_raises_durability_error(self, event_log):
        """Test that storage errors surface as DurabilityError."""
        event_log._conn.close()

        with pytest.raises(DurabilityError):
            event_log.append("diaper.logged", {})

    def test_sequence_not_reused_after_failure(self, event_log):
        """Test that a rolled-back append does not leave a gap or reuse."""
        event_log.append("diaper.logged", {})
        with pytest.raises(DurabilityError):
            event_log.append("diaper.logged", {"bad": object()})
        event = event_log.append("diaper.logged", {})

        assert event.sequence == 2


class TestRead:
    """Tests for reading the log."""

    def test_read_empty(self, event_log):
        assert event_log.read() == []
        assert event_log.latest_sequence() == 0

    def test_read_since(self, event_log):
        """Test that since is an exclusive lower bound."""
        for i in range(4):
            event_log.append("diaper.logged", {"n": i})

        events = event_log.read(since=2)

        assert [e.sequence for e in events] == [3, 4]
        assert event_log.read(since=4) == []

    def test_find_duplicate(self, event_log):
        """Test lookup by idempotency key."""
        event_log.append("diaper.logged", {}, origin_device="phone-a", local_seq=1)
        event_log.append("diaper.logged", {}, origin_device="phone-b", local_seq=1)

        found = event_log.find_duplicate("phone-b", 1)

        assert found is not None
        assert found.sequence == 2
        assert event_log.find_duplicate("phone-a", 2) is None

    def test_get_stats(self, event_log):
        event_log.append("diaper.logged", {}, origin_device="a")
        event_log.append("diaper.logged", {}, origin_device="b")
        event_log.append("sleep.started", {"startTime": "2026-03-01T09:00:00Z"}, origin_device="a")

        stats = event_log.get_stats()

        assert stats["latest_sequence"] == 3
        assert stats["total_events"] == 3
        assert stats["events_by_type"] == {"diaper.logged": 2, "sleep.started": 1}
        assert stats["devices"] == 2


class TestPersistence:
    """Tests for on-disk durability."""

    def test_events_survive_reopen(self, tmp_path):
        """Test that committed events are readable after reopening."""
        db_path = tmp_path / "events.db"

        log = EventLog(db_path)
        log.connect()
        log.append("baby.created", {"name": "Ada", "birthdate": "2026-01-01"})
        log.close()

        reopened = EventLog(db_path)
        reopened.connect()
        try:
            events = reopened.read()
            assert len(events) == 1
            assert events[0].payload["name"] == "Ada"
            assert reopened.append("diaper.logged", {}).sequence == 2
        finally:
            reopened.close()

    def test_wal_mode_on_disk(self, tmp_path):
        log = EventLog(tmp_path / "events.db")
        log.connect()
        try:
            mode = log._conn.execute("PRAGMA journal_mode").fetchone()[0]
            assert mode.lower() == "wal"
        finally:
            log.close()

    def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "events.db"
        log = EventLog(db_path)
        log.connect()
        log.close()

        assert db_path.exists()
