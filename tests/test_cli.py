"""Tests for the command-line entry point."""

import json
import logging
import sys

from sovelogg.__main__ import JSONFormatter, main
from sovelogg.events import EventLog


def write_config(tmp_path) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(
        f"server:\n  db_path: {tmp_path / 'events.db'}\n  timezone: UTC\n"
        f"client:\n  state_path: {tmp_path / 'client.db'}\n"
    )
    return str(path)


def seed_log(tmp_path) -> None:
    log = EventLog(tmp_path / "events.db")
    log.connect()
    log.append("baby.created", {"name": "Ada", "birthdate": "2025-11-02"})
    log.append("diaper.logged", {"time": "2026-03-02T08:00:00Z", "type": "wet"})
    log.close()


class TestJSONFormatter:
    def test_format(self):
        record = logging.LogRecord("sovelogg.service", logging.INFO, __file__, 1, "hello %s", ("world",), None)

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["component"] == "sovelogg.service"
        assert data["message"] == "hello world"


class TestCommands:
    """Tests for offline subcommands."""

    def test_no_command_prints_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["sovelogg"])

        assert main() == 1
        assert "usage" in capsys.readouterr().out

    def test_events_json(self, tmp_path, monkeypatch, capsys):
        seed_log(tmp_path)
        monkeypatch.setattr(sys, "argv", ["sovelogg", "-c", write_config(tmp_path), "events", "--json", "--since", "1"])

        assert main() == 0

        lines = [l for l in capsys.readouterr().out.splitlines() if l.startswith("{")]
        assert len(lines) == 1
        assert json.loads(lines[0])["type"] == "diaper.logged"

    def test_rebuild(self, tmp_path, monkeypatch, capsys):
        seed_log(tmp_path)
        monkeypatch.setattr(sys, "argv", ["sovelogg", "-c", write_config(tmp_path), "rebuild"])

        assert main() == 0

        out = capsys.readouterr().out
        assert "Replayed up to sequence 2" in out
        assert "Diaper entries: 1" in out

    def test_flush_discard(self, tmp_path, monkeypatch, capsys):
        from sovelogg.client import LocalStore

        store = LocalStore(tmp_path / "client.db")
        store.connect()
        store.enqueue("diaper.logged", {"time": "2026-03-02T08:00:00Z", "type": "wet"})
        store.close()
        monkeypatch.setattr(sys, "argv", ["sovelogg", "-c", write_config(tmp_path), "flush", "--discard"])

        assert main() == 0
        assert "Discarded 1 queued event(s)" in capsys.readouterr().out
