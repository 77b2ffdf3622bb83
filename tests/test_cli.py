"""Tests for the CLI entry point."""

import json

import pytest
from click.testing import CliRunner

from codetime.cli import main
from codetime.context import TrackerContext
from codetime.store import SessionStore, StoreWriteError


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep the CLI away from the real ~/.codingtimetracker."""
    monkeypatch.setenv("CODETIME_DB", str(tmp_path / "default.db"))
    monkeypatch.setenv("CODETIME_EXPORT_DIR", str(tmp_path / "default-exports"))


def populate(db_path, clock) -> None:
    """Helper to write a database with a few closed sessions."""
    store = SessionStore.open(db_path, clock=clock)
    for file_path, project, duration in [
        ("/ws/a/one.py", "/ws/a", 100_000),
        ("/ws/a/two.py", "/ws/a", 200_000),
        ("/ws/b/three.py", "/ws/b", 50_000),
    ]:
        session_id = store.start_session(file_path, project)
        clock.advance(duration)
        store.end_session(session_id)
    store.close()


def test_main_help():
    """Test that --help works and shows the group description."""
    runner = CliRunner()
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    assert "Coding time tracker CLI" in result.output


def test_main_no_args():
    """Click groups exit with code 2 when no subcommand is provided."""
    result = CliRunner().invoke(main, [])
    assert result.exit_code == 2
    assert "Usage:" in result.output


class TestTrackCommand:
    """Tests for the track command."""

    def test_track_events_from_stdin(self, tmp_path):
        db_path = tmp_path / "test.db"
        events = [
            {"kind": "text_change", "file_path": "/ws/a/main.py"},
            {"kind": "selection_change", "file_path": "/ws/a/main.py"},
            {"kind": "active_file_change", "file_path": "/ws/b/other.py"},
            {"kind": "window_focus_change", "focused": False},
        ]
        input_data = "\n".join(json.dumps(e) for e in events) + "\n"

        result = CliRunner().invoke(
            main,
            ["track", "--db", str(db_path), "--workspace", "/ws/a", "--workspace", "/ws/b"],
            input=input_data,
        )

        assert result.exit_code == 0, result.output
        assert "Processed 4 events" in result.output

        store = SessionStore.open_snapshot(db_path)
        assert store.get_ongoing_sessions() == []
        sessions = store.get_sessions()
        assert [(s.file_path, s.project_path) for s in sessions] == [
            ("/ws/a/main.py", "/ws/a"),
            ("/ws/b/other.py", "/ws/b"),
        ]
        store.close()

    def test_track_skips_malformed_lines(self, tmp_path):
        db_path = tmp_path / "test.db"
        input_data = "\n".join([
            "not json",
            json.dumps({"kind": "text_change"}),
            "",
            json.dumps({"kind": "text_change", "file_path": "/a.py"}),
        ]) + "\n"

        result = CliRunner().invoke(main, ["track", "--db", str(db_path)], input=input_data)

        assert result.exit_code == 0
        assert "line 1: invalid JSON" in result.output
        assert "line 2: validation error" in result.output
        assert "Processed 1 events" in result.output

    def test_track_with_active_file(self, tmp_path):
        db_path = tmp_path / "test.db"
        result = CliRunner().invoke(
            main, ["track", "--db", str(db_path), "--active-file", "/a.py"], input=""
        )

        assert result.exit_code == 0
        store = SessionStore.open_snapshot(db_path)
        assert store.get_file_stats("/a.py") is not None
        store.close()

    def test_track_corrupt_database(self, tmp_path):
        db_path = tmp_path / "test.db"
        db_path.write_bytes(b"garbage" * 500)

        result = CliRunner().invoke(main, ["track", "--db", str(db_path)], input="")

        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_track_uses_env_database(self, tmp_path):
        result = CliRunner().invoke(main, ["track"], input="")
        assert result.exit_code == 0
        assert (tmp_path / "default.db").exists()

    def test_track_final_write_failure(self, tmp_path, monkeypatch):
        def failing_flush(self):
            raise StoreWriteError("disk full")

        monkeypatch.setattr(SessionStore, "flush", failing_flush)
        input_data = json.dumps({"kind": "text_change", "file_path": "/a.py"}) + "\n"

        result = CliRunner().invoke(main, ["track", "--db", str(tmp_path / "test.db")], input=input_data)

        assert result.exit_code == 1
        assert "Error: disk full" in result.output
        assert "Processed" not in result.output

    def test_track_read_error_is_not_masked_by_write_failure(self, tmp_path, monkeypatch):
        def failing_flush(self):
            raise StoreWriteError("disk full")

        def broken_start(self, *, active_file=None):
            raise RuntimeError("event source failed")

        monkeypatch.setattr(SessionStore, "flush", failing_flush)
        monkeypatch.setattr(TrackerContext, "start", broken_start)

        result = CliRunner().invoke(main, ["track", "--db", str(tmp_path / "test.db")], input="")

        assert isinstance(result.exception, RuntimeError)
        assert "Error: disk full" not in result.output


class TestReportCommands:
    """Tests for the read-only report commands."""

    @pytest.mark.parametrize("command", [["stats"], ["today"], ["sessions"], ["file", "/a.py"], ["export"]])
    def test_missing_database(self, tmp_path, command):
        result = CliRunner().invoke(main, command + ["--db", str(tmp_path / "missing.db")])
        assert result.exit_code == 1
        assert "No database found" in result.output

    def test_stats(self, tmp_path, clock):
        db_path = tmp_path / "test.db"
        populate(db_path, clock)

        result = CliRunner().invoke(main, ["stats", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "## Time by Project" in result.output
        assert "| a | 5m 0s | 2 |" in result.output
        assert "| b | 50s | 1 |" in result.output
        assert result.output.index("| a |") < result.output.index("| b |")

    def test_file(self, tmp_path, clock):
        db_path = tmp_path / "test.db"
        populate(db_path, clock)

        result = CliRunner().invoke(main, ["file", "/ws/a/two.py", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "- **Total Time:** 3m 20s" in result.output

        result = CliRunner().invoke(main, ["file", "/ws/zzz/none.py", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "No tracking data for: none.py" in result.output

    def test_sessions_lists_unterminated(self, tmp_path, clock):
        db_path = tmp_path / "test.db"
        store = SessionStore.open(db_path, clock=clock)
        store.start_session("/ws/a/crashed.py", "/ws/a")
        store.flush()
        store._save_timer.cancel()

        result = CliRunner().invoke(main, ["sessions", "--db", str(db_path)])

        assert result.exit_code == 0
        assert "/ws/a/crashed.py" in result.output
        # Listing must not close the dangling session on disk
        snapshot = SessionStore.open_snapshot(db_path)
        assert len(snapshot.get_ongoing_sessions()) == 1
        snapshot.close()

    def test_sessions_none(self, tmp_path, clock):
        db_path = tmp_path / "test.db"
        populate(db_path, clock)
        result = CliRunner().invoke(main, ["sessions", "--db", str(db_path)])
        assert "No unterminated sessions" in result.output

    def test_today(self, tmp_path):
        db_path = tmp_path / "test.db"
        SessionStore.open(db_path).close()
        result = CliRunner().invoke(main, ["today", "--db", str(db_path)])
        assert result.exit_code == 0
        assert "Today: 0s across 0 files" in result.output

    def test_export(self, tmp_path, clock):
        db_path = tmp_path / "test.db"
        populate(db_path, clock)
        out_dir = tmp_path / "exports"

        result = CliRunner().invoke(
            main, ["export", "--db", str(db_path), "--format", "csv", "--out", str(out_dir)]
        )

        assert result.exit_code == 0
        files = list(out_dir.iterdir())
        assert len(files) == 1
        assert files[0].suffix == ".csv"
        assert '"/ws/a/two.py","/ws/a",200000,3m 20s,' in files[0].read_text()
