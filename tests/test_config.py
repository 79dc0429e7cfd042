"""Tests for Settings configuration model."""

from pathlib import Path

from ephemera.config import Settings


class TestDefaults:
    def test_lifecycle_defaults(self):
        s = Settings()
        assert s.message_ttl_hours == 3
        assert s.snapshot_view_cap == 2
        assert s.close_grace_seconds == 10
        assert s.preview_max_chars == 50

    def test_presence_defaults(self):
        s = Settings()
        assert s.presence_stale_seconds == 30
        assert s.typing_idle_seconds == 3

    def test_database_path_is_a_path(self):
        assert Settings().database_path == Path("data/ephemera.db")


class TestOverrides:
    def test_init_values_win(self):
        s = Settings(snapshot_view_cap=5, database_path="/tmp/x.db")
        assert s.snapshot_view_cap == 5
        assert s.database_path == Path("/tmp/x.db")

    def test_environment_ignored_under_pytest(self, monkeypatch):
        monkeypatch.setenv("MESSAGE_TTL_HOURS", "9")
        assert Settings().message_ttl_hours == 3
