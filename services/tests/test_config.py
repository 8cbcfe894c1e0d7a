"""Tests for settings and logging setup."""

from deckhand.config import Settings
from deckhand.logging_config import level_first


class TestSettings:
    def test_defaults(self):
        s = Settings()

        assert s.worker.queues == ["deploy", "snapshot", "letmein"]
        assert s.deploy.concurrency_window_minutes == 60
        assert s.deploy.default_backup_mode == "db"
        assert s.queue.key_prefix == "deckhand:"
        assert s.backends.allowed == []

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("DECKHAND_DEPLOY__CONCURRENCY_WINDOW_MINUTES", "30")
        monkeypatch.setenv("DECKHAND_BACKENDS__DEFAULT", "command")

        s = Settings()

        assert s.deploy.concurrency_window_minutes == 30
        assert s.backends.default == "command"


def test_level_first_orders_keys():
    event = {"event": "Job starting", "token": "t1", "timestamp": "now", "level": "info", "job": "DeployJob"}

    ordered = level_first(None, "info", event)

    assert list(ordered)[:4] == ["level", "timestamp", "job", "token"]
    assert ordered["event"] == "Job starting"
