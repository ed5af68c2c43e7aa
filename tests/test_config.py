"""Tests for environment-driven settings."""

import pytest

from rssfeed_server.config import Settings


def test_defaults(monkeypatch):
    for name in (
        "RSS_DB_PATH",
        "FEED_REFRESH_INTERVAL_MINUTES",
        "FEED_REFRESH_BATCH_SIZE",
        "SCHEDULER_ENABLED",
        "RSS_ADMIN_USERNAME",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == "rssfeed_server.db"
    assert settings.refresh_interval_minutes == 60
    assert settings.refresh_batch_size == 10
    assert settings.sweep_interval_minutes == 60
    assert settings.fetch_timeout == 30.0
    assert settings.scheduler_enabled is True
    assert settings.admin_username is None


def test_from_env(monkeypatch):
    monkeypatch.setenv("RSS_DB_PATH", "/tmp/feeds.db")
    monkeypatch.setenv("FEED_REFRESH_INTERVAL_MINUTES", "15")
    monkeypatch.setenv("FEED_REFRESH_BATCH_SIZE", "25")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("RSS_LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.db_path == "/tmp/feeds.db"
    assert settings.refresh_interval_minutes == 15
    assert settings.refresh_batch_size == 25
    assert settings.scheduler_enabled is False
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "field", ["refresh_interval_minutes", "refresh_batch_size", "sweep_interval_minutes"]
)
def test_rejects_non_positive(field):
    with pytest.raises(ValueError, match=field):
        Settings(**{field: 0})
