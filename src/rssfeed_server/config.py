"""Runtime configuration for RSS Feed Server, read from the environment."""

import os
from dataclasses import dataclass

DEFAULT_DB_PATH = "rssfeed_server.db"
DEFAULT_REFRESH_INTERVAL_MINUTES = 60
DEFAULT_REFRESH_BATCH_SIZE = 10
DEFAULT_SWEEP_INTERVAL_MINUTES = 60
DEFAULT_SESSION_CLEANUP_MINUTES = 60
DEFAULT_SESSION_MAX_AGE_HOURS = 24
DEFAULT_FETCH_TIMEOUT = 30.0  # seconds


@dataclass(frozen=True)
class Settings:
    """Server settings. Use Settings.from_env() outside of tests."""

    db_path: str = DEFAULT_DB_PATH
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES
    refresh_batch_size: int = DEFAULT_REFRESH_BATCH_SIZE
    sweep_interval_minutes: int = DEFAULT_SWEEP_INTERVAL_MINUTES
    session_cleanup_interval_minutes: int = DEFAULT_SESSION_CLEANUP_MINUTES
    session_max_age_hours: int = DEFAULT_SESSION_MAX_AGE_HOURS
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    scheduler_enabled: bool = True
    admin_username: str | None = None
    admin_password: str | None = None

    def __post_init__(self) -> None:
        for name in (
            "refresh_interval_minutes",
            "refresh_batch_size",
            "sweep_interval_minutes",
            "session_cleanup_interval_minutes",
            "session_max_age_hours",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ
        return cls(
            db_path=env.get("RSS_DB_PATH", DEFAULT_DB_PATH),
            host=env.get("RSS_HOST", "127.0.0.1"),
            port=int(env.get("RSS_PORT", 8000)),
            log_level=env.get("RSS_LOG_LEVEL", "INFO").upper(),
            refresh_interval_minutes=int(
                env.get("FEED_REFRESH_INTERVAL_MINUTES", DEFAULT_REFRESH_INTERVAL_MINUTES)
            ),
            refresh_batch_size=int(
                env.get("FEED_REFRESH_BATCH_SIZE", DEFAULT_REFRESH_BATCH_SIZE)
            ),
            sweep_interval_minutes=int(
                env.get("FEED_SWEEP_INTERVAL_MINUTES", DEFAULT_SWEEP_INTERVAL_MINUTES)
            ),
            session_cleanup_interval_minutes=int(
                env.get("SESSION_CLEANUP_INTERVAL_MINUTES", DEFAULT_SESSION_CLEANUP_MINUTES)
            ),
            session_max_age_hours=int(
                env.get("SESSION_MAX_AGE_HOURS", DEFAULT_SESSION_MAX_AGE_HOURS)
            ),
            fetch_timeout=float(env.get("FEED_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT)),
            scheduler_enabled=_env_flag(env.get("SCHEDULER_ENABLED", "true")),
            admin_username=env.get("RSS_ADMIN_USERNAME") or None,
            admin_password=env.get("RSS_ADMIN_PASSWORD") or None,
        )


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")
