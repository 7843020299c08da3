"""Runtime settings read from the environment."""

import os
from dataclasses import dataclass
from datetime import timedelta

DEFAULT_DB_PATH = "rssnotify.db"
CHECKPOINT_DB_PATH = "rssnotify_checkpoints.db"
DEFAULT_UPDATE_TIMES = "9-17"
DEFAULT_AGENT_MODEL = "claude-sonnet-4-5-20250929"


@dataclass
class Settings:
    db_path: str = DEFAULT_DB_PATH
    bot_token: str | None = None
    update_times: str = DEFAULT_UPDATE_TIMES
    cron: str | None = None
    freshness_minutes: int = 55
    log_level: str = "INFO"
    log_path: str | None = None
    checkpoint_path: str = CHECKPOINT_DB_PATH
    agent_model: str = DEFAULT_AGENT_MODEL

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "Settings":
        """Build settings from ``RSSNOTIFY_*`` variables and ``TELEGRAM_BOT_TOKEN``.

        Raises:
            ValueError: If RSSNOTIFY_FRESHNESS_MINUTES is not an integer.
        """
        env = os.environ if environ is None else environ
        return cls(
            db_path=env.get("RSSNOTIFY_DB_PATH", DEFAULT_DB_PATH),
            bot_token=env.get("TELEGRAM_BOT_TOKEN") or None,
            update_times=env.get("RSSNOTIFY_UPDATE_TIMES", DEFAULT_UPDATE_TIMES),
            cron=env.get("RSSNOTIFY_CRON") or None,
            freshness_minutes=int(env.get("RSSNOTIFY_FRESHNESS_MINUTES", 55)),
            log_level=env.get("RSSNOTIFY_LOG_LEVEL", "INFO").upper(),
            log_path=env.get("RSSNOTIFY_LOG_PATH") or None,
            checkpoint_path=env.get("RSSNOTIFY_CHECKPOINT_PATH", CHECKPOINT_DB_PATH),
            agent_model=env.get("RSSNOTIFY_AGENT_MODEL", DEFAULT_AGENT_MODEL),
        )

    @property
    def freshness(self) -> timedelta:
        return timedelta(minutes=self.freshness_minutes)
