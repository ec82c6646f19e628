# capture_bot/config.py
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Mapping, Optional

from dotenv import load_dotenv

REQUIRED_ENV_VARS = (
    "DISCORD_APPLICATION_ID",
    "DISCORD_BOT_TOKEN",
    "DATABASE_URL",
    "DATABASE_SERVICE_KEY",
    "TARGET_CHANNEL_IDS",
)


class ConfigError(ValueError):
    """Raised when the environment is missing required settings."""


def parse_channel_ids(raw: str) -> FrozenSet[str]:
    """Split a comma separated list of channel ids, dropping blanks."""
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class CaptureBotConfig:
    """Configuration for the capture bot, built once at startup."""
    application_id: str
    bot_token: str = field(repr=False)
    database_url: str = field(repr=False)
    database_service_key: str = field(repr=False)
    target_channel_ids: FrozenSet[str]
    media_dir: Path = Path("assets/media")
    urls_dir: Path = Path("assets/urls")
    media_cdn_prefix: str = "https://cdn.discordapp.com/"
    ranking_command: str = "/mostreacted"
    ranking_channel_name: str = "💻│developers"
    ranking_channel_id: str = "994775534733115412"
    ranking_limit: int = 3
    ranking_window_hours: int = 24
    max_concurrent_downloads: int = 4
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    log_level: str = "INFO"

    def is_monitored(self, channel_id) -> bool:
        return channel_id is not None and str(channel_id) in self.target_channel_ids

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CaptureBotConfig":
        """Create config from environment variables.

        When ``environ`` is omitted the process environment is used, after
        loading a ``.env`` file if one exists.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        missing = [name for name in REQUIRED_ENV_VARS if not environ.get(name)]
        if missing:
            raise ConfigError(f"Missing required environment variable(s): {', '.join(missing)}")

        target_channel_ids = parse_channel_ids(environ["TARGET_CHANNEL_IDS"])
        if not target_channel_ids:
            raise ConfigError("TARGET_CHANNEL_IDS must list at least one channel id")

        try:
            return cls(
                application_id=environ["DISCORD_APPLICATION_ID"],
                bot_token=environ["DISCORD_BOT_TOKEN"],
                database_url=environ["DATABASE_URL"],
                database_service_key=environ["DATABASE_SERVICE_KEY"],
                target_channel_ids=target_channel_ids,
                media_dir=Path(environ.get("MEDIA_DIR", "assets/media")).resolve(),
                urls_dir=Path(environ.get("URLS_DIR", "assets/urls")).resolve(),
                media_cdn_prefix=environ.get("MEDIA_CDN_PREFIX", "https://cdn.discordapp.com/"),
                ranking_command=environ.get("RANKING_COMMAND", "/mostreacted"),
                ranking_channel_name=environ.get("RANKING_CHANNEL_NAME", "💻│developers"),
                ranking_channel_id=environ.get("RANKING_CHANNEL_ID", "994775534733115412"),
                ranking_limit=int(environ.get("RANKING_LIMIT", "3")),
                ranking_window_hours=int(environ.get("RANKING_WINDOW_HOURS", "24")),
                max_concurrent_downloads=int(environ.get("MAX_CONCURRENT_DOWNLOADS", "4")),
                db_pool_min_size=int(environ.get("DB_POOL_MIN_SIZE", "1")),
                db_pool_max_size=int(environ.get("DB_POOL_MAX_SIZE", "5")),
                log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}") from e
