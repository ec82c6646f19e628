"""
Discord message capture bot.

Listens to a configured set of channels, stores messages, threads and
reaction counts in Postgres, mirrors linked media to disk and answers the
``/mostreacted`` command.
"""

from .config import CaptureBotConfig, ConfigError
from .models import ChannelRecord, MessageRecord, RankedMessage, ThreadRecord
from .urls import extract_urls

__all__ = [
    "CaptureBotConfig",
    "ConfigError",
    "ChannelRecord",
    "MessageRecord",
    "RankedMessage",
    "ThreadRecord",
    "extract_urls",
]
