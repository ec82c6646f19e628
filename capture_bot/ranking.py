"""
The ``/mostreacted`` command.

Reads the reacted messages of one configured channel from the last day,
ranks them by total reaction count and replies with the top few.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import discord
import psycopg

from .config import CaptureBotConfig
from .models import RankedMessage

logger = logging.getLogger(__name__)

BAR = "│"
DISCORD_CHANNELS_URL = "https://discord.com/channels"

DB_ERROR_REPLY = "Sorry, there was an error fetching the most reacted messages."
GENERIC_ERROR_REPLY = "Sorry, there was an error processing your request."

DISCORD_MESSAGE_LIMIT = 2000
MAX_CONTENT_CHARS = 400
ELLIPSIS = "…"


def rank_messages(messages: Sequence[RankedMessage], limit: int = 3) -> List[RankedMessage]:
    """Sort by total reactions, highest first, and keep ``limit`` entries.

    The sort is stable: messages with equal totals keep their input order,
    which is newest first as returned by the query.
    """
    return sorted(messages, key=lambda m: m.total_reactions, reverse=True)[:limit]


def channel_label(channel_name: str) -> str:
    # "💻│developers" -> "developers"
    return channel_name.rsplit(BAR, 1)[-1]


def extra_urls(message: RankedMessage) -> List[str]:
    """Urls worth listing because they do not already appear in the text."""
    urls = [*message.media_urls, *message.urls, *message.embed_urls]
    return [url for url in urls if url not in message.content]


def clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - len(ELLIPSIS)] + ELLIPSIS


def format_message_block(message: RankedMessage, guild_id) -> str:
    lines = [
        f"{BAR} 🔗 **Message Link:**",
        f"{BAR} {DISCORD_CHANNELS_URL}/{guild_id}/{message.channel_external_id}/{message.message_id}",
        f"{BAR} 💬 **Message Contents:**",
    ]
    if message.content.strip():
        lines.append(f"{BAR} " + clip(message.content, MAX_CONTENT_CHARS).replace("\n", f"\n{BAR} "))
    else:
        lines.append(f"{BAR} *message has no contents*")
    lines.append(f"{BAR} ⭐ **Reactions:** {message.total_reactions}")

    urls = extra_urls(message)
    if urls:
        lines.append(f"{BAR} 📎 **Media:**")
        lines.append(f"{BAR} " + f"\n{BAR} ".join(urls))
    return "\n".join(lines) + "\n"


def format_ranking(messages: Sequence[RankedMessage], guild_id, config: CaptureBotConfig) -> str:
    channel_link = f"{DISCORD_CHANNELS_URL}/{guild_id}/{config.ranking_channel_id}"
    label = channel_label(config.ranking_channel_name)
    response = (
        f"**Most Popular Messages in [#{label}]({channel_link}) "
        f"(Last {config.ranking_window_hours}h)**\n\n"
    )
    for message in messages:
        response += format_message_block(message, guild_id) + "\n"
    return clip(response, DISCORD_MESSAGE_LIMIT)


class RankingQueryHandler:
    def __init__(self, config: CaptureBotConfig, database):
        self.config = config
        self.database = database

    def is_command(self, content: Optional[str]) -> bool:
        return content == self.config.ranking_command

    def empty_reply(self) -> str:
        label = channel_label(self.config.ranking_channel_name)
        return (
            f"No reacted messages found in the {label} channel for the last "
            f"{self.config.ranking_window_hours} hours."
        )

    async def top_messages(self, now: Optional[datetime] = None) -> List[RankedMessage]:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=self.config.ranking_window_hours)
        rows = await self.database.fetch_recent_reacted(self.config.ranking_channel_name, since)
        candidates = [RankedMessage.from_row(row) for row in rows]
        return rank_messages(candidates, self.config.ranking_limit)

    async def build_reply(self, guild_id, now: Optional[datetime] = None) -> str:
        """Return the reply text, including the apology and empty cases."""
        try:
            top = await self.top_messages(now)
        except psycopg.Error as e:
            logger.error(f"Error fetching most reacted messages: {e}")
            return DB_ERROR_REPLY
        if not top:
            return self.empty_reply()
        return format_ranking(top, guild_id, self.config)

    async def handle(self, message: discord.Message) -> None:
        guild_id = message.guild.id if message.guild else "@me"
        try:
            reply = await self.build_reply(guild_id)
        except Exception:
            logger.exception(f"Error handling {self.config.ranking_command} command")
            reply = GENERIC_ERROR_REPLY
        try:
            await message.reply(reply)
        except discord.HTTPException:
            logger.exception(f"Failed to send {self.config.ranking_command} reply")
