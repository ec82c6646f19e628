"""
This module creates and assembles the capture bot.
Components include:
- Configuration
- Database pool
- Entity resolver
- Media archiver
- Message ingestor
- Reaction aggregator
- Ranking command handler

Each gateway event is routed to one of the components above.
"""

import logging
from typing import Optional

import discord

from .archiver import MediaArchiver
from .config import CaptureBotConfig
from .database import Database
from .ingestion import MessageIngestor, owning_channel
from .ranking import RankingQueryHandler
from .reactions import MessageNotFoundError, ReactionAggregator
from .resolver import EntityResolver

logger = logging.getLogger(__name__)


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.guilds = True
    intents.guild_messages = True
    intents.message_content = True
    intents.guild_reactions = True
    intents.members = True
    intents.moderation = True
    intents.dm_messages = True
    intents.dm_reactions = True
    return intents


class CaptureBot:
    def __init__(self, config: CaptureBotConfig,
                 database: Optional[Database] = None,
                 archiver: Optional[MediaArchiver] = None,
                 client: Optional[discord.Client] = None) -> None:
        self.config = config
        self.database = database or Database(config)
        self.archiver = archiver or MediaArchiver(config)
        self.resolver = EntityResolver(self.database)
        self.ingestor = MessageIngestor(self.database, self.resolver, self.archiver)
        self.aggregator = ReactionAggregator(self.database)
        self.ranking = RankingQueryHandler(config, self.database)

        self.client: discord.Client = client or discord.Client(intents=build_intents())

        # Set up event handlers
        self.client.event(self.on_ready)
        self.client.event(self.on_message)
        self.client.event(self.on_thread_create)
        self.client.event(self.on_reaction_add)
        self.client.event(self.on_reaction_remove)
        self.client.event(self.on_error)

    def is_monitored_channel(self, channel) -> bool:
        """A channel is monitored if it, or the parent of a thread, is a target."""
        if channel is None:
            return False
        if self.config.is_monitored(channel.id):
            return True
        channel_external_id, _ = owning_channel(channel)
        return self.config.is_monitored(channel_external_id)

    async def on_ready(self) -> None:
        """Called when the bot is ready to start."""
        logger.info(f"Logged in as {self.client.user} (ID: {self.config.application_id})")
        logger.info(f"Monitoring channels: {', '.join(sorted(self.config.target_channel_ids))}")

    async def on_message(self, message: discord.Message) -> None:
        """Handle incoming messages."""
        if message.author.bot or not self.is_monitored_channel(message.channel):
            return

        if self.ranking.is_command(message.content):
            await self.ranking.handle(message)
            return

        await self.ingestor.ingest(message)

    async def on_thread_create(self, thread: discord.Thread) -> None:
        if thread.parent_id is None or not self.config.is_monitored(thread.parent_id):
            return
        await self.ingestor.ingest_thread(thread)

    async def on_reaction_add(self, reaction: discord.Reaction, user) -> None:
        await self.handle_reaction(reaction, added=True)

    async def on_reaction_remove(self, reaction: discord.Reaction, user) -> None:
        await self.handle_reaction(reaction, added=False)

    async def handle_reaction(self, reaction: discord.Reaction, added: bool) -> None:
        message = reaction.message
        if not self.is_monitored_channel(message.channel):
            logger.debug(f"Skipping reaction in non-target channel: {message.channel.id}")
            return

        emoji = str(reaction.emoji)
        logger.info(
            f"Processing {'added' if added else 'removed'} reaction {emoji} "
            f"(count: {reaction.count}) on message {message.id}"
        )
        try:
            await self.aggregator.apply_reaction(message.id, emoji, reaction.count, added)
            logger.info(f"Successfully updated reactions for message {message.id}")
        except MessageNotFoundError:
            logger.warning(f"Reaction on unknown message {message.id}, skipping update")
        except Exception:
            logger.exception(f"Error handling reaction on message {message.id}")

    async def on_error(self, event_method: str, *args, **kwargs) -> None:
        # called from inside an except block by discord.py
        logger.exception(f"Discord client error in {event_method}")

    async def start(self) -> None:
        """Open shared resources, log in and run until disconnected."""
        await self.database.open()
        self.archiver.ensure_dirs()
        try:
            await self.client.start(self.config.bot_token)
        finally:
            if not self.client.is_closed():
                await self.client.close()
            await self.archiver.aclose()
            await self.database.close()
