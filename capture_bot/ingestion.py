"""
Message and thread ingestion.

For each captured message:
- resolve the channel (and thread, if any) to internal ids
- normalize the message into a ``messages`` row
- archive its urls concurrently
- upsert the row by external message id

Failures are logged and swallowed here so one bad message never takes
down the event loop or its sibling handlers.
"""

import logging
from typing import Optional, Tuple

import discord

from .archiver import MediaArchiver
from .database import Database
from .models import MessageRecord
from .normalizer import normalize
from .resolver import EntityResolver

logger = logging.getLogger(__name__)

UNKNOWN_CHANNEL_NAME = "unknown"


def thread_created_at(thread: discord.Thread):
    # threads older than 2022 carry no creation timestamp
    return thread.created_at or discord.utils.snowflake_time(thread.id)


def owning_channel(channel) -> Tuple[str, str]:
    """Return (external id, name) of the channel that owns ``channel``."""
    if isinstance(channel, discord.Thread):
        parent = channel.parent
        name = parent.name if parent is not None else UNKNOWN_CHANNEL_NAME
        return str(channel.parent_id), name
    return str(channel.id), getattr(channel, "name", None) or UNKNOWN_CHANNEL_NAME


class MessageIngestor:
    def __init__(self, database: Database, resolver: EntityResolver, archiver: MediaArchiver):
        self.database = database
        self.resolver = resolver
        self.archiver = archiver

    async def store_thread(self, channel_uuid: str, thread: discord.Thread) -> str:
        return await self.resolver.resolve_thread(
            thread.id,
            channel_uuid,
            thread.name,
            thread_created_at(thread),
            not thread.archived,
        )

    async def resolve_location(self, message: discord.Message) -> Tuple[str, Optional[str], str]:
        """Resolve the message's channel and thread to internal ids.

        Returns (channel uuid, thread uuid or None, channel name).
        """
        channel_external_id, channel_name = owning_channel(message.channel)
        channel_uuid = await self.resolver.resolve_channel(channel_external_id, channel_name)

        thread_uuid = None
        if isinstance(message.channel, discord.Thread):
            thread_uuid = await self.store_thread(channel_uuid, message.channel)
        else:
            # the message started a thread of its own
            started = getattr(message, "thread", None)
            if isinstance(started, discord.Thread):
                thread_uuid = await self.store_thread(channel_uuid, started)
        return channel_uuid, thread_uuid, channel_name

    async def ingest(self, message: discord.Message) -> Optional[MessageRecord]:
        try:
            channel_uuid, thread_uuid, channel_name = await self.resolve_location(message)
            record = normalize(message, channel_uuid, thread_uuid)

            await self.archiver.archive_all(
                record.archivable_urls, channel_name, record.message_id, record.created_at
            )

            await self.database.upsert_message(record)
            reply_note = f" (reply to {record.reply_to})" if record.reply_to else ""
            logger.info(f"Stored message {record.message_id} from channel {channel_name}{reply_note}")
            return record
        except Exception:
            logger.exception(f"Error storing message {getattr(message, 'id', '?')}")
            return None

    async def ingest_thread(self, thread: discord.Thread) -> Optional[str]:
        try:
            parent_name = thread.parent.name if thread.parent is not None else UNKNOWN_CHANNEL_NAME
            channel_uuid = await self.resolver.resolve_channel(str(thread.parent_id), parent_name)
            thread_uuid = await self.store_thread(channel_uuid, thread)
            logger.info(f"Stored new thread {thread.name}")
            return thread_uuid
        except Exception:
            logger.exception(f"Error storing thread {getattr(thread, 'id', '?')}")
            return None
