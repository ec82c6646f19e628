from typing import List, Optional

import discord

from .models import MessageRecord
from .urls import extract_urls


def attachment_urls(message: discord.Message) -> List[str]:
    return [attachment.url for attachment in message.attachments]


def embed_urls(message: discord.Message) -> List[str]:
    # embeds without a direct url (rich text cards, etc.) are skipped
    return [embed.url for embed in message.embeds if embed.url]


def reply_target(message: discord.Message) -> Optional[str]:
    reference = message.reference
    if reference is None or reference.message_id is None:
        return None
    return str(reference.message_id)


def normalize(message: discord.Message, channel_id: str, thread_id: Optional[str] = None) -> MessageRecord:
    """Build the ``messages`` row for an inbound message.

    ``channel_id`` and ``thread_id`` are the internal ids already resolved
    by the caller. The reaction map always starts empty; reactions are
    folded in later by the reaction aggregator.
    """
    content = message.content or ""
    return MessageRecord(
        channel_id=channel_id,
        thread_id=thread_id,
        message_id=str(message.id),
        reply_to=reply_target(message),
        author_id=str(message.author.id),
        content=content,
        created_at=message.created_at,
        urls=extract_urls(content),
        media_urls=attachment_urls(message),
        embed_urls=embed_urls(message),
        reactions={},
    )
