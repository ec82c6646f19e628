"""
Row types written to the capture tables.

Each record mirrors one table in ``ddl/capture_tables.sql``. External ids
are the platform-issued snowflakes as strings; internal ids are the uuid
surrogates the database generates.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Reaction symbol -> current count. Counts are positive integers; a symbol
# whose count drops to zero is removed rather than stored as 0.
ReactionMap = Dict[str, int]


@dataclass
class ChannelRecord:
    channel_id: str
    channel_name: str


@dataclass
class ThreadRecord:
    thread_id: str
    channel_id: str  # internal uuid of the owning channel
    title: str
    created_at: datetime
    is_active: bool = True


@dataclass
class MessageRecord:
    channel_id: str  # internal uuid
    message_id: str
    author_id: str
    content: str
    created_at: datetime
    thread_id: Optional[str] = None  # internal uuid
    reply_to: Optional[str] = None  # external id of the replied-to message
    urls: List[str] = field(default_factory=list)
    media_urls: List[str] = field(default_factory=list)
    embed_urls: List[str] = field(default_factory=list)
    reactions: ReactionMap = field(default_factory=dict)

    @property
    def archivable_urls(self) -> List[str]:
        """Every url the archiver should mirror, attachments first."""
        return [*self.media_urls, *self.urls, *self.embed_urls]

    def to_row(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RankedMessage:
    """A reacted message read back for the ranking command."""
    message_id: str
    channel_external_id: str
    content: str
    created_at: datetime
    reactions: ReactionMap
    urls: List[str] = field(default_factory=list)
    media_urls: List[str] = field(default_factory=list)
    embed_urls: List[str] = field(default_factory=list)

    @property
    def total_reactions(self) -> int:
        return sum(int(count) for count in self.reactions.values())

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RankedMessage":
        return cls(
            message_id=row["message_id"],
            channel_external_id=row["channel_external_id"],
            content=row.get("content") or "",
            created_at=row["created_at"],
            reactions=dict(row.get("reactions") or {}),
            urls=list(row.get("urls") or []),
            media_urls=list(row.get("media_urls") or []),
            embed_urls=list(row.get("embed_urls") or []),
        )
