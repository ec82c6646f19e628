"""
Get-or-create resolution of platform ids to internal row ids.

Channels and threads are created lazily the first time they are seen.
Existing rows are never updated here, so a renamed channel keeps its old
name until something else rewrites it.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict

from psycopg import errors

from .models import ChannelRecord, ThreadRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityKind:
    table: str
    key_field: str


CHANNEL = EntityKind(table="channels", key_field="channel_id")
THREAD = EntityKind(table="threads", key_field="thread_id")


class EntityResolver:
    def __init__(self, database):
        self.database = database

    async def get_or_create(self, kind: EntityKind, payload: Dict[str, Any]) -> str:
        """Return the internal id for ``payload``, inserting it on first sight.

        Two handlers may race to create the same row. The loser hits the
        unique constraint and re-reads the winner's id. Any other database
        error propagates to the caller.
        """
        external_id = payload[kind.key_field]
        existing = await self.database.fetch_id(kind.table, external_id)
        if existing is not None:
            return existing

        try:
            internal_id = await self.database.insert_returning_id(kind.table, payload)
            logger.info(f"Created {kind.table} row {internal_id} for {external_id}")
            return internal_id
        except errors.UniqueViolation:
            logger.debug(f"{kind.table} row for {external_id} created concurrently, re-reading")
            existing = await self.database.fetch_id(kind.table, external_id)
            if existing is None:
                raise
            return existing

    async def resolve_channel(self, external_id: str, name: str) -> str:
        record = ChannelRecord(channel_id=str(external_id), channel_name=name)
        return await self.get_or_create(CHANNEL, asdict(record))

    async def resolve_thread(self, external_id: str, channel_id: str, title: str, created_at, is_active: bool) -> str:
        record = ThreadRecord(
            thread_id=str(external_id),
            channel_id=channel_id,
            title=title,
            created_at=created_at,
            is_active=is_active,
        )
        return await self.get_or_create(THREAD, asdict(record))
