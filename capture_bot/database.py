"""
Async Postgres access for the capture bot.

A single ``AsyncConnectionPool`` is opened once per process and shared by
every in-flight event handler. Each method checks a connection out of the
pool, runs one statement and commits, so there is no transaction spanning
several calls.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from .config import CaptureBotConfig
from .models import MessageRecord, ReactionMap

logger = logging.getLogger(__name__)

# table -> unique external key column
UNIQUE_KEYS = {
    "channels": "channel_id",
    "threads": "thread_id",
    "messages": "message_id",
}

UPSERT_MESSAGE_SQL = """
  insert into messages (channel_id, thread_id, message_id, reply_to, author_id, content,
                        created_at, urls, media_urls, embed_urls, reactions)
  values (%(channel_id)s, %(thread_id)s, %(message_id)s, %(reply_to)s, %(author_id)s, %(content)s,
          %(created_at)s, %(urls)s, %(media_urls)s, %(embed_urls)s, %(reactions)s)
  on conflict (message_id) do update set
    channel_id=excluded.channel_id,
    thread_id=excluded.thread_id,
    reply_to=excluded.reply_to,
    author_id=excluded.author_id,
    content=excluded.content,
    created_at=excluded.created_at,
    urls=excluded.urls,
    media_urls=excluded.media_urls,
    embed_urls=excluded.embed_urls,
    reactions=excluded.reactions
"""

SET_REACTION_SQL = """
  update messages
  set reactions = coalesce(reactions, '{}'::jsonb) || jsonb_build_object(%s::text, %s::int)
  where message_id = %s
  returning reactions
"""

DELETE_REACTION_SQL = """
  update messages
  set reactions = coalesce(reactions, '{}'::jsonb) - %s::text
  where message_id = %s
  returning reactions
"""

RECENT_REACTED_SQL = """
  select m.message_id,
         c.channel_id as channel_external_id,
         m.content,
         m.created_at,
         m.reactions,
         m.urls,
         m.media_urls,
         m.embed_urls
  from messages m
  join channels c on m.channel_id = c.id
  where c.channel_name = %s
    and m.reactions <> '{}'::jsonb
    and m.created_at >= %s
  order by m.created_at desc
"""


def _check_table(table: str) -> str:
    if table not in UNIQUE_KEYS:
        raise ValueError(f"Unknown table: {table}")
    return UNIQUE_KEYS[table]


class Database:
    """Thin wrapper over the shared psycopg connection pool."""

    def __init__(self, config: CaptureBotConfig):
        self.config = config
        self.pool: Optional[AsyncConnectionPool] = None

    async def open(self) -> None:
        if self.pool is not None:
            return
        self.pool = AsyncConnectionPool(
            self.config.database_url,
            min_size=self.config.db_pool_min_size,
            max_size=self.config.db_pool_max_size,
            kwargs={"password": self.config.database_service_key, "row_factory": dict_row},
            open=False,
        )
        await self.pool.open()
        logger.info("Database pool opened")

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            logger.info("Database pool closed")

    def _require_pool(self) -> AsyncConnectionPool:
        if self.pool is None:
            raise RuntimeError("Database pool is not open. Call open() first.")
        return self.pool

    async def fetch_id(self, table: str, external_id: str) -> Optional[str]:
        """Return the internal id of the row whose unique key is ``external_id``."""
        key_column = _check_table(table)
        query = sql.SQL("select id from {} where {} = %s").format(
            sql.Identifier(table), sql.Identifier(key_column)
        )
        async with self._require_pool().connection() as aconn:
            async with aconn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, (external_id,))
                row = await cur.fetchone()
        return str(row["id"]) if row else None

    async def insert_returning_id(self, table: str, payload: Dict[str, Any]) -> str:
        """Insert one row and return its generated id.

        Raises ``psycopg.errors.UniqueViolation`` when another writer has
        already created a row with the same unique key.
        """
        _check_table(table)
        columns = list(payload)
        query = sql.SQL("insert into {} ({}) values ({}) returning id").format(
            sql.Identifier(table),
            sql.SQL(", ").join(map(sql.Identifier, columns)),
            sql.SQL(", ").join(sql.Placeholder(c) for c in columns),
        )
        async with self._require_pool().connection() as aconn:
            async with aconn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, payload)
                row = await cur.fetchone()
            await aconn.commit()
        return str(row["id"])

    async def upsert_message(self, record: MessageRecord) -> None:
        params = record.to_row()
        params["reactions"] = Jsonb(params["reactions"])
        async with self._require_pool().connection() as aconn:
            async with aconn.cursor() as cur:
                await cur.execute(UPSERT_MESSAGE_SQL, params)
            await aconn.commit()

    async def fetch_reactions(self, message_id: str) -> Optional[ReactionMap]:
        """Return the stored reaction map, or None if the message is unknown."""
        async with self._require_pool().connection() as aconn:
            async with aconn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    "select reactions from messages where message_id = %s", (message_id,)
                )
                row = await cur.fetchone()
        if row is None:
            return None
        return dict(row["reactions"] or {})

    async def write_reaction(self, message_id: str, symbol: str, count: Optional[int]) -> Optional[ReactionMap]:
        """Set (or, when ``count`` is None, remove) a single reaction key.

        Only ``symbol`` is touched, so concurrent writes for other symbols on
        the same message are preserved. Returns the resulting map, or None if
        the message row does not exist.
        """
        async with self._require_pool().connection() as aconn:
            async with aconn.cursor(row_factory=dict_row) as cur:
                if count is None:
                    await cur.execute(DELETE_REACTION_SQL, (symbol, message_id))
                else:
                    await cur.execute(SET_REACTION_SQL, (symbol, count, message_id))
                row = await cur.fetchone()
            await aconn.commit()
        if row is None:
            return None
        return dict(row["reactions"] or {})

    async def fetch_recent_reacted(self, channel_name: str, since: datetime) -> List[Dict[str, Any]]:
        async with self._require_pool().connection() as aconn:
            async with aconn.cursor(row_factory=dict_row) as cur:
                await cur.execute(RECENT_REACTED_SQL, (channel_name, since))
                return await cur.fetchall()
