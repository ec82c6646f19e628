from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from psycopg import sql
from psycopg.types.json import Jsonb

from capture_bot import database
from capture_bot.database import (
    DELETE_REACTION_SQL,
    RECENT_REACTED_SQL,
    SET_REACTION_SQL,
    Database,
)
from capture_bot.models import MessageRecord


def make_pool(fetchone=None, fetchall=None):
    """A pool whose single connection and cursor record what runs on them."""
    cursor = MagicMock()
    cursor.execute = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=fetchone)
    cursor.fetchall = AsyncMock(return_value=fetchall or [])
    cursor_cm = MagicMock()
    cursor_cm.__aenter__.return_value = cursor

    conn = MagicMock()
    conn.cursor.return_value = cursor_cm
    conn.commit = AsyncMock()
    conn_cm = MagicMock()
    conn_cm.__aenter__.return_value = conn

    pool = MagicMock()
    pool.connection.return_value = conn_cm
    return pool, conn, cursor


def open_db(config, **rows):
    pool, conn, cursor = make_pool(**rows)
    db = Database(config)
    db.pool = pool
    return db, conn, cursor


async def test_set_reaction_writes_only_that_symbol(config):
    db, conn, cursor = open_db(config, fetchone={"reactions": {"🔥": 3, "👍": 1}})

    result = await db.write_reaction("1001", "🔥", 3)

    cursor.execute.assert_awaited_once_with(SET_REACTION_SQL, ("🔥", 3, "1001"))
    conn.commit.assert_awaited_once()
    assert result == {"🔥": 3, "👍": 1}


async def test_clearing_reaction_deletes_the_key(config):
    db, conn, cursor = open_db(config, fetchone={"reactions": {}})

    result = await db.write_reaction("1001", "🔥", None)

    cursor.execute.assert_awaited_once_with(DELETE_REACTION_SQL, ("🔥", "1001"))
    assert result == {}


async def test_write_reaction_on_missing_row(config):
    db, _, _ = open_db(config, fetchone=None)
    assert await db.write_reaction("404", "🔥", 1) is None


def test_reaction_statements_touch_one_key():
    assert "jsonb_build_object(%s::text, %s::int)" in SET_REACTION_SQL
    assert "- %s::text" in DELETE_REACTION_SQL
    for statement in (SET_REACTION_SQL, DELETE_REACTION_SQL):
        assert "where message_id = %s" in statement
        assert "returning reactions" in statement


async def test_fetch_reactions(config):
    db, _, cursor = open_db(config, fetchone={"reactions": None})

    assert await db.fetch_reactions("1001") == {}
    assert cursor.execute.await_args.args[1] == ("1001",)


async def test_fetch_reactions_unknown_message(config):
    db, _, _ = open_db(config, fetchone=None)
    assert await db.fetch_reactions("404") is None


async def test_fetch_id(config):
    db, _, cursor = open_db(config, fetchone={"id": "uuid-1"})

    assert await db.fetch_id("channels", "555") == "uuid-1"
    query, params = cursor.execute.await_args.args
    assert isinstance(query, sql.Composed)
    assert params == ("555",)


async def test_fetch_id_rejects_unknown_table(config):
    db, _, _ = open_db(config)
    with pytest.raises(ValueError):
        await db.fetch_id("members", "1")


async def test_insert_returning_id_commits(config):
    db, conn, cursor = open_db(config, fetchone={"id": "uuid-2"})
    payload = {"channel_id": "555", "channel_name": "general"}

    assert await db.insert_returning_id("channels", payload) == "uuid-2"
    assert cursor.execute.await_args.args[1] == payload
    conn.commit.assert_awaited_once()


async def test_upsert_message_wraps_reactions(config):
    db, conn, cursor = open_db(config)
    record = MessageRecord(
        channel_id="uuid-1",
        message_id="1001",
        author_id="42",
        content="hi",
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )

    await db.upsert_message(record)

    query, params = cursor.execute.await_args.args
    assert "on conflict (message_id) do update" in query
    assert isinstance(params["reactions"], Jsonb)
    assert params["message_id"] == "1001"
    conn.commit.assert_awaited_once()


async def test_fetch_recent_reacted(config):
    rows = [{"message_id": "1", "reactions": {"🔥": 1}}]
    db, _, cursor = open_db(config, fetchall=rows)
    since = datetime(2024, 5, 1, tzinfo=timezone.utc)

    assert await db.fetch_recent_reacted("💻│developers", since) == rows
    cursor.execute.assert_awaited_once_with(RECENT_REACTED_SQL, ("💻│developers", since))


async def test_calls_before_open_fail(config):
    with pytest.raises(RuntimeError):
        await Database(config).fetch_reactions("1001")


async def test_open_passes_service_key_as_password(config, monkeypatch):
    pool = MagicMock()
    pool.open = AsyncMock()
    pool.close = AsyncMock()
    pool_class = MagicMock(return_value=pool)
    monkeypatch.setattr(database, "AsyncConnectionPool", pool_class)
    db = Database(config)

    await db.open()
    await db.open()
    await db.close()

    pool_class.assert_called_once()
    args, kwargs = pool_class.call_args
    assert args == (config.database_url,)
    assert kwargs["kwargs"]["password"] == "secret"
    assert kwargs["open"] is False
    pool.open.assert_awaited_once()
    pool.close.assert_awaited_once()
    assert db.pool is None
