import asyncio
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import httpx
import pytest
from psycopg import errors

from capture_bot.archiver import MediaArchiver
from capture_bot.config import CaptureBotConfig

GUILD_ID = 111
MONITORED_CHANNEL_ID = "555"
OTHER_CHANNEL_ID = "999"


class FakeDatabase:
    """In-memory stand-in for ``capture_bot.database.Database``."""

    def __init__(self):
        self.rows = {"channels": {}, "threads": {}}
        self.messages = {}
        self.insert_calls = []
        self.recent_error = None
        self.yield_between_read_and_write = False

    async def open(self):
        pass

    async def close(self):
        pass

    async def fetch_id(self, table, external_id):
        row = self.rows[table].get(external_id)
        return row["id"] if row else None

    async def insert_returning_id(self, table, payload):
        self.insert_calls.append((table, dict(payload)))
        key = "channel_id" if table == "channels" else "thread_id"
        if payload[key] in self.rows[table]:
            raise errors.UniqueViolation()
        row = dict(payload, id=str(uuid.uuid4()))
        self.rows[table][payload[key]] = row
        return row["id"]

    async def upsert_message(self, record):
        self.messages[record.message_id] = record.to_row()

    async def fetch_reactions(self, message_id):
        row = self.messages.get(message_id)
        if row is None:
            return None
        reactions = dict(row["reactions"])
        if self.yield_between_read_and_write:
            await asyncio.sleep(0)
        return reactions

    async def write_reaction(self, message_id, symbol, count):
        row = self.messages.get(message_id)
        if row is None:
            return None
        if count is None:
            row["reactions"].pop(symbol, None)
        else:
            row["reactions"][symbol] = count
        return dict(row["reactions"])

    async def fetch_recent_reacted(self, channel_name, since):
        if self.recent_error is not None:
            raise self.recent_error
        channels_by_uuid = {row["id"]: row for row in self.rows["channels"].values()}
        result = []
        for row in self.messages.values():
            channel = channels_by_uuid.get(row["channel_id"])
            if channel is None or channel["channel_name"] != channel_name:
                continue
            if not row["reactions"] or row["created_at"] < since:
                continue
            result.append(dict(row, channel_external_id=channel["channel_id"]))
        result.sort(key=lambda r: r["created_at"], reverse=True)
        return result


class RacingDatabase(FakeDatabase):
    """Misses the first lookup as if another handler inserted concurrently."""

    def __init__(self):
        super().__init__()
        self.lookups = 0

    async def fetch_id(self, table, external_id):
        self.lookups += 1
        if self.lookups == 1:
            # the competing insert lands right after our miss
            key = "channel_id" if table == "channels" else "thread_id"
            self.rows[table][external_id] = {"id": "winner-uuid", key: external_id}
            return None
        return await super().fetch_id(table, external_id)


def make_channel(channel_id=MONITORED_CHANNEL_ID, name="general"):
    return SimpleNamespace(id=int(channel_id), name=name)


def make_thread(thread_id=777, parent=None, name="design chat", archived=False,
                created_at=datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)):
    parent = parent or make_channel()
    thread = MagicMock(spec=discord.Thread)
    thread.id = thread_id
    thread.name = name
    thread.parent = parent
    thread.parent_id = parent.id
    thread.archived = archived
    thread.created_at = created_at
    return thread


def make_message(content="hello", message_id=1001, channel=None, author_id=42, bot=False,
                 attachments=(), embeds=(), reference=None,
                 created_at=datetime(2024, 5, 1, 12, 30, 15, 123000, tzinfo=timezone.utc)):
    return SimpleNamespace(
        id=message_id,
        content=content,
        author=SimpleNamespace(id=author_id, bot=bot),
        channel=channel or make_channel(),
        guild=SimpleNamespace(id=GUILD_ID),
        attachments=[SimpleNamespace(url=url) for url in attachments],
        embeds=[SimpleNamespace(url=url) for url in embeds],
        reference=reference,
        created_at=created_at,
        reply=AsyncMock(),
    )


@pytest.fixture
def config(tmp_path):
    return CaptureBotConfig(
        application_id="app-1",
        bot_token="token",
        database_url="postgresql://localhost/capture",
        database_service_key="secret",
        target_channel_ids=frozenset({MONITORED_CHANNEL_ID}),
        media_dir=tmp_path / "media",
        urls_dir=tmp_path / "urls",
        ranking_channel_name="💻│developers",
        ranking_channel_id="994775534733115412",
    )


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def http_requests():
    return []


@pytest.fixture
def archiver(config, http_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        http_requests.append(str(request.url))
        if "missing" in request.url.path:
            return httpx.Response(404)
        return httpx.Response(200, content=b"media-bytes")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MediaArchiver(config, client=client)
