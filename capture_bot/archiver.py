"""
Local mirror of message media and links.

Every url attached to or mentioned in a captured message is archived
under one of two roots:

- media root: files hosted on the platform CDN (and bare attachment
  references) are streamed to disk as-is, keeping their extension.
- urls root: any other http(s) link gets a small markdown reference file
  instead of a download.

Archiving is best effort. Failures are logged and never reach the caller,
so one broken link cannot stop a message from being stored.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

import aiofiles
import aiofiles.os
import httpx

from .config import CaptureBotConfig

logger = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
DEFAULT_EXTENSION = ".txt"
REFERENCE_EXTENSION = ".md"

REFERENCE_TEMPLATE = """# URL Reference
- **Original URL**: {url}
- **Message ID**: {message_id}
- **Channel**: {channel_name}
- **Timestamp**: {timestamp}
- **Downloaded**: {archived_at}

## Quick Access
[Open Original URL]({url})
"""


class ArchiveKind(Enum):
    MEDIA = "media"
    REFERENCE = "reference"


@dataclass(frozen=True)
class ArchiveTarget:
    kind: ArchiveKind
    url: str
    path: Path


def sanitize_channel_name(channel_name: str) -> str:
    return UNSAFE_FILENAME_CHARS.sub("_", channel_name)


def iso_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def build_filename(message_id: str, channel_name: str, created_at: datetime, extension: str) -> str:
    stamp = re.sub(r"[:.]", "-", iso_timestamp(created_at))
    return f"{message_id}_{sanitize_channel_name(channel_name)}_{stamp}{extension}"


def is_http_url(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def media_extension(url: str) -> str:
    if is_http_url(url):
        path = urlsplit(url).path
    else:
        path = url.split("?", 1)[0]
    name = PurePosixPath(path).name
    # "file." keeps a bare "." extension
    if name.endswith(".") and name.strip("."):
        return "."
    return PurePosixPath(path).suffix or DEFAULT_EXTENSION


def render_reference(url: str, message_id: str, channel_name: str, created_at: datetime,
                     archived_at: Optional[datetime] = None) -> str:
    return REFERENCE_TEMPLATE.format(
        url=url,
        message_id=message_id,
        channel_name=channel_name,
        timestamp=iso_timestamp(created_at),
        archived_at=iso_timestamp(archived_at or datetime.now(timezone.utc)),
    )


class MediaArchiver:
    def __init__(self, config: CaptureBotConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.media_dir = Path(config.media_dir)
        self.urls_dir = Path(config.urls_dir)
        self.client = client or httpx.AsyncClient(follow_redirects=True, timeout=60.0)

    def ensure_dirs(self) -> None:
        self.media_dir.mkdir(parents=True, exist_ok=True)
        self.urls_dir.mkdir(parents=True, exist_ok=True)

    def is_platform_media(self, url: str) -> bool:
        return url.startswith(self.config.media_cdn_prefix)

    def classify(self, url: str) -> ArchiveKind:
        if is_http_url(url) and not self.is_platform_media(url):
            return ArchiveKind.REFERENCE
        return ArchiveKind.MEDIA

    def plan(self, url: str, channel_name: str, message_id: str, created_at: datetime) -> ArchiveTarget:
        """Decide where ``url`` goes on disk without touching the network."""
        kind = self.classify(url)
        if kind is ArchiveKind.REFERENCE:
            root, extension = self.urls_dir, REFERENCE_EXTENSION
        else:
            root, extension = self.media_dir, media_extension(url)
        channel_dir = root / sanitize_channel_name(channel_name)
        filename = build_filename(message_id, channel_name, created_at, extension)
        return ArchiveTarget(kind=kind, url=url, path=channel_dir / filename)

    async def _download(self, url: str, path: Path) -> None:
        """Stream ``url`` to a private part file, then move it over ``path``.

        Several urls of one message can share a target path, so each download
        only becomes visible as a complete file and the last one to finish wins.
        """
        part = path.with_name(f".{path.name}.{uuid.uuid4().hex}.part")
        try:
            async with self.client.stream("GET", url) as response:
                response.raise_for_status()
                async with aiofiles.open(part, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)
            await aiofiles.os.replace(part, path)
        finally:
            if await aiofiles.os.path.exists(part):
                await aiofiles.os.remove(part)

    async def _write_reference(self, target: ArchiveTarget, channel_name: str, message_id: str,
                               created_at: datetime) -> None:
        content = render_reference(target.url, message_id, channel_name, created_at)
        async with aiofiles.open(target.path, "w", encoding="utf-8") as f:
            await f.write(content)

    async def archive(self, url: str, channel_name: str, message_id: str, created_at: datetime) -> Optional[Path]:
        """Archive one url. Returns the written path, or None on failure."""
        try:
            target = self.plan(url, channel_name, message_id, created_at)
            target.path.parent.mkdir(parents=True, exist_ok=True)
            if target.kind is ArchiveKind.REFERENCE:
                await self._write_reference(target, channel_name, message_id, created_at)
                logger.info(f"Created reference for {url} to {target.path}")
            else:
                await self._download(url, target.path)
                logger.info(f"Downloaded media from {url} to {target.path}")
            return target.path
        except Exception:
            logger.exception(f"Error processing media from {url}")
            return None

    async def archive_all(self, urls: Iterable[str], channel_name: str, message_id: str,
                          created_at: datetime) -> List[Optional[Path]]:
        """Archive a message's urls concurrently, at most N at a time.

        No ordering between urls and no rollback: each entry of the result is
        the written path or None for a failed url.
        """
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_downloads))

        async def bounded(url: str) -> Optional[Path]:
            async with semaphore:
                return await self.archive(url, channel_name, message_id, created_at)

        return await asyncio.gather(*(bounded(url) for url in urls))

    async def aclose(self) -> None:
        await self.client.aclose()
