"""
fetcher.py - Conditional Download of a Single Item

One ItemFetcher.run() call handles one item from start to finish:

    1. Resolve     content references need a read grant, http(s) URLs must parse
    2. Skip check  disabled items and locations without a downloadable mirror
    3. Connect     GET with If-Modified-Since taken from the current mirror
    4. Validate    200 -> download, 304 -> not modified, anything else -> error
    5. Commit      stream into an AtomicReplaceFile, commit, copy Last-Modified
    6. Finally     the listener hears on_item_finished exactly once

Failures are raised as RefreshError subclasses inside the fetch and turned
into a single on_item_error call in run(). Nothing is retried; the next
refresh cycle is the retry.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, timezone
from email.utils import formatdate, parsedate_to_datetime
from typing import Protocol

import aiofiles
import aiohttp
from yarl import URL

from rulesync.atomicfile import AtomicReplaceFile, WriteRegistry
from rulesync.config import RefreshConfig
from rulesync.errors import (
    InvalidLocation,
    IOFailure,
    PermissionDenied,
    RefreshError,
    UpstreamError,
)
from rulesync.mirror import MirrorResolver, is_content_reference, is_downloadable
from rulesync.models import Item

logger = logging.getLogger(__name__)


class FetchOutcome(enum.Enum):
    UPDATED = "updated"
    NOT_MODIFIED = "not_modified"
    SKIPPED = "skipped"
    FAILED = "failed"


class PermissionRequester(Protocol):
    def try_acquire(self, location: str) -> bool: ...


class FetchListener(Protocol):
    def on_item_finished(self, title: str) -> None: ...

    def on_item_error(self, title: str, message: str) -> None: ...


class AllowAllPermissions:
    """Permission requester for hosts without a grant mechanism."""

    def try_acquire(self, location: str) -> bool:
        return True


def parse_url(location: str) -> URL:
    """Parse an http(s) location, raising InvalidLocation if it is unusable."""
    try:
        url = URL(location)
    except (ValueError, TypeError) as e:
        raise InvalidLocation(location) from e
    if not url.host:
        raise InvalidLocation(location)
    return url


def remote_last_modified(response: aiohttp.ClientResponse) -> float:
    """Server Last-Modified as a POSIX timestamp, 0.0 if absent or unparsable."""
    value = response.headers.get(aiohttp.hdrs.LAST_MODIFIED)
    if not value:
        return 0.0
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return max(parsed.timestamp(), 0.0)


def _format_time(timestamp: float) -> str:
    if not timestamp:
        return "never"
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat()


class ItemFetcher:
    """Refreshes the local mirror of one item at a time."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: RefreshConfig,
        resolver: MirrorResolver | None = None,
        permissions: PermissionRequester | None = None,
        writes: WriteRegistry | None = None,
    ) -> None:
        self.session = session
        self.config = config
        self.resolver = resolver or MirrorResolver(config.mirror_dir)
        self.writes = writes or self.resolver.writes
        self.permissions = permissions or AllowAllPermissions()
        self.timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=config.connect_timeout,
            sock_read=config.read_timeout,
        )

    async def run(self, item: Item, listener: FetchListener) -> FetchOutcome:
        """Refresh one item and report it to the listener exactly once."""
        try:
            return await self.refresh(item)
        except RefreshError as e:
            logger.warning("%s: %s", item.title, e)
            listener.on_item_error(item.title, str(e))
        except Exception as e:
            logger.exception("%s: unexpected failure", item.title)
            listener.on_item_error(item.title, f"Exception: {e}")
        finally:
            listener.on_item_finished(item.title)
        return FetchOutcome.FAILED

    async def refresh(self, item: Item) -> FetchOutcome:
        """Run the item protocol, raising RefreshError on failure."""
        if is_content_reference(item.location):
            if not self.permissions.try_acquire(item.location):
                raise PermissionDenied(item.location)

        path = self.resolver(item.location)
        if path is None or not item.enabled or not is_downloadable(item.location):
            logger.debug("%s: nothing to download for %s", item.title, item.location)
            return FetchOutcome.SKIPPED

        url = parse_url(item.location)
        target = AtomicReplaceFile(path, self.writes)
        headers = self.conditional_headers(target)
        try:
            async with self.session.get(url, headers=headers, timeout=self.timeout) as response:
                if not self.validate_response(item, response, headers):
                    return FetchOutcome.NOT_MODIFIED
                await self.download_file(target, response)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise IOFailure(str(e) or type(e).__name__) from e
        return FetchOutcome.UPDATED

    def conditional_headers(self, target: AtomicReplaceFile) -> dict[str, str]:
        """
        Build the request headers for a fetch into `target`.

        If-Modified-Since is only sent for a readable mirror with a known
        modification time. An unreadable mirror just means an unconditional
        request.
        """
        headers = {"User-Agent": self.config.user_agent}
        try:
            target.open_read().close()
        except OSError:
            return headers
        last_modified = target.last_modified()
        if last_modified:
            headers["If-Modified-Since"] = formatdate(last_modified, usegmt=True)
        return headers

    def validate_response(
        self,
        item: Item,
        response: aiohttp.ClientResponse,
        headers: dict[str, str] | None = None,
    ) -> bool:
        """Return True if the body should be downloaded."""
        logger.debug(
            "%s: local = %s remote = %s",
            item.title,
            (headers or {}).get("If-Modified-Since", "never"),
            _format_time(remote_last_modified(response)),
        )
        if response.status == 200:
            return True
        logger.debug(
            "%s: Skipping: server responded with %d for %s",
            item.title, response.status, item.location,
        )
        if response.status != 304:
            raise UpstreamError(response.status, response.reason)
        return False

    async def download_file(
        self,
        target: AtomicReplaceFile,
        response: aiohttp.ClientResponse,
    ) -> None:
        """Stream the response body into `target` and commit it."""
        handle = target.begin_write()
        committed = False
        try:
            async with aiofiles.open(handle.path, "wb") as out:
                async for chunk in response.content.iter_chunked(self.config.chunk_size):
                    await out.write(chunk)
            await asyncio.to_thread(target.commit, handle)
            committed = True
        except OSError as e:
            raise IOFailure(str(e)) from e
        finally:
            if not committed:
                target.abandon(handle)

        timestamp = remote_last_modified(response)
        if not timestamp or not target.set_last_modified(timestamp):
            logger.debug("%s: Could not set last modified", target.path)
