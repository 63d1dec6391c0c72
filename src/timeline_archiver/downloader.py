"""
Media downloader for archived posts.

Handles source resolution, dedup against files already on disk, retries and
crash-safe file writes. A file only appears under its final name once its
content is complete, so an existing non-empty file can be trusted.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import AbstractSet, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import aiofiles
import aiohttp

from .constants import (
    DEFAULT_TIMEOUT,
    DOWNLOAD_CHUNK_SIZE,
    PARTIAL_SUFFIX,
    PERMANENT_MISSING_STATUS_CODES,
)
from .exceptions import ArchiverError, DownloadError, MediaNotFoundError, NetworkError
from .http_client import AsyncHTTPClient
from .models import MediaKind, MediaRef, MediaStatus
from .retry import RetryStrategy

logger = logging.getLogger(__name__)

KNOWN_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".mp4", ".mov"})


def media_filename(post_id: int, ref: MediaRef) -> str:
    """
    Deterministic local filename of a media reference.

    Built from the post id and the attachment slot, so names never collide
    across posts, kinds or reruns. The extension follows the source URL when
    it has a known one, else the kind's default.

    Example:
        ```python
        media_filename(42, MediaRef(kind="photo", slot=1, url="https://pbs.twimg.com/media/x.png"))
        # Returns: "42_1.png"
        ```
    """
    extension = ref.kind.default_extension
    if ref.url:
        suffix = Path(urlparse(ref.url).path).suffix.lower()
        if suffix in KNOWN_EXTENSIONS:
            extension = suffix
    return f"{post_id}_{ref.slot}{extension}"


def resolve_source_url(ref: MediaRef) -> Optional[str]:
    """
    Highest-quality download URL for a media reference.

    Photos are requested at original size. Video and animated GIF URLs
    already point at the best variant chosen when the post was fetched.
    """
    if not ref.url:
        return None

    if ref.kind is MediaKind.PHOTO:
        parsed = urlparse(ref.url)
        query = dict(parse_qsl(parsed.query))
        query["name"] = "orig"
        return urlunparse(parsed._replace(query=urlencode(query)))

    if ref.kind in (MediaKind.VIDEO, MediaKind.ANIMATED_GIF):
        return ref.url

    raise ValueError(f"Unhandled media kind: {ref.kind}")


class MediaDownloader:
    """
    Downloads the media of one post attachment at a time.

    ``download`` never raises for a failed item: the failure is recorded on
    the returned MediaRef so sibling downloads carry on. Only cancellation
    propagates.

    Example:
        ```python
        downloader = MediaDownloader(http_client, RetryStrategy())
        ref = await downloader.download(post.id, post.media[0], {MediaKind.PHOTO}, account_dir)
        ```
    """

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        retry_strategy: Optional[RetryStrategy] = None,
        file_exists_policy: str = "adopt",
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
        stall_timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the downloader.

        Args:
            http_client: Shared HTTP client (no API credentials attached)
            retry_strategy: Retry policy for transient failures
            file_exists_policy: "adopt" keeps a non-empty file already on
                disk, "overwrite" downloads it again
            chunk_size: Bytes read per chunk while streaming
            stall_timeout: Seconds allowed for connecting and between two
                reads; a transfer as a whole has no time limit
        """
        self.http_client = http_client
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.file_exists_policy = file_exists_policy
        self.chunk_size = chunk_size
        self.stall_timeout = stall_timeout

    @property
    def transfer_timeout(self) -> aiohttp.ClientTimeout:
        """Per-request timeout replacing the session's total limit for media."""
        return aiohttp.ClientTimeout(
            total=None,
            sock_connect=self.stall_timeout,
            sock_read=self.stall_timeout,
        )

    async def download(
        self,
        post_id: int,
        ref: MediaRef,
        enabled_kinds: AbstractSet[MediaKind],
        account_dir: Path,
    ) -> MediaRef:
        """
        Download one media reference into ``account_dir``.

        Args:
            post_id: Id of the post owning the media
            ref: The media reference
            enabled_kinds: Media kinds selected for this run
            account_dir: Directory receiving the file

        Returns:
            The reference unchanged when its kind is disabled or it is
            already downloaded, else a new reference marked downloaded or
            failed
        """
        if ref.kind not in enabled_kinds:
            logger.debug(f"Skipping {ref.kind.value} of post {post_id}: kind disabled")
            return ref

        if ref.status is MediaStatus.DOWNLOADED:
            return ref

        filename = media_filename(post_id, ref)
        target = Path(account_dir) / filename

        if self.file_exists_policy == "adopt" and self._is_complete(target):
            logger.info(f"Adopting existing file {filename}")
            return ref.mark_downloaded(filename)

        url = resolve_source_url(ref)
        if url is None:
            logger.warning(f"No downloadable source for {filename}")
            return ref.mark_failed("no downloadable source")

        try:
            size = await self.retry_strategy.execute_async(self._fetch_to_file, url, target)
        except MediaNotFoundError as e:
            logger.warning(f"Media gone upstream, skipping {filename}: {e}")
            return ref.mark_failed(str(e))
        except (ArchiverError, OSError) as e:
            logger.error(f"Failed to download {filename}: {e}")
            return ref.mark_failed(str(e))

        logger.info(f"Downloaded {filename} ({size:,} bytes)")
        return ref.mark_downloaded(filename)

    @staticmethod
    def _is_complete(path: Path) -> bool:
        try:
            return path.is_file() and path.stat().st_size > 0
        except OSError:
            return False

    async def _fetch_to_file(self, url: str, target: Path) -> int:
        """
        Stream ``url`` into ``target`` through a hidden partial file.

        Returns:
            Number of bytes written

        Raises:
            MediaNotFoundError: If the media no longer exists (404/410)
            DownloadError: If the body is empty
            NetworkError: On transport failures and other error statuses
        """
        partial = target.with_name(f".{target.name}{PARTIAL_SUFFIX}")
        written = 0
        completed = False

        try:
            try:
                response = await self.http_client.get(url, timeout=self.transfer_timeout)
            except NetworkError as e:
                if e.status_code in PERMANENT_MISSING_STATUS_CODES:
                    raise MediaNotFoundError(
                        f"Media not found: HTTP {e.status_code}",
                        url=url,
                        filename=target.name,
                    ) from e
                raise

            async with response:
                async with aiofiles.open(partial, 'wb') as f:
                    try:
                        async for chunk in response.content.iter_chunked(self.chunk_size):
                            await f.write(chunk)
                            written += len(chunk)
                    except asyncio.TimeoutError as e:
                        raise NetworkError("Transfer timed out", url=url) from e
                    except aiohttp.ClientError as e:
                        raise NetworkError(
                            "Transfer interrupted", details=str(e), url=url
                        ) from e

            if written == 0:
                raise DownloadError("Empty response body", url=url, filename=target.name)

            os.replace(partial, target)
            completed = True
            return written

        finally:
            if not completed:
                partial.unlink(missing_ok=True)
