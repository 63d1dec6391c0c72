"""Tests for the media downloader."""

import asyncio
import re
from unittest.mock import AsyncMock, Mock

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aioresponses import aioresponses

from timeline_archiver.downloader import MediaDownloader, media_filename, resolve_source_url
from timeline_archiver.exceptions import NetworkError
from timeline_archiver.http_client import AsyncHTTPClient
from timeline_archiver.models import MediaKind, MediaRef, MediaStatus
from timeline_archiver.retry import RetryStrategy

PHOTO_URL = "https://pbs.twimg.com/media/AAA.jpg"
VIDEO_URL = "https://video.twimg.com/ext_tw_video/42/vid/1280x720/high.mp4"

ALL_KINDS = set(MediaKind)


class InterruptedResponse:
    """Response whose body breaks off after the first chunk."""

    def __init__(self):
        self.content = Mock()
        self.content.iter_chunked = self._iter_chunked

    async def _iter_chunked(self, size):
        yield b"partial data"
        raise aiohttp.ClientPayloadError("Response payload is not completed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


@pytest_asyncio.fixture
async def slow_media_url():
    """Local server streaming a video in chunks spread over about 1.2 s."""
    async def slow_video(request):
        response = web.StreamResponse()
        await response.prepare(request)
        for _ in range(4):
            await response.write(b"v" * 1024)
            await asyncio.sleep(0.3)
        await response.write_eof()
        return response

    app = web.Application()
    app.router.add_get("/slow.mp4", slow_video)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    host, port = runner.addresses[0][:2]
    try:
        yield f"http://{host}:{port}/slow.mp4"
    finally:
        await runner.cleanup()


@pytest.fixture
def fast_retry():
    """Retry strategy without real waiting."""
    return RetryStrategy(max_retries=2, base_backoff=0.01, max_backoff=0.01)


@pytest.fixture
def photo_ref():
    return MediaRef(kind=MediaKind.PHOTO, slot=0, url=PHOTO_URL)


@pytest.fixture
def video_ref():
    return MediaRef(kind=MediaKind.VIDEO, slot=1, url=VIDEO_URL)


class TestHelpers:
    """Tests for filename and source helpers."""

    def test_media_filename(self, photo_ref, video_ref):
        """Test names are built from post id and slot."""
        assert media_filename(42, photo_ref) == "42_0.jpg"
        assert media_filename(42, video_ref) == "42_1.mp4"

    def test_media_filename_keeps_known_extension(self):
        """Test a png source keeps its extension."""
        ref = MediaRef(kind=MediaKind.PHOTO, slot=3, url="https://pbs.twimg.com/media/B.png")

        assert media_filename(7, ref) == "7_3.png"

    def test_media_filename_default_extension(self):
        """Test an unknown extension falls back to the kind default."""
        ref = MediaRef(kind=MediaKind.ANIMATED_GIF, slot=0, url="https://video.twimg.com/g")

        assert media_filename(7, ref) == "7_0.mp4"

    def test_filenames_never_collide(self):
        """Test distinct slots and posts give distinct names."""
        names = {
            media_filename(post_id, MediaRef(kind=kind, slot=slot))
            for post_id in (1, 2, 11)
            for slot, kind in enumerate(MediaKind)
        }

        assert len(names) == 9

    def test_resolve_photo_original_size(self, photo_ref):
        """Test photos are requested at original size."""
        assert resolve_source_url(photo_ref) == PHOTO_URL + "?name=orig"

    def test_resolve_photo_replaces_size(self):
        """Test an existing size parameter is replaced."""
        ref = MediaRef(kind=MediaKind.PHOTO, slot=0, url=PHOTO_URL + "?format=jpg&name=small")

        assert resolve_source_url(ref) == PHOTO_URL + "?format=jpg&name=orig"

    def test_resolve_video_unchanged(self, video_ref):
        """Test video URLs are used as fetched."""
        assert resolve_source_url(video_ref) == VIDEO_URL

    def test_resolve_without_url(self):
        """Test a reference without source has no URL."""
        assert resolve_source_url(MediaRef(kind=MediaKind.VIDEO, slot=0)) is None


class TestMediaDownloader:
    """Tests for MediaDownloader."""

    @pytest.mark.asyncio
    async def test_download_photo(self, tmp_path, photo_ref, fast_retry):
        """Test a successful download lands under its final name only."""
        with aioresponses() as m:
            m.get(re.compile(r"^https://pbs\.twimg\.com/media/AAA\.jpg\?name=orig$"),
                  status=200, body=b"jpeg bytes")

            async with AsyncHTTPClient(rate_limit=100.0) as http:
                downloader = MediaDownloader(http, fast_retry)
                ref = await downloader.download(42, photo_ref, ALL_KINDS, tmp_path)

        assert ref.status is MediaStatus.DOWNLOADED
        assert ref.filename == "42_0.jpg"
        assert (tmp_path / "42_0.jpg").read_bytes() == b"jpeg bytes"
        assert [p.name for p in tmp_path.iterdir()] == ["42_0.jpg"]

    @pytest.mark.asyncio
    async def test_disabled_kind_makes_no_request(self, tmp_path, video_ref):
        """Test a disabled kind is returned unchanged without network use."""
        http = Mock()
        http.get = AsyncMock()
        downloader = MediaDownloader(http)

        ref = await downloader.download(42, video_ref, {MediaKind.PHOTO}, tmp_path)

        assert ref == video_ref
        http.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_downloaded_skipped(self, tmp_path, photo_ref):
        """Test a downloaded reference is not fetched again."""
        http = Mock()
        http.get = AsyncMock()
        done = photo_ref.mark_downloaded("42_0.jpg")

        ref = await MediaDownloader(http).download(42, done, ALL_KINDS, tmp_path)

        assert ref is done
        http.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_adopts_existing_file(self, tmp_path, photo_ref):
        """Test a non-empty file from an earlier run is adopted."""
        (tmp_path / "42_0.jpg").write_bytes(b"from before")
        http = Mock()
        http.get = AsyncMock()

        ref = await MediaDownloader(http).download(42, photo_ref, ALL_KINDS, tmp_path)

        assert ref.status is MediaStatus.DOWNLOADED
        assert ref.filename == "42_0.jpg"
        http.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_existing_file_redownloaded(self, tmp_path, photo_ref, fast_retry):
        """Test an empty file is not trusted."""
        (tmp_path / "42_0.jpg").write_bytes(b"")

        with aioresponses() as m:
            m.get(re.compile(r"^https://pbs\.twimg\.com/.*$"), status=200, body=b"fresh")

            async with AsyncHTTPClient(rate_limit=100.0) as http:
                ref = await MediaDownloader(http, fast_retry).download(
                    42, photo_ref, ALL_KINDS, tmp_path
                )

        assert ref.status is MediaStatus.DOWNLOADED
        assert (tmp_path / "42_0.jpg").read_bytes() == b"fresh"

    @pytest.mark.asyncio
    async def test_overwrite_policy(self, tmp_path, photo_ref, fast_retry):
        """Test the overwrite policy downloads over an existing file."""
        (tmp_path / "42_0.jpg").write_bytes(b"old")

        with aioresponses() as m:
            m.get(re.compile(r"^https://pbs\.twimg\.com/.*$"), status=200, body=b"new")

            async with AsyncHTTPClient(rate_limit=100.0) as http:
                downloader = MediaDownloader(http, fast_retry, file_exists_policy="overwrite")
                ref = await downloader.download(42, photo_ref, ALL_KINDS, tmp_path)

        assert ref.status is MediaStatus.DOWNLOADED
        assert (tmp_path / "42_0.jpg").read_bytes() == b"new"

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, tmp_path, video_ref, fast_retry):
        """Test a server error is retried and then succeeds."""
        with aioresponses() as m:
            m.get(VIDEO_URL, status=503)
            m.get(VIDEO_URL, status=200, body=b"mp4 bytes")

            async with AsyncHTTPClient(rate_limit=100.0) as http:
                ref = await MediaDownloader(http, fast_retry).download(
                    42, video_ref, ALL_KINDS, tmp_path
                )

        assert ref.status is MediaStatus.DOWNLOADED
        assert (tmp_path / "42_1.mp4").read_bytes() == b"mp4 bytes"

    @pytest.mark.asyncio
    async def test_retries_exhausted_marks_failed(self, tmp_path, video_ref, fast_retry):
        """Test exhausted retries record a failure instead of raising."""
        with aioresponses() as m:
            m.get(VIDEO_URL, status=503, repeat=True)

            async with AsyncHTTPClient(rate_limit=100.0) as http:
                ref = await MediaDownloader(http, fast_retry).download(
                    42, video_ref, ALL_KINDS, tmp_path
                )

        assert ref.status is MediaStatus.FAILED
        assert ref.filename is None
        assert "503" in ref.error
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_missing_media_not_retried(self, tmp_path, video_ref):
        """Test a 404 fails at once."""
        http = Mock()
        http.get = AsyncMock(
            side_effect=NetworkError("HTTP 404: Not Found", status_code=404, url=VIDEO_URL)
        )
        downloader = MediaDownloader(http, RetryStrategy(max_retries=3, base_backoff=0.01, max_backoff=0.01))

        ref = await downloader.download(42, video_ref, ALL_KINDS, tmp_path)

        assert ref.status is MediaStatus.FAILED
        assert "404" in ref.error
        assert http.get.await_count == 1

    @pytest.mark.asyncio
    async def test_no_source_url(self, tmp_path):
        """Test a reference without usable source fails."""
        ref = MediaRef(kind=MediaKind.VIDEO, slot=0)
        http = Mock()
        http.get = AsyncMock()

        result = await MediaDownloader(http).download(42, ref, ALL_KINDS, tmp_path)

        assert result.status is MediaStatus.FAILED
        assert result.error == "no downloadable source"
        http.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_interrupted_transfer_leaves_no_file(self, tmp_path, video_ref):
        """Test a broken stream leaves neither a final nor a partial file."""
        http = Mock()
        http.get = AsyncMock(side_effect=lambda url, **kwargs: InterruptedResponse())
        downloader = MediaDownloader(http, RetryStrategy(max_retries=1, base_backoff=0.01, max_backoff=0.01))

        ref = await downloader.download(42, video_ref, ALL_KINDS, tmp_path)

        assert ref.status is MediaStatus.FAILED
        assert http.get.await_count == 2
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_media_request_has_no_total_timeout(self, tmp_path, video_ref):
        """Test media requests only bound stalls, not the whole transfer."""
        http = Mock()
        http.get = AsyncMock(side_effect=NetworkError("HTTP 404", status_code=404))
        downloader = MediaDownloader(http, stall_timeout=12.0)

        await downloader.download(42, video_ref, ALL_KINDS, tmp_path)

        timeout = http.get.await_args.kwargs["timeout"]
        assert timeout.total is None
        assert timeout.sock_read == 12.0
        assert timeout.sock_connect == 12.0

    @pytest.mark.asyncio
    async def test_transfer_longer_than_request_timeout(self, tmp_path, slow_media_url):
        """Test a steady transfer outlasting the session timeout still completes."""
        ref = MediaRef(kind=MediaKind.VIDEO, slot=0, url=slow_media_url)

        async with AsyncHTTPClient(rate_limit=100.0, timeout=0.8) as http:
            downloader = MediaDownloader(
                http,
                RetryStrategy(max_retries=0, base_backoff=0.01, max_backoff=0.01),
                stall_timeout=0.8,
            )
            result = await downloader.download(42, ref, ALL_KINDS, tmp_path)

        assert result.status is MediaStatus.DOWNLOADED, result.error
        assert (tmp_path / "42_0.mp4").stat().st_size == 4096

    @pytest.mark.asyncio
    async def test_empty_body_fails(self, tmp_path, photo_ref):
        """Test an empty body is never recorded as downloaded."""
        with aioresponses() as m:
            m.get(re.compile(r"^https://pbs\.twimg\.com/.*$"), status=200, body=b"", repeat=True)

            async with AsyncHTTPClient(rate_limit=100.0) as http:
                downloader = MediaDownloader(
                    http, RetryStrategy(max_retries=1, base_backoff=0.01, max_backoff=0.01)
                )
                ref = await downloader.download(42, photo_ref, ALL_KINDS, tmp_path)

        assert ref.status is MediaStatus.FAILED
        assert list(tmp_path.iterdir()) == []
