"""
Download worker for concurrent media processing.

This module provides the DownloadWorker class that takes jobs from a
MediaQueue, runs them through the MediaDownloader and reports each result as
a message on an outcome queue.
"""

import asyncio
import logging
from pathlib import Path
from typing import AbstractSet

from .downloader import MediaDownloader
from .models import MediaKind, MediaStatus
from .queue import DownloadJob, DownloadOutcome, MediaQueue

logger = logging.getLogger(__name__)


class DownloadWorker:
    """
    Worker that processes download jobs from a queue.

    Workers share nothing but the job queue and the outcome queue; every
    result travels back to the orchestrator as a ``DownloadOutcome``.

    Example:
        ```python
        jobs = MediaQueue()
        outcomes = asyncio.Queue()
        worker = DownloadWorker(1, jobs, outcomes, downloader, {MediaKind.PHOTO}, account_dir)
        await worker.run()
        ```
    """

    def __init__(
        self,
        worker_id: int,
        queue: MediaQueue,
        outcomes: "asyncio.Queue[DownloadOutcome]",
        downloader: MediaDownloader,
        enabled_kinds: AbstractSet[MediaKind],
        account_dir: Path,
    ):
        """
        Initialize the download worker.

        Args:
            worker_id: Identifier used in log messages
            queue: MediaQueue to pull jobs from
            outcomes: Queue receiving one DownloadOutcome per job
            downloader: MediaDownloader for downloading files
            enabled_kinds: Media kinds selected for this run
            account_dir: Directory receiving the files
        """
        self.worker_id = worker_id
        self.queue = queue
        self.outcomes = outcomes
        self.downloader = downloader
        self.enabled_kinds = enabled_kinds
        self.account_dir = account_dir

        # Statistics
        self.downloads_completed = 0
        self.downloads_failed = 0

    async def run(self) -> None:
        """
        Run the worker's main processing loop.

        Pulls jobs until a sentinel value (None) is received. A job that
        raises unexpectedly is reported as failed and the worker moves on.
        """
        logger.debug(f"Worker {self.worker_id} starting")

        try:
            while True:
                job = await self.queue.get_job()

                # Check for sentinel value (None = stop signal)
                if job is None:
                    self.queue.mark_complete()
                    break

                try:
                    outcome = await self._process(job)
                finally:
                    self.queue.mark_complete()

                if outcome.ref.status is MediaStatus.FAILED:
                    self.downloads_failed += 1
                elif outcome.ref.status is MediaStatus.DOWNLOADED:
                    self.downloads_completed += 1

                await self.outcomes.put(outcome)

        finally:
            logger.debug(
                f"Worker {self.worker_id} stopping "
                f"(completed: {self.downloads_completed}, "
                f"failed: {self.downloads_failed})"
            )

    async def _process(self, job: DownloadJob) -> DownloadOutcome:
        try:
            ref = await self.downloader.download(
                job.post_id,
                job.ref,
                self.enabled_kinds,
                self.account_dir,
            )
        except Exception as e:
            logger.error(
                f"Worker {self.worker_id}: unexpected error on post "
                f"{job.post_id} slot {job.ref.slot}: {e}",
                exc_info=True
            )
            ref = job.ref.mark_failed(f"unexpected error: {e}")
        return DownloadOutcome(post_id=job.post_id, ref=ref)

    def stats(self) -> dict:
        """Get worker statistics."""
        return {
            "worker_id": self.worker_id,
            "downloads_completed": self.downloads_completed,
            "downloads_failed": self.downloads_failed,
        }
