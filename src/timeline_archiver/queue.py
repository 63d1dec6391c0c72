"""
Download job queue for distributing work to workers.

This module provides a MediaQueue class that wraps asyncio.Queue with
statistics tracking, plus the job and outcome messages exchanged between
the orchestrator and its download workers.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .models import MediaRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DownloadJob:
    """One media reference to download, addressed by post id and slot."""
    post_id: int
    ref: MediaRef

    @property
    def key(self) -> tuple:
        return (self.post_id, self.ref.slot)


@dataclass(frozen=True)
class DownloadOutcome:
    """Result message sent back by a worker for one job."""
    post_id: int
    ref: MediaRef

    @property
    def key(self) -> tuple:
        return (self.post_id, self.ref.slot)


class MediaQueue:
    """
    Queue for distributing download jobs to workers.

    Wraps asyncio.Queue with additional statistics tracking to monitor
    download progress and queue status.

    Example:
        ```python
        queue = MediaQueue()

        # Producer
        for job in jobs:
            await queue.add_job(job)

        # Consumer
        while True:
            job = await queue.get_job()
            if job is None:  # Sentinel value
                queue.mark_complete()
                break

            # Process job...
            queue.mark_complete()
        ```
    """

    def __init__(self, maxsize: int = 0):
        """
        Initialize the queue.

        Args:
            maxsize: Maximum number of items in queue. 0 means unlimited.
        """
        self._queue: asyncio.Queue[Optional[DownloadJob]] = asyncio.Queue(maxsize=maxsize)
        self._total_items = 0
        self._completed_items = 0

    async def add_job(self, job: DownloadJob) -> None:
        """Add a download job to the queue."""
        await self._queue.put(job)
        self._total_items += 1

        logger.debug(
            f"Queued {job.ref.kind.value} slot {job.ref.slot} of post {job.post_id} "
            f"(queue size: {self.qsize()})"
        )

    async def get_job(self) -> Optional[DownloadJob]:
        """
        Get the next job from the queue.

        Blocks until an item is available.

        Returns:
            Next DownloadJob, or None as a sentinel value to signal
            workers to stop.
        """
        return await self._queue.get()

    def mark_complete(self) -> None:
        """
        Mark a taken item as processed.

        Analogous to asyncio.Queue.task_done(); must be called once for
        every item returned by ``get_job``, sentinels included.
        """
        self._queue.task_done()
        self._completed_items += 1

    async def wait_completion(self) -> None:
        """Wait until every queued item has been marked complete."""
        await self._queue.join()
        logger.debug(f"All {self._total_items} queue items completed")

    def qsize(self) -> int:
        """Get the current number of items in the queue."""
        return self._queue.qsize()

    @property
    def total_items(self) -> int:
        """Total number of jobs added to the queue."""
        return self._total_items

    @property
    def completed_items(self) -> int:
        """Number of items marked as complete."""
        return self._completed_items

    def stats(self) -> dict:
        """
        Get queue statistics.

        Returns:
            Dictionary with queue statistics:
            - total: Jobs added
            - completed: Items marked complete
            - qsize: Current queue size
        """
        return {
            "total": self._total_items,
            "completed": self._completed_items,
            "qsize": self.qsize(),
        }

    async def add_sentinel(self) -> None:
        """
        Add a sentinel value (None) to signal one worker to stop.

        Example:
            ```python
            for _ in range(num_workers):
                await queue.add_sentinel()
            ```
        """
        await self._queue.put(None)
        logger.debug("Added sentinel value to queue")
