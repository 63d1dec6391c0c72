"""
Orchestrator for synchronizing account archives.

This module provides the SyncOrchestrator class that coordinates, per
account, timeline fetching, concurrent media downloads and the final
manifest merge, and collects the per-account results into a SyncReport.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from .config import ArchiverConfig, normalize_accounts
from .constants import (
    EXIT_FAILURE,
    EXIT_PARTIAL,
    EXIT_SOME_ACCOUNTS_FAILED,
    EXIT_SUCCESS,
)
from .downloader import MediaDownloader
from .exceptions import (
    AccountError,
    AccountMismatchError,
    ArchiverError,
    APIError,
    ManifestError,
    NetworkError,
    OrchestratorError,
    ProtectedAccountError,
)
from .fetcher import FetchResult, TimelineFetcher
from .http_client import AsyncHTTPClient
from .manifest import ArchiveStore
from .models import AccountStatus, FetchStatus, Manifest, MediaRef, MediaStatus, Post
from .queue import DownloadJob, DownloadOutcome, MediaQueue
from .retry import RetryStrategy
from .storage import account_lock
from .twitter_api import TwitterAPIClient
from .worker import DownloadWorker

logger = logging.getLogger(__name__)


@dataclass
class AccountResult:
    """
    Outcome of syncing one account.

    Attributes:
        username: Account username
        status: success, partial or failed
        new_posts: Posts added to the manifest by this run
        total_posts: Posts in the manifest after this run
        media_downloaded: Media items downloaded (or adopted) by this run
        media_failed: Media items whose download failed in this run
        fetch_status: How the timeline fetch ended, if it ran
        reason: Failure reason for a failed account
        manifest_written: Whether the manifest file was (re)written
    """
    username: str
    status: AccountStatus
    new_posts: int = 0
    total_posts: int = 0
    media_downloaded: int = 0
    media_failed: int = 0
    fetch_status: Optional[FetchStatus] = None
    reason: Optional[str] = None
    manifest_written: bool = False

    @property
    def truncated(self) -> bool:
        return self.fetch_status is FetchStatus.TRUNCATED

    def __str__(self) -> str:
        if self.status is AccountStatus.FAILED:
            return f"{self.username}: failed ({self.reason})"

        line = (
            f"{self.username}: {self.status.value} "
            f"({self.new_posts} new posts, {self.total_posts} total, "
            f"{self.media_downloaded} media downloaded"
        )
        if self.status is AccountStatus.PARTIAL:
            line += f", {self.media_failed} media failed"
        line += ")"
        if self.truncated:
            line += " [truncated by retrieval ceiling]"
        return line


@dataclass
class SyncReport:
    """Per-account results of one sync run."""
    results: List[AccountResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None

    @property
    def succeeded(self) -> List[AccountResult]:
        return [r for r in self.results if r.status is AccountStatus.SUCCESS]

    @property
    def partial(self) -> List[AccountResult]:
        return [r for r in self.results if r.status is AccountStatus.PARTIAL]

    @property
    def failed(self) -> List[AccountResult]:
        return [r for r in self.results if r.status is AccountStatus.FAILED]

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or datetime.now(timezone.utc)
        return (end - self.start_time).total_seconds()

    @property
    def exit_code(self) -> int:
        """
        Process exit status for the run.

        0 when every account succeeded, 2 when media failed but no account
        did, 3 when some accounts failed and others were archived, 1 when
        nothing was archived.
        """
        if not self.results or len(self.failed) == len(self.results):
            return EXIT_FAILURE
        if self.failed:
            return EXIT_SOME_ACCOUNTS_FAILED
        if self.partial:
            return EXIT_PARTIAL
        return EXIT_SUCCESS

    def __str__(self) -> str:
        lines = [
            f"\n{'=' * 60}",
            "Sync Report",
            f"{'=' * 60}",
        ]
        lines.extend(str(result) for result in self.results)
        lines.extend([
            f"{'-' * 60}",
            f"Succeeded:         {len(self.succeeded)}",
            f"Partial:           {len(self.partial)}",
            f"Failed:            {len(self.failed)}",
            f"Duration:          {self.duration_seconds:.2f} seconds",
            f"{'=' * 60}\n",
        ])
        return "\n".join(lines)


class SyncOrchestrator:
    """
    Coordinates the sync of a set of accounts.

    Each account runs under its own directory lock: resolve the user, load
    the manifest, fetch the posts above the resume boundary, download media
    through a worker pool, then merge and atomically save the manifest.
    Accounts are independent and run concurrently up to
    ``config.account_concurrency``.

    Failure handling:
        - An account that cannot be resolved, fetched or loaded is reported
          as failed and the other accounts carry on.
        - A manifest that cannot be saved aborts the whole run.
        - Cancellation stops the workers before any manifest is saved.

    Example:
        ```python
        orchestrator = SyncOrchestrator(config)
        report = await orchestrator.run()
        print(report)
        sys.exit(report.exit_code)
        ```
    """

    def __init__(
        self,
        config: ArchiverConfig,
        http_client: Optional[AsyncHTTPClient] = None,
        api: Optional[TwitterAPIClient] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Run configuration
            http_client: Shared HTTP client; one is created and closed by
                ``run`` when omitted
            api: API client; built on ``http_client`` when omitted
        """
        self.config = config
        self.http_client = http_client
        self._owns_http_client = http_client is None
        self.api = api

        self.retry_strategy = RetryStrategy(
            max_retries=config.max_retries,
            base_backoff=config.base_backoff,
            max_backoff=config.max_backoff,
            max_rate_limit_wait=config.max_rate_limit_wait,
        )
        self.store = ArchiveStore(config.output_dir)

        self.fetcher: Optional[TimelineFetcher] = None
        self.downloader: Optional[MediaDownloader] = None

        logger.info(
            f"Orchestrator initialized: output={config.output_dir}, "
            f"kinds={sorted(kind.value for kind in config.enabled_kinds)}"
        )

    def _initialize_components(self) -> None:
        if self.http_client is None:
            self.http_client = AsyncHTTPClient(
                rate_limit=self.config.rate_limit,
                timeout=self.config.timeout,
            )
            self._owns_http_client = True

        if self.api is None:
            self.api = TwitterAPIClient(self.http_client, self.config.bearer_token)

        self.fetcher = TimelineFetcher(
            self.api,
            self.retry_strategy,
            ceiling=self.config.ceiling,
            page_size=self.config.page_size,
        )
        self.downloader = MediaDownloader(
            self.http_client,
            self.retry_strategy,
            file_exists_policy=self.config.file_exists_policy,
            stall_timeout=self.config.timeout,
        )

    async def run(self, accounts: Optional[Iterable[str]] = None) -> SyncReport:
        """
        Sync every account.

        Args:
            accounts: Usernames to sync, defaults to ``config.accounts``

        Returns:
            SyncReport with one result per account, in input order

        Raises:
            ManifestError: If a manifest cannot be saved; other accounts
                still running are cancelled
            OrchestratorError: If an account task crashes unexpectedly
        """
        usernames = normalize_accounts(self.config.accounts if accounts is None else accounts)
        report = SyncReport()
        logger.info(f"Starting sync of {len(usernames)} account(s)")

        self._initialize_components()
        semaphore = asyncio.Semaphore(self.config.account_concurrency)

        async def bounded(username: str) -> AccountResult:
            async with semaphore:
                return await self.sync_account(username)

        tasks = [asyncio.create_task(bounded(name)) for name in usernames]

        try:
            if tasks:
                done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    if task.cancelled() or task.exception() is None:
                        continue
                    error = task.exception()
                    if isinstance(error, ArchiverError):
                        raise error
                    logger.error(f"Sync task crashed: {error}", exc_info=error)
                    raise OrchestratorError(f"Sync failed: {error}") from error
            report.results = [task.result() for task in tasks]
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

            if self._owns_http_client and self.http_client is not None:
                await self.http_client.close()

            report.end_time = datetime.now(timezone.utc)

        logger.info(
            f"Sync finished: {len(report.succeeded)} succeeded, "
            f"{len(report.partial)} partial, {len(report.failed)} failed"
        )
        return report

    async def sync_account(self, username: str) -> AccountResult:
        """
        Sync one account under its directory lock.

        Returns:
            AccountResult; account-level problems are reported as failed

        Raises:
            ManifestError: If the merged manifest cannot be saved
        """
        if self.fetcher is None:
            self._initialize_components()

        logger.info(f"Syncing account '{username}'")

        try:
            async with account_lock(self.store.account_dir(username), username):
                return await self._sync_locked(username)
        except (AccountError, NetworkError, APIError) as e:
            logger.error(f"Account '{username}' failed: {e}")
            return AccountResult(username, AccountStatus.FAILED, reason=str(e))

    async def _sync_locked(self, username: str) -> AccountResult:
        try:
            manifest = await self.store.load(username)
        except ManifestError as e:
            logger.error(f"Refusing to sync '{username}' over a damaged manifest: {e}")
            return AccountResult(username, AccountStatus.FAILED, reason=str(e))

        user = await self.retry_strategy.execute_async(self.api.get_user, username)
        if user.protected:
            raise ProtectedAccountError(username)
        if manifest is not None and manifest.account_id != user.id:
            raise AccountMismatchError(username, manifest.account_id, user.id)

        boundary = None
        if manifest is not None and not self.config.rescan:
            boundary = manifest.resume_boundary

        fetch = await self.fetcher.fetch(
            user.id, username, self.config.enabled_kinds, resume_boundary=boundary
        )
        if fetch.status is FetchStatus.ERROR:
            # Merging a partial fetch would leave a gap below the new boundary
            return AccountResult(
                username,
                AccountStatus.FAILED,
                fetch_status=fetch.status,
                reason=f"timeline fetch failed: {fetch.error}",
            )

        known_ids = manifest.post_ids() if manifest else set()
        new_posts = [post for post in fetch.posts if post.id not in known_ids]

        jobs = self._collect_jobs(new_posts, manifest)
        outcomes = await self._download_all(username, jobs)

        merged = self.store.merge(manifest, user.id, username, new_posts, outcomes)
        written = await self.store.save(merged)

        return self._create_result(username, fetch, new_posts, merged, outcomes, written)

    def _collect_jobs(
        self, new_posts: List[Post], manifest: Optional[Manifest]
    ) -> List[DownloadJob]:
        """Media to download: new posts, plus unfinished archived media."""
        enabled = self.config.enabled_kinds
        jobs = [
            DownloadJob(post.id, ref)
            for post in new_posts
            for ref in post.media
            if ref.kind in enabled and ref.status is not MediaStatus.DOWNLOADED
        ]

        if manifest is not None and self.config.retry_failed:
            retry = [
                DownloadJob(post.id, ref)
                for post in manifest.posts
                for ref in post.media
                if ref.kind in enabled and ref.status is not MediaStatus.DOWNLOADED
            ]
            if retry:
                logger.info(f"Retrying {len(retry)} unfinished media item(s)")
            jobs.extend(retry)

        return jobs

    async def _download_all(
        self, username: str, jobs: List[DownloadJob]
    ) -> Dict[Tuple[int, int], MediaRef]:
        """
        Download media with a worker pool.

        Returns:
            Updated references keyed by (post id, slot)
        """
        if not jobs:
            return {}

        queue = MediaQueue()
        outcome_queue: "asyncio.Queue[DownloadOutcome]" = asyncio.Queue()
        account_dir = self.store.account_dir(username)
        num_workers = min(self.config.concurrency, len(jobs))

        logger.info(
            f"Downloading {len(jobs)} media item(s) for '{username}' "
            f"with {num_workers} workers"
        )

        for job in jobs:
            await queue.add_job(job)

        workers = [
            DownloadWorker(
                worker_id=worker_id + 1,
                queue=queue,
                outcomes=outcome_queue,
                downloader=self.downloader,
                enabled_kinds=self.config.enabled_kinds,
                account_dir=account_dir,
            )
            for worker_id in range(num_workers)
        ]
        worker_tasks = [asyncio.create_task(worker.run()) for worker in workers]

        for _ in range(num_workers):
            await queue.add_sentinel()

        try:
            await asyncio.gather(*worker_tasks)
        except BaseException:
            for task in worker_tasks:
                task.cancel()
            await asyncio.gather(*worker_tasks, return_exceptions=True)
            raise

        outcomes: Dict[Tuple[int, int], MediaRef] = {}
        while not outcome_queue.empty():
            outcome = outcome_queue.get_nowait()
            outcomes[outcome.key] = outcome.ref

        logger.info(
            f"Workers for '{username}' done: "
            f"{sum(w.downloads_completed for w in workers)} downloaded, "
            f"{sum(w.downloads_failed for w in workers)} failed"
        )
        return outcomes

    def _create_result(
        self,
        username: str,
        fetch: FetchResult,
        new_posts: List[Post],
        merged: Manifest,
        outcomes: Dict[Tuple[int, int], MediaRef],
        written: bool,
    ) -> AccountResult:
        downloaded = sum(1 for ref in outcomes.values() if ref.status is MediaStatus.DOWNLOADED)
        failed = sum(1 for ref in outcomes.values() if ref.status is MediaStatus.FAILED)
        counts = self.store.summarize(merged)

        result = AccountResult(
            username=username,
            status=AccountStatus.PARTIAL if failed else AccountStatus.SUCCESS,
            new_posts=len(new_posts),
            total_posts=counts["posts"],
            media_downloaded=downloaded,
            media_failed=failed,
            fetch_status=fetch.status,
            manifest_written=written,
        )
        logger.info(f"Account result: {result}")
        return result
