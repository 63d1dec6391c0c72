"""
Timeline fetching for a single account.

The fetcher walks the timeline newest first, one page at a time, and stops
at the first of: the retrieval ceiling, the end of the timeline, or the first
post already covered by the archive (the resume boundary).
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .constants import MAX_PAGE_SIZE, MIN_PAGE_SIZE, UPSTREAM_RETRIEVAL_CEILING
from .exceptions import ArchiverError
from .models import FetchStatus, MediaKind, Post
from .retry import RetryStrategy
from .twitter_api import TwitterAPIClient

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """
    Posts retrieved for one account plus how the fetch ended.

    With status ``error`` the posts are those retrieved before the failure
    and ``error`` holds the reason.
    """
    posts: List[Post] = field(default_factory=list)
    status: FetchStatus = FetchStatus.COMPLETED
    error: Optional[str] = None
    pages: int = 0

    @property
    def count(self) -> int:
        return len(self.posts)


class TimelineFetcher:
    """
    Cursor-based timeline pagination with a hard retrieval ceiling.

    Each page request goes through the retry strategy, so a rate-limited or
    failed page is retried with the same cursor and no posts are lost or
    duplicated.

    Example:
        ```python
        fetcher = TimelineFetcher(api, RetryStrategy(), ceiling=3200)
        result = await fetcher.fetch(user.id, "alice", {MediaKind.PHOTO}, manifest.resume_boundary)
        ```
    """

    def __init__(
        self,
        api: TwitterAPIClient,
        retry_strategy: Optional[RetryStrategy] = None,
        ceiling: int = UPSTREAM_RETRIEVAL_CEILING,
        page_size: int = MAX_PAGE_SIZE,
    ):
        """
        Initialize the fetcher.

        Args:
            api: Twitter API client
            retry_strategy: Retry policy for page requests
            ceiling: Maximum posts to retrieve, never above the upstream limit
            page_size: Posts requested per page
        """
        self.api = api
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.ceiling = min(ceiling, UPSTREAM_RETRIEVAL_CEILING)
        self.page_size = max(MIN_PAGE_SIZE, min(page_size, MAX_PAGE_SIZE))

    async def fetch(
        self,
        user_id: str,
        author: str,
        media_kinds: Iterable[MediaKind],
        resume_boundary: Optional[int] = None,
    ) -> FetchResult:
        """
        Retrieve the posts of one account newer than ``resume_boundary``.

        Args:
            user_id: Upstream user id
            author: Username recorded on the posts
            media_kinds: Media kinds to record on the posts
            resume_boundary: Highest already archived post id, if any

        Returns:
            FetchResult with posts newest first
        """
        kinds = frozenset(media_kinds)
        result = FetchResult()
        token: Optional[str] = None

        logger.info(
            f"Fetching timeline of '{author}' "
            f"(boundary: {resume_boundary}, ceiling: {self.ceiling})"
        )

        while True:
            remaining = self.ceiling - result.count
            max_results = max(MIN_PAGE_SIZE, min(self.page_size, remaining))

            try:
                page = await self.retry_strategy.execute_async(
                    self.api.get_timeline_page,
                    user_id,
                    author,
                    kinds,
                    since_id=resume_boundary,
                    pagination_token=token,
                    max_results=max_results,
                )
            except ArchiverError as e:
                logger.warning(
                    f"Timeline fetch for '{author}' aborted after "
                    f"{result.count} posts: {e}"
                )
                result.status = FetchStatus.ERROR
                result.error = str(e)
                return result

            result.pages += 1

            for post in page.posts:
                if resume_boundary is not None and post.id <= resume_boundary:
                    logger.debug(f"Reached archived post {post.id}, stopping")
                    result.status = FetchStatus.COMPLETED
                    return result

                if result.count >= self.ceiling:
                    # More history than the ceiling allows
                    result.status = FetchStatus.TRUNCATED
                    return result

                result.posts.append(post)

            logger.debug(
                f"Page {result.pages} for '{author}': {len(page.posts)} posts "
                f"({result.count} total)"
            )

            if not page.next_token:
                result.status = FetchStatus.COMPLETED
                return result

            if result.count >= self.ceiling:
                logger.info(
                    f"Retrieval ceiling of {self.ceiling} posts reached for '{author}'"
                )
                result.status = FetchStatus.TRUNCATED
                return result

            token = page.next_token
