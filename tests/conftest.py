"""
Shared fixtures and configuration for pytest.
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from timeline_archiver.config import ArchiverConfig
from timeline_archiver.models import MediaKind, MediaRef, Post
from timeline_archiver.twitter_api import TimelinePage, UserInfo

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_post(post_id: int, *kinds: MediaKind, author: str = "alice") -> Post:
    """Build a post whose media slots follow ``kinds``."""
    media = []
    for slot, kind in enumerate(kinds):
        if kind is MediaKind.PHOTO:
            url = f"https://pbs.twimg.com/media/p{post_id}_{slot}.jpg"
        else:
            url = f"https://video.twimg.com/v{post_id}_{slot}.mp4"
        media.append(MediaRef(kind=kind, slot=slot, url=url))
    return Post(
        id=post_id,
        created_at=BASE_TIME + timedelta(minutes=post_id % 100_000),
        author=author,
        text=f"post {post_id}",
        media=media,
    )


class FakeTimelineAPI:
    """
    In-memory stand-in for TwitterAPIClient.

    Serves ``posts`` newest first, honoring ``since_id``, page tokens and
    ``max_results`` the same way the real endpoint does. Kinds outside the
    requested selection are dropped from each returned post.
    """

    def __init__(
        self,
        posts: List[Post],
        user_id: str = "1001",
        username: str = "alice",
        protected: bool = False,
    ):
        self.posts = sorted(posts, key=lambda post: post.id, reverse=True)
        self.user = UserInfo(id=user_id, username=username, protected=protected)
        self.page_calls: List[Dict] = []
        self.user_calls = 0

    async def get_user(self, username: str) -> UserInfo:
        self.user_calls += 1
        return self.user

    async def get_timeline_page(
        self,
        user_id: str,
        author: str,
        media_kinds,
        since_id: Optional[int] = None,
        pagination_token: Optional[str] = None,
        max_results: int = 100,
    ) -> TimelinePage:
        self.page_calls.append({
            "since_id": since_id,
            "pagination_token": pagination_token,
            "max_results": max_results,
        })
        kinds = set(media_kinds)
        visible = [
            post for post in self.posts
            if since_id is None or post.id > since_id
        ]
        start = int(pagination_token) if pagination_token else 0
        chunk = visible[start:start + max_results]
        end = start + len(chunk)
        page_posts = [
            post.model_copy(
                update={"media": [ref for ref in post.media if ref.kind in kinds]}
            )
            for post in chunk
        ]
        return TimelinePage(
            posts=page_posts,
            next_token=str(end) if end < len(visible) else None,
            result_count=len(page_posts),
        )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def post_factory():
    """Factory building posts with the given media kinds."""
    return make_post


@pytest.fixture
def fake_api_class():
    """The in-memory timeline API class."""
    return FakeTimelineAPI


@pytest.fixture
def sample_config(tmp_path):
    """Configuration tuned for fast tests."""
    return ArchiverConfig(
        bearer_token="test-token",
        output_dir=tmp_path / "archive",
        accounts=["alice"],
        concurrency=3,
        rate_limit=1000.0,
        max_retries=2,
        base_backoff=0.01,
        max_backoff=0.01,
        max_rate_limit_wait=0.0,
    )


@pytest.fixture
def sample_user_payload():
    """User lookup response."""
    return {
        "data": {
            "id": "1001",
            "name": "Alice",
            "username": "alice",
            "protected": False,
        }
    }


@pytest.fixture
def sample_timeline_payload():
    """One timeline page with a photo post, a video post and a retweet."""
    return {
        "data": [
            {
                "id": "300",
                "created_at": "2024-01-03T10:00:00.000Z",
                "text": "two photos and a video",
                "attachments": {"media_keys": ["3_1", "7_2", "3_3"]},
            },
            {
                "id": "250",
                "created_at": "2024-01-02T10:00:00.000Z",
                "text": "RT @bob: hi",
                "referenced_tweets": [{"type": "retweeted", "id": "240"}],
                "attachments": {"media_keys": ["3_9"]},
            },
            {
                "id": "200",
                "created_at": "2024-01-01T10:00:00.000Z",
                "text": "just text",
            },
        ],
        "includes": {
            "media": [
                {
                    "media_key": "3_1",
                    "type": "photo",
                    "url": "https://pbs.twimg.com/media/AAA.jpg",
                },
                {
                    "media_key": "7_2",
                    "type": "video",
                    "variants": [
                        {
                            "content_type": "application/x-mpegURL",
                            "url": "https://video.twimg.com/ext_tw_video/2/pl/playlist.m3u8",
                        },
                        {
                            "content_type": "video/mp4",
                            "bit_rate": 832000,
                            "url": "https://video.twimg.com/ext_tw_video/2/vid/640x360/low.mp4",
                        },
                        {
                            "content_type": "video/mp4",
                            "bit_rate": 2176000,
                            "url": "https://video.twimg.com/ext_tw_video/2/vid/1280x720/high.mp4",
                        },
                    ],
                },
                {
                    "media_key": "3_3",
                    "type": "photo",
                    "url": "https://pbs.twimg.com/media/CCC.png",
                },
                {
                    "media_key": "3_9",
                    "type": "photo",
                    "url": "https://pbs.twimg.com/media/ZZZ.jpg",
                },
            ]
        },
        "meta": {
            "result_count": 3,
            "newest_id": "300",
            "oldest_id": "200",
            "next_token": "7140dibdnow9c7btw3w29grvxfcgvpb9n9coehpk7xz5i",
        },
    }
