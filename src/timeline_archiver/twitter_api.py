"""
Twitter API v2 client for user lookup and timeline pages.

Only the two endpoints needed for archiving are wrapped: username lookup and
the user tweets timeline. Responses are converted into ``Post`` and
``MediaRef`` models here so the rest of the archiver never sees raw payloads.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from .constants import (
    API_BASE_URL,
    HTTP_NOT_FOUND,
    MAX_PAGE_SIZE,
    USER_LOOKUP_PATH,
    USER_TWEETS_PATH,
)
from .exceptions import AccountNotFoundError, APIError, NetworkError
from .http_client import AsyncHTTPClient
from .models import MediaKind, MediaRef, Post

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPE = "video/mp4"


@dataclass
class UserInfo:
    """A resolved upstream account."""
    id: str
    username: str
    protected: bool = False


@dataclass
class TimelinePage:
    """One page of a user timeline, newest post first."""
    posts: List[Post] = field(default_factory=list)
    next_token: Optional[str] = None
    result_count: int = 0


def best_variant_url(variants: Iterable[Dict[str, Any]]) -> Optional[str]:
    """
    Pick the highest-bitrate MP4 variant of a video or animated GIF.

    Streaming playlists (``application/x-mpegURL``) are ignored since they
    cannot be saved as a single file.

    Returns:
        URL of the best variant, or None if there is no MP4 variant
    """
    candidates = [
        variant for variant in variants
        if variant.get("content_type") == VIDEO_CONTENT_TYPE and variant.get("url")
    ]
    if not candidates:
        return None
    best = max(candidates, key=lambda variant: variant.get("bit_rate") or 0)
    return best["url"]


def media_ref_from_api(media: Dict[str, Any], slot: int) -> Optional[MediaRef]:
    """
    Convert an ``includes.media`` entry into a MediaRef.

    Returns:
        MediaRef in pending state, or None for unknown media types
    """
    try:
        kind = MediaKind(media.get("type"))
    except ValueError:
        logger.debug(f"Ignoring unsupported media type: {media.get('type')}")
        return None

    if kind is MediaKind.PHOTO:
        url = media.get("url")
    else:
        url = best_variant_url(media.get("variants") or [])

    return MediaRef(kind=kind, slot=slot, url=url)


def is_retweet(tweet: Dict[str, Any]) -> bool:
    """Check whether a raw tweet is a retweet of another post."""
    return any(
        ref.get("type") == "retweeted"
        for ref in tweet.get("referenced_tweets") or []
    )


class TwitterAPIClient:
    """
    Client for the Twitter API v2.

    The bearer token is passed in explicitly and attached only to API
    requests; media downloads through the same HTTP client never carry it.

    Example:
        ```python
        async with AsyncHTTPClient() as http:
            api = TwitterAPIClient(http, bearer_token="AAAA...")
            user = await api.get_user("alice")
            page = await api.get_timeline_page(user.id, "alice", {MediaKind.PHOTO})
        ```
    """

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        bearer_token: str,
        base_url: str = API_BASE_URL,
    ):
        """
        Initialize the API client.

        Args:
            http_client: Shared HTTP client
            bearer_token: App bearer token
            base_url: API root, overridable for testing
        """
        self.http_client = http_client
        self.bearer_token = bearer_token
        self.base_url = base_url.rstrip("/")

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.bearer_token}"}

    async def _get(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        payload = await self.http_client.get_json(
            f"{self.base_url}{path}",
            headers=self._auth_headers(),
            params=params,
        )
        if not isinstance(payload, dict):
            raise APIError("Unexpected response payload", details=type(payload).__name__)
        return payload

    async def get_user(self, username: str) -> UserInfo:
        """
        Resolve a username to its upstream account.

        Raises:
            AccountNotFoundError: If no such user exists
            APIError: If the response cannot be understood
        """
        try:
            payload = await self._get(
                USER_LOOKUP_PATH.format(username=username),
                {"user.fields": "protected"},
            )
        except NetworkError as e:
            if e.status_code == HTTP_NOT_FOUND:
                raise AccountNotFoundError(username) from e
            raise

        data = payload.get("data")
        if not data:
            # The API answers 200 with an errors array for unknown users
            errors = payload.get("errors") or []
            detail = errors[0].get("detail") if errors else None
            raise AccountNotFoundError(username, details=detail)

        try:
            return UserInfo(
                id=str(data["id"]),
                username=data.get("username", username),
                protected=bool(data.get("protected", False)),
            )
        except KeyError as e:
            raise APIError("User lookup response without id", details=str(e)) from e

    async def get_timeline_page(
        self,
        user_id: str,
        author: str,
        media_kinds: Iterable[MediaKind],
        since_id: Optional[int] = None,
        pagination_token: Optional[str] = None,
        max_results: int = MAX_PAGE_SIZE,
    ) -> TimelinePage:
        """
        Fetch one page of a user's timeline.

        Retweets are excluded upstream and filtered again locally. Only
        media of the requested kinds become MediaRefs; slots keep their
        upstream position.

        Args:
            user_id: Upstream user id
            author: Username recorded on each post
            media_kinds: Media kinds to record
            since_id: Only return posts newer than this id
            pagination_token: Cursor from the previous page
            max_results: Page size (5 to 100)

        Returns:
            TimelinePage with posts newest first

        Raises:
            APIError: If the payload carries only errors or is malformed
            NetworkError: On transport failures and error statuses
        """
        kinds = set(media_kinds)
        media_fields = ["media_key", "type", "url"]
        if kinds & {MediaKind.VIDEO, MediaKind.ANIMATED_GIF}:
            media_fields.append("variants")

        params = {
            "exclude": "retweets",
            "max_results": str(max_results),
            "expansions": "attachments.media_keys",
            "tweet.fields": "created_at,attachments,referenced_tweets",
            "media.fields": ",".join(media_fields),
        }
        if since_id is not None:
            params["since_id"] = str(since_id)
        if pagination_token:
            params["pagination_token"] = pagination_token

        payload = await self._get(USER_TWEETS_PATH.format(user_id=user_id), params)

        if "data" not in payload and "meta" not in payload:
            raise APIError("Timeline response without data", details=str(payload.get("errors")))

        meta = payload.get("meta") or {}
        includes = payload.get("includes") or {}
        media_index = {
            media["media_key"]: media
            for media in includes.get("media") or []
            if "media_key" in media
        }

        posts = []
        for tweet in payload.get("data") or []:
            if is_retweet(tweet):
                continue
            try:
                posts.append(self._to_post(tweet, author, media_index, kinds))
            except (KeyError, ValidationError) as e:
                raise APIError("Malformed post in timeline response", details=str(e)) from e

        return TimelinePage(
            posts=posts,
            next_token=meta.get("next_token"),
            result_count=meta.get("result_count", len(posts)),
        )

    def _to_post(
        self,
        tweet: Dict[str, Any],
        author: str,
        media_index: Dict[str, Dict[str, Any]],
        kinds: set,
    ) -> Post:
        media = []
        media_keys = (tweet.get("attachments") or {}).get("media_keys") or []
        for slot, key in enumerate(media_keys):
            if key not in media_index:
                logger.debug(f"Post {tweet['id']}: media {key} missing from includes")
                continue
            ref = media_ref_from_api(media_index[key], slot)
            if ref is not None and ref.kind in kinds:
                media.append(ref)

        return Post(
            id=int(tweet["id"]),
            created_at=tweet["created_at"],
            author=author,
            text=tweet.get("text", ""),
            media=media,
        )
