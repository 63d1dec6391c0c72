"""
Data models for the timeline archiver.

This module defines Pydantic models for posts, their media references and
the per-account archive manifest. The manifest schema is also what external
tools read, so field names here are part of the on-disk format.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import MANIFEST_VERSION


class MediaKind(str, Enum):
    """The closed set of media kinds a post can carry."""

    PHOTO = "photo"
    VIDEO = "video"
    ANIMATED_GIF = "animated_gif"

    @property
    def default_extension(self) -> str:
        """File extension used when the source URL does not carry one."""
        return DEFAULT_EXTENSIONS[self]


DEFAULT_EXTENSIONS: Dict[MediaKind, str] = {
    MediaKind.PHOTO: ".jpg",
    MediaKind.VIDEO: ".mp4",
    MediaKind.ANIMATED_GIF: ".mp4",
}

# Every per-kind table must cover the whole enum
if set(DEFAULT_EXTENSIONS) != set(MediaKind):
    raise RuntimeError("DEFAULT_EXTENSIONS does not cover every MediaKind")


class MediaStatus(str, Enum):
    """Download state of a single media reference."""

    PENDING = "pending"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


class FetchStatus(str, Enum):
    """Terminal state of a timeline fetch."""

    COMPLETED = "completed"
    TRUNCATED = "truncated"
    ERROR = "error"


class AccountStatus(str, Enum):
    """Outcome of syncing one account."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class MediaRef(BaseModel):
    """
    A media attachment of a post.

    ``slot`` is the attachment's position in the upstream post, which keeps
    local filenames stable even when only some kinds are archived.
    """

    kind: MediaKind = Field(
        ...,
        description="Kind of media"
    )
    slot: int = Field(
        ...,
        description="Position of the attachment within its post",
        ge=0
    )
    url: Optional[str] = Field(
        None,
        description="Remote source URL (best variant for video and animated GIFs)"
    )
    filename: Optional[str] = Field(
        None,
        description="Local filename, set only once the file is downloaded"
    )
    status: MediaStatus = Field(
        MediaStatus.PENDING,
        description="Download status"
    )
    error: Optional[str] = Field(
        None,
        description="Reason of the last failed download attempt"
    )

    @model_validator(mode="after")
    def check_filename_matches_status(self) -> "MediaRef":
        """A local filename exists exactly when the media is downloaded."""
        if self.status is MediaStatus.DOWNLOADED and not self.filename:
            raise ValueError("downloaded media must have a filename")
        if self.status is not MediaStatus.DOWNLOADED and self.filename:
            raise ValueError(f"{self.status.value} media must not have a filename")
        return self

    def mark_downloaded(self, filename: str) -> "MediaRef":
        """Return a copy of this reference recorded as downloaded."""
        return MediaRef(
            kind=self.kind,
            slot=self.slot,
            url=self.url,
            filename=filename,
            status=MediaStatus.DOWNLOADED,
        )

    def mark_failed(self, error: str) -> "MediaRef":
        """Return a copy of this reference recorded as failed."""
        return MediaRef(
            kind=self.kind,
            slot=self.slot,
            url=self.url,
            status=MediaStatus.FAILED,
            error=error,
        )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "kind": "photo",
                    "slot": 0,
                    "url": "https://pbs.twimg.com/media/FabcDEF123.jpg",
                    "filename": "1580661436132757506_0.jpg",
                    "status": "downloaded",
                    "error": None
                }
            ]
        }
    }


class Post(BaseModel):
    """A single timeline post and its media references."""

    id: int = Field(
        ...,
        description="Upstream post identifier, increasing with time"
    )
    created_at: datetime = Field(
        ...,
        description="When the post was published"
    )
    author: str = Field(
        ...,
        description="Username of the account the post belongs to"
    )
    text: str = Field(
        "",
        description="Text body of the post"
    )
    media: List[MediaRef] = Field(
        default_factory=list,
        description="Media references ordered by slot"
    )

    def has_media(self, kind: Optional[MediaKind] = None) -> bool:
        """Check whether the post carries media, optionally of one kind."""
        if kind is None:
            return bool(self.media)
        return any(ref.kind is kind for ref in self.media)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": 1580661436132757506,
                    "created_at": "2022-10-13T20:21:27Z",
                    "author": "alice",
                    "text": "hello world",
                    "media": []
                }
            ]
        }
    }


class Manifest(BaseModel):
    """
    Per-account archive manifest.

    Posts are kept newest first and ``resume_boundary`` always equals the
    highest archived post id, so the next sync knows where to stop.
    """

    version: int = Field(
        default=MANIFEST_VERSION,
        description="Schema version of the manifest file"
    )
    account_id: str = Field(
        ...,
        description="Upstream user id the archive belongs to"
    )
    username: str = Field(
        ...,
        description="Username the archive was created for"
    )
    resume_boundary: Optional[int] = Field(
        None,
        description="Highest archived post id"
    )
    posts: List[Post] = Field(
        default_factory=list,
        description="Archived posts, descending by id"
    )

    @field_validator("version")
    @classmethod
    def known_version(cls, v: int) -> int:
        """Refuse manifests written in a format this release cannot read."""
        if not 1 <= v <= MANIFEST_VERSION:
            raise ValueError(
                f"unsupported manifest version {v} (this release reads up to {MANIFEST_VERSION})"
            )
        return v

    @model_validator(mode="after")
    def sync_boundary(self) -> "Manifest":
        """Reject duplicate ids, order posts and recompute the boundary."""
        seen = set()
        for post in self.posts:
            if post.id in seen:
                raise ValueError(f"duplicate post id {post.id} in manifest")
            seen.add(post.id)

        self.posts = sorted(self.posts, key=lambda post: post.id, reverse=True)
        self.resume_boundary = self.posts[0].id if self.posts else None
        return self

    def post_ids(self) -> set:
        """Ids of all archived posts."""
        return {post.id for post in self.posts}

    def get_post(self, post_id: int) -> Optional[Post]:
        """Find a post by id."""
        for post in self.posts:
            if post.id == post_id:
                return post
        return None

    def media_counts(self) -> Dict[str, int]:
        """Count media references by status."""
        counts = {status.value: 0 for status in MediaStatus}
        for post in self.posts:
            for ref in post.media:
                counts[ref.status.value] += 1
        return counts

    def to_dict(self) -> Dict:
        """Convert manifest to a dictionary for JSON serialization."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict) -> "Manifest":
        """
        Create a Manifest instance from a dictionary.

        Raises:
            ValidationError: If data doesn't match schema
        """
        return cls.model_validate(data)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "version": 1,
                    "account_id": "783214",
                    "username": "alice",
                    "resume_boundary": None,
                    "posts": []
                }
            ]
        }
    }
