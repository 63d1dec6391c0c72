"""
Archive store: per-account manifests on disk.

This module provides the ArchiveStore class for:
- Locating each account's archive directory and manifest file
- Loading and validating an existing manifest
- Merging newly fetched posts and download outcomes (append-only)
- Atomic manifest writes that never leave a truncated file behind
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import aiofiles
from pydantic import ValidationError

from .constants import MANIFEST_FILENAME
from .exceptions import ManifestError
from .models import Manifest, MediaRef, MediaStatus, Post
from .storage import atomic_write

logger = logging.getLogger(__name__)

# (post id, slot) -> updated reference
MediaUpdates = Mapping[Tuple[int, int], MediaRef]

# Status changes a merge may apply to an archived reference
ALLOWED_TRANSITIONS = {
    MediaStatus.PENDING: {MediaStatus.DOWNLOADED, MediaStatus.FAILED},
    MediaStatus.FAILED: {MediaStatus.DOWNLOADED, MediaStatus.FAILED},
    MediaStatus.DOWNLOADED: set(),
}


def serialize_manifest(manifest: Manifest) -> str:
    """Render a manifest exactly as it is stored on disk."""
    return json.dumps(manifest.to_dict(), indent=2, ensure_ascii=False) + "\n"


class ArchiveStore:
    """
    Owns the on-disk archive of every account under ``output_dir``.

    Layout::

        <output_dir>/<username>/manifest.json
        <output_dir>/<username>/<post id>_<slot>.<ext>

    The manifest of an account is only ever replaced as a whole, through
    ``save``; fetch and download components never touch it.

    Example:
        ```python
        store = ArchiveStore(Path("archive"))
        manifest = await store.load("alice")
        merged = store.merge(manifest, user.id, "alice", new_posts, updates)
        await store.save(merged)
        ```
    """

    def __init__(self, output_dir: Union[str, Path]):
        """
        Initialize the store.

        Args:
            output_dir: Root directory of the archive
        """
        self.output_dir = Path(output_dir)

    def account_dir(self, username: str) -> Path:
        """Directory holding one account's manifest and media."""
        return self.output_dir / username

    def manifest_path(self, username: str) -> Path:
        """Path of one account's manifest file."""
        return self.account_dir(username) / MANIFEST_FILENAME

    async def load(self, username: str) -> Optional[Manifest]:
        """
        Load the manifest of an account.

        Returns:
            The manifest, or None if the account was never archived

        Raises:
            ManifestError: If the file exists but cannot be read or parsed.
                A damaged manifest is never replaced silently.
        """
        path = self.manifest_path(username)
        if not path.exists():
            return None

        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
            manifest = Manifest.from_dict(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ManifestError(
                "Failed to load manifest", details=str(e), manifest_path=str(path)
            ) from e

        logger.debug(
            f"Loaded manifest for '{username}': {len(manifest.posts)} posts, "
            f"boundary {manifest.resume_boundary}"
        )
        return manifest

    def merge(
        self,
        manifest: Optional[Manifest],
        account_id: str,
        username: str,
        new_posts: Iterable[Post],
        media_updates: Optional[MediaUpdates] = None,
    ) -> Manifest:
        """
        Combine an archived manifest with new posts and download outcomes.

        Pure function: neither the input manifest nor the posts are modified.
        Posts already archived are never replaced, only their media status
        moves forward (pending or failed to downloaded or failed).

        Args:
            manifest: Archived manifest, or None for a first sync
            account_id: Upstream user id of the account
            username: Account username
            new_posts: Newly fetched posts
            media_updates: Download outcomes keyed by (post id, slot)

        Returns:
            New manifest with posts descending by id
        """
        updates = media_updates or {}
        existing = list(manifest.posts) if manifest else []
        known_ids = {post.id for post in existing}

        added: List[Post] = []
        for post in new_posts:
            if post.id in known_ids:
                logger.debug(f"Post {post.id} already archived, keeping archived copy")
                continue
            known_ids.add(post.id)
            added.append(self._apply_updates(post, updates))

        kept = [self._apply_updates(post, updates) for post in existing]

        return Manifest(
            account_id=account_id,
            username=username,
            posts=added + kept,
        )

    @staticmethod
    def _apply_updates(post: Post, updates: MediaUpdates) -> Post:
        if not updates:
            return post

        media = []
        changed = False
        for ref in post.media:
            update = updates.get((post.id, ref.slot))
            if (
                update is not None
                and update.kind is ref.kind
                and update.status in ALLOWED_TRANSITIONS[ref.status]
            ):
                media.append(update)
                changed = True
            else:
                media.append(ref)

        if not changed:
            return post
        return post.model_copy(update={"media": media})

    async def save(self, manifest: Manifest) -> bool:
        """
        Atomically write a manifest.

        Nothing is written when the stored file already has identical
        content, so an unchanged rerun leaves the file untouched.

        Returns:
            True if the file was written

        Raises:
            ManifestError: If the write fails; the previous manifest stays
                in place
        """
        path = self.manifest_path(manifest.username)
        content = serialize_manifest(manifest)

        if path.exists():
            try:
                if path.read_text(encoding='utf-8') == content:
                    logger.debug(f"Manifest for '{manifest.username}' unchanged")
                    return False
            except OSError as e:
                logger.warning(f"Could not compare existing manifest {path}: {e}")

        try:
            await atomic_write(path, content)
        except OSError as e:
            raise ManifestError(
                "Failed to save manifest", details=str(e), manifest_path=str(path)
            ) from e

        logger.info(
            f"Saved manifest for '{manifest.username}' "
            f"({len(manifest.posts)} posts)"
        )
        return True

    def summarize(self, manifest: Manifest) -> Dict[str, int]:
        """Post and media counts of a manifest, for reporting."""
        counts = manifest.media_counts()
        counts["posts"] = len(manifest.posts)
        return counts
