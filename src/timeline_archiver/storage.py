"""
Storage utilities for file operations.

This module provides atomic writes, directory management and the per-account
lock that keeps two syncs of the same account from running at once.
"""

import errno
import logging
import os
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Union

import aiofiles

from .constants import LOCK_FILENAME, UNREADABLE_LOCK_GRACE_SECONDS
from .exceptions import AccountLockedError

logger = logging.getLogger(__name__)


async def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Create directory and parent directories if they don't exist.

    Idempotent - safe to call multiple times for the same path.

    Args:
        path: Directory path to create

    Returns:
        Path object for the created directory
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


async def atomic_write(filepath: Union[str, Path], content: str) -> None:
    """
    Write content to file atomically using temp file and rename.

    The content is written and fsynced to a temporary file in the target's
    directory, then moved over the target with ``os.replace``. Readers see
    either the old file or the complete new one, never a partial write.

    Args:
        filepath: Target file path
        content: String content to write

    Raises:
        OSError: If write or rename fails; the target is left untouched
    """
    filepath = Path(filepath)

    await ensure_directory(filepath.parent)

    # Same directory as the target so the rename stays on one filesystem
    fd, temp_path = tempfile.mkstemp(
        dir=filepath.parent,
        prefix=f".{filepath.name}.",
        suffix=".tmp"
    )

    try:
        async with aiofiles.open(temp_path, 'w', encoding='utf-8') as f:
            await f.write(content)
            await f.flush()

        os.fsync(fd)
        os.close(fd)
        fd = None

        os.replace(temp_path, filepath)

    except BaseException:
        if fd is not None:
            try:
                os.close(fd)
            except OSError:
                logger.debug(f"Temp file descriptor for {filepath} already closed")
        try:
            os.unlink(temp_path)
        except OSError:
            logger.debug(f"Temp file {temp_path} already removed")
        raise


def _pid_alive(pid: int) -> bool:
    """Check whether a process with this pid exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but belongs to another user
        return True
    return True


def _read_lock_owner(lock_path: Path) -> Optional[int]:
    try:
        return int(lock_path.read_text(encoding='utf-8').strip())
    except (OSError, ValueError):
        return None


def _lock_abandoned(lock_path: Path) -> bool:
    """True when a lock without a readable pid is older than the grace period."""
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return True
    return age > UNREADABLE_LOCK_GRACE_SECONDS


def _try_create_lock(lock_path: Path) -> bool:
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except OSError as e:
        if e.errno == errno.EEXIST:
            return False
        raise
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        f.write(str(os.getpid()))
    return True


@asynccontextmanager
async def account_lock(account_dir: Union[str, Path], account: str) -> AsyncIterator[Path]:
    """
    Hold the exclusive sync lock of one account directory.

    The lock is a file created with ``O_EXCL`` holding the owner's pid. A
    lock left behind by a process that no longer exists is taken over. A
    lock whose pid cannot be read counts as held until it is older than
    ``UNREADABLE_LOCK_GRACE_SECONDS``.

    An account directory created only to hold the lock is removed again on
    release if nothing was written into it.

    Args:
        account_dir: The account's archive directory
        account: Username, for error messages

    Yields:
        Path of the lock file

    Raises:
        AccountLockedError: If a live process holds the lock
    """
    account_dir = Path(account_dir)
    created_dir = not account_dir.exists()
    await ensure_directory(account_dir)
    lock_path = account_dir / LOCK_FILENAME

    try:
        acquired = _acquire_lock(lock_path, account)
    except BaseException:
        _remove_if_empty(account_dir, created_dir)
        raise

    logger.debug(f"Acquired lock {acquired}")
    try:
        yield acquired
    finally:
        if _read_lock_owner(lock_path) == os.getpid():
            lock_path.unlink()
            logger.debug(f"Released lock {lock_path}")
        _remove_if_empty(account_dir, created_dir)


def _remove_if_empty(account_dir: Path, created_dir: bool) -> None:
    if created_dir and account_dir.is_dir() and not any(account_dir.iterdir()):
        account_dir.rmdir()
        logger.debug(f"Removed empty account directory {account_dir}")


def _acquire_lock(lock_path: Path, account: str) -> Path:
    if not _try_create_lock(lock_path):
        owner = _read_lock_owner(lock_path)
        if owner is None:
            # The owner may not have written its pid yet
            if not _lock_abandoned(lock_path):
                raise AccountLockedError(account, str(lock_path))
        elif _pid_alive(owner):
            raise AccountLockedError(account, str(lock_path))

        logger.warning(f"Removing stale lock for '{account}' (pid {owner})")
        lock_path.unlink(missing_ok=True)
        if not _try_create_lock(lock_path):
            raise AccountLockedError(account, str(lock_path))

    return lock_path
