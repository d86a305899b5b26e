"""Filesystem helpers for prompt-sync."""

from __future__ import annotations

import errno
import logging
import os
import stat
from hashlib import sha256
from pathlib import Path

from .errors import ConfigError, CrossFilesystemLinkError, LinkIOError
from .models import EntryType, FileIdentity

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def lexists(path: Path) -> bool:
    """Return ``True`` if anything, including a dangling symlink, sits at ``path``."""

    return path.exists() or path.is_symlink()


def detect_entry_type(path: Path) -> EntryType:
    """Determine the ``EntryType`` for ``path`` without following symlinks."""

    mode = path.lstat().st_mode
    if stat.S_ISLNK(mode):
        return EntryType.SYMLINK
    if stat.S_ISDIR(mode):
        return EntryType.DIRECTORY
    if stat.S_ISREG(mode):
        return EntryType.FILE
    return EntryType.OTHER


def identity_of(path: Path) -> FileIdentity:
    """Return the storage identity of ``path`` (device and inode of the entry itself)."""

    stat_result = path.lstat()
    return FileIdentity(device=stat_result.st_dev, inode=stat_result.st_ino)


def link_count(path: Path) -> int:
    return path.lstat().st_nlink


def hash_file(path: Path) -> str:
    """Return the hex SHA-256 of ``path`` contents."""

    hasher = sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def existing_ancestor(path: Path) -> Path:
    """Return ``path`` or its closest ancestor that exists on disk."""

    candidate = path
    while not candidate.exists() and candidate != candidate.parent:
        candidate = candidate.parent
    return candidate


def ensure_same_filesystem(source: Path, target: Path) -> None:
    """Raise ``CrossFilesystemLinkError`` when ``target`` would land on another device."""

    source_device = source.stat().st_dev
    target_device = existing_ancestor(target.parent).stat().st_dev
    if source_device != target_device:
        raise CrossFilesystemLinkError(source, target)


def create_hard_link(source: Path, target: Path) -> None:
    """Hard-link ``target`` to ``source``; ``target`` must not exist yet."""

    try:
        if detect_entry_type(source) is not EntryType.FILE:
            raise ConfigError(f"Source '{source}' is not a regular file")
        ensure_same_filesystem(source, target)
    except OSError as exc:
        raise LinkIOError(f"Cannot inspect '{source}' or '{target.parent}': {exc}") from exc

    try:
        os.link(source, target)
    except OSError as exc:
        if exc.errno == errno.EXDEV:
            raise CrossFilesystemLinkError(source, target) from exc
        raise LinkIOError(f"Failed to create hard link '{target}' -> '{source}': {exc}") from exc
    logger.debug("Linked %s -> %s", target, source)
