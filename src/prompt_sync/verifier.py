"""Classification of (source, target) pairs into link states."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from .errors import ConfigError
from .filesystem import detect_entry_type, identity_of, lexists, link_count
from .models import SEVERITY, EntryType, LinkPairState, LinkState, Outcome


def classify(source: Path, target: Path) -> LinkPairState:
    """Return the current ``LinkPairState`` for ``source`` and ``target``.

    Reads the filesystem on every call and never modifies it. A missing
    source, or one that is not a regular file, is a configuration problem
    and raises ``ConfigError`` rather than being reported as ``MISSING``.
    """

    if not lexists(source):
        raise ConfigError(f"Source path '{source}' does not exist")
    source_type = detect_entry_type(source)
    if source_type is EntryType.DIRECTORY:
        raise ConfigError(f"Source '{source}' is a directory; links groups require a regular file")
    if source_type is not EntryType.FILE:
        raise ConfigError(f"Source '{source}' is not a regular file")

    if not lexists(target):
        return _state(source, target, LinkState.MISSING, "target missing")

    target_type = detect_entry_type(target)

    if target_type is EntryType.SYMLINK:
        if not target.exists():
            return _state(source, target, LinkState.BROKEN, "target is a dangling symlink")
        return _state(source, target, LinkState.CONFLICT, "target is a symlink, not a hard link")

    if target_type is EntryType.DIRECTORY:
        return _state(source, target, LinkState.CONFLICT, "target is a directory")

    if target_type is not EntryType.FILE:
        return _state(source, target, LinkState.CONFLICT, "target exists but is not a regular file")

    if identity_of(source) == identity_of(target):
        return _state(source, target, LinkState.OK, "inode match")

    if target.lstat().st_size == 0:
        return _state(source, target, LinkState.BROKEN, "target is empty")

    if link_count(target) > 1:
        return _state(source, target, LinkState.BROKEN, "target is hard-linked to a different source")

    return _state(source, target, LinkState.CONFLICT, "target differs and is not linked")


def group_health(statuses: Iterable[Outcome]) -> Outcome:
    """Roll per-file outcomes up to the worst one; an empty group is healthy."""

    worst = Outcome.OK
    for status in statuses:
        if SEVERITY.get(status, 0) > SEVERITY.get(worst, 0):
            worst = status
    return worst


def _state(source: Path, target: Path, status: LinkState, details: str) -> LinkPairState:
    return LinkPairState(source=source, target=target, status=status, details=details)
