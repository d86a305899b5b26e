"""Exception hierarchy for prompt-sync."""

from __future__ import annotations

from pathlib import Path


class PromptSyncError(RuntimeError):
    """Base class for every error prompt-sync reports for a link pair."""

    kind = "error"


class ConfigError(PromptSyncError):
    """Raised when configuration is invalid or points at unusable paths."""

    kind = "config_invalid"


class InsufficientSpaceError(PromptSyncError):
    """Raised when the backup filesystem cannot hold the backup about to be taken."""

    kind = "insufficient_space"

    def __init__(self, directory: Path, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient disk space in '{directory}': required={required} bytes, available={available} bytes"
        )
        self.directory = directory
        self.required = required
        self.available = available


class FilesystemError(PromptSyncError):
    """Raised when a copy, remove, or link syscall fails."""

    kind = "io_error"


class BackupIOError(FilesystemError):
    """Raised when the backup copy cannot be written."""


class LinkIOError(FilesystemError):
    """Raised when the target cannot be removed or linked."""


class CrossFilesystemLinkError(PromptSyncError):
    """Raised when a hard link would have to cross a device boundary."""

    kind = "cross_filesystem_link"

    def __init__(self, source: Path, target: Path) -> None:
        super().__init__(
            f"Cannot hard-link '{target}' to '{source}' across filesystems. "
            "Move the source and target onto the same filesystem, or use a non-hardlink strategy "
            "(for example a symlink) for this target."
        )
        self.source = source
        self.target = target


class HashError(PromptSyncError):
    """Raised when the digest of a completed backup copy cannot be computed."""

    kind = "hash_error"

    def __init__(self, backup_path: Path, reason: str) -> None:
        super().__init__(f"Backup '{backup_path}' was written but could not be hashed: {reason}")
        self.backup_path = backup_path


class ConflictRefusal(PromptSyncError):
    """Raised when a target holds independent content and --force was not given."""

    kind = "conflict_refusal"


class LogWriteError(PromptSyncError):
    """Raised when the audit log cannot be written. Never fatal to a replacement."""

    kind = "log_write_failure"
