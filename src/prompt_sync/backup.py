"""Timestamped, hashed, rotated backups of replaced targets."""

from __future__ import annotations

import logging
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from pydantic import BaseModel, ConfigDict

from .errors import BackupIOError, HashError
from .filesystem import hash_file
from .models import BackupRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_VERSIONS = 100
BACKUP_SUFFIX = ".bak"
METADATA_SUFFIX = ".sha256"


class BackupMetadata(BaseModel):
    """Contents of the ``.sha256`` sidecar written next to every backup."""

    model_config = ConfigDict(frozen=True)

    algorithm: str = "sha256"
    hash: str
    size_bytes: int
    timestamp: str


@dataclass(frozen=True, slots=True)
class BackupVersion:
    """One retained version of a logical file; either artifact may be missing."""

    timestamp: int
    sequence: int
    backup_path: Path
    metadata_path: Path

    def sort_key(self) -> tuple[int, int]:
        return (self.timestamp, self.sequence)


class BackupStore:
    """Stores backups for every logical file (target basename) in one directory."""

    def __init__(
        self,
        directory: Path,
        max_versions: int = DEFAULT_MAX_VERSIONS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_versions < 1:
            raise ValueError("max_versions must be at least 1")
        self.directory = directory
        self.max_versions = max_versions
        self._clock = clock

    def backup(self, path: Path) -> BackupRecord:
        """Copy ``path`` into the store, record its digest, and rotate old versions."""

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupIOError(f"Failed to create backup directory '{self.directory}': {exc}") from exc

        basename = path.name
        timestamp = int(self._clock())
        try:
            stem = self._next_stem(basename, timestamp)
        except OSError as exc:
            raise BackupIOError(f"Failed to list backup directory '{self.directory}': {exc}") from exc
        backup_path = self.directory / f"{stem}{BACKUP_SUFFIX}"
        metadata_path = self.directory / f"{stem}{METADATA_SUFFIX}"

        try:
            shutil.copy2(path, backup_path)
        except OSError as exc:
            backup_path.unlink(missing_ok=True)
            raise BackupIOError(f"Failed to copy '{path}' to backup '{backup_path}': {exc}") from exc

        # Digest of the stored copy, not of the original.
        try:
            digest = hash_file(backup_path)
            size = backup_path.stat().st_size
        except OSError as exc:
            raise HashError(backup_path, str(exc)) from exc

        metadata = BackupMetadata(
            hash=digest,
            size_bytes=size,
            timestamp=datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(),
        )
        try:
            metadata_path.write_text(metadata.model_dump_json(indent=2))
        except OSError as exc:
            raise HashError(backup_path, f"could not write '{metadata_path}': {exc}") from exc

        logger.info("Backed up %s to %s (sha256=%s)", path, backup_path, digest)
        self.rotate(basename)

        return BackupRecord(
            original_path=path,
            backup_path=backup_path,
            metadata_path=metadata_path,
            timestamp=timestamp,
            sha256_hex=digest,
            size_bytes=size,
        )

    def versions(self, basename: str) -> list[BackupVersion]:
        """Return retained versions of ``basename``, oldest first."""

        if not self.directory.is_dir():
            return []

        pattern = re.compile(
            rf"^{re.escape(basename)}-(?P<ts>\d+)(?:_(?P<seq>\d+))?"
            rf"(?P<ext>{re.escape(BACKUP_SUFFIX)}|{re.escape(METADATA_SUFFIX)})$"
        )
        found: dict[tuple[int, int], BackupVersion] = {}
        for child in self.directory.iterdir():
            match = pattern.match(child.name)
            if match is None:
                continue
            timestamp = int(match.group("ts"))
            sequence = int(match.group("seq") or 0)
            stem = child.name[: -len(match.group("ext"))]
            found.setdefault(
                (timestamp, sequence),
                BackupVersion(
                    timestamp=timestamp,
                    sequence=sequence,
                    backup_path=self.directory / f"{stem}{BACKUP_SUFFIX}",
                    metadata_path=self.directory / f"{stem}{METADATA_SUFFIX}",
                ),
            )
        return sorted(found.values(), key=BackupVersion.sort_key)

    def rotate(self, basename: str) -> list[BackupVersion]:
        """Delete the oldest versions of ``basename`` beyond ``max_versions``.

        Returns the versions that were removed. A missing half of a pair or a
        failed deletion is logged and does not stop the remaining deletions.
        """

        try:
            versions = self.versions(basename)
        except OSError as exc:
            logger.warning("Could not list backups of %s for rotation: %s", basename, exc)
            return []
        excess = len(versions) - self.max_versions
        if excess <= 0:
            return []

        removed: list[BackupVersion] = []
        for version in versions[:excess]:
            for artifact in (version.backup_path, version.metadata_path):
                try:
                    artifact.unlink()
                except FileNotFoundError:
                    logger.warning("Backup artifact '%s' already missing during rotation", artifact)
                except OSError as exc:
                    logger.warning("Could not delete backup artifact '%s': %s", artifact, exc)
            removed.append(version)
        logger.debug("Rotated %d old backup(s) of %s", len(removed), basename)
        return removed

    def _next_stem(self, basename: str, timestamp: int) -> str:
        same_second = [version.sequence for version in self.versions(basename) if version.timestamp == timestamp]
        if not same_second:
            return f"{basename}-{timestamp}"
        return f"{basename}-{timestamp}_{max(same_second) + 1}"
