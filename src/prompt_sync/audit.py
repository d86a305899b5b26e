"""JSON audit log of link operations.

The log is a single JSON array. Every ``record`` reads the whole array,
appends one entry, and rewrites the file through a temporary file and
``os.replace``. That costs O(log size) per write but a crash can never leave
a half-appended entry; the size-based rotation keeps the cost bounded.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import LogWriteError

logger = logging.getLogger(__name__)

LOG_FILE_NAME = ".operations.log"
ROTATED_SUFFIX = ".1"
DEFAULT_SIZE_LIMIT = 1024 * 1024


class AuditAction(str, Enum):
    CREATE = "create"
    REPLACE = "replace"


class AuditStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditEntry(BaseModel):
    """One logged operation against a (source, target) pair."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    timestamp: str = Field(default_factory=_utc_now)
    action: AuditAction
    source: str
    target: str
    status: AuditStatus
    hash_before: str | None = None
    backup_location: str | None = None
    error: str | None = None


_ENTRIES = TypeAdapter(list[AuditEntry])


class AuditLog:
    """Read-modify-rewrite log stored inside the backup directory."""

    def __init__(self, directory: Path, size_limit: int = DEFAULT_SIZE_LIMIT) -> None:
        self.directory = directory
        self.size_limit = size_limit
        self.path = directory / LOG_FILE_NAME
        self.rotated_path = directory / f"{LOG_FILE_NAME}{ROTATED_SUFFIX}"
        self._warnings: list[str] = []

    def record(self, entry: AuditEntry) -> None:
        """Add ``entry`` to the log, rotating first if the log is over the size limit.

        Raises ``LogWriteError`` if the log cannot be rotated or written.
        """

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LogWriteError(f"Cannot create audit log directory '{self.directory}': {exc}") from exc

        if self._needs_rotation():
            self._rotate()
            entries: list[AuditEntry] = []
        else:
            entries = self._load()

        entries.append(entry)
        self._write(entries)

    def entries(self) -> list[AuditEntry]:
        """Return the entries currently in the log (not the rotated file)."""

        return self._load()

    def pull_warnings(self) -> list[str]:
        messages = list(self._warnings)
        self._warnings.clear()
        return messages

    def _needs_rotation(self) -> bool:
        try:
            return self.path.stat().st_size > self.size_limit
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise LogWriteError(f"Cannot inspect audit log '{self.path}': {exc}") from exc

    def _rotate(self) -> None:
        try:
            os.replace(self.path, self.rotated_path)
        except OSError as exc:
            raise LogWriteError(f"Cannot rotate audit log '{self.path}': {exc}") from exc
        logger.info("Rotated audit log to %s", self.rotated_path)

    def _load(self) -> list[AuditEntry]:
        if not self.path.exists():
            return []
        try:
            return _ENTRIES.validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as exc:
            message = f"Audit log '{self.path}' is unreadable; starting a new log ({exc.__class__.__name__})"
            logger.warning(message)
            self._warnings.append(message)
            return []

    def _write(self, entries: list[AuditEntry]) -> None:
        payload = _ENTRIES.dump_json(entries, indent=2)
        try:
            fd, temp_name = tempfile.mkstemp(prefix=f"{LOG_FILE_NAME}.tmp-", dir=self.directory)
        except OSError as exc:
            raise LogWriteError(f"Cannot write audit log '{self.path}': {exc}") from exc
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(temp_path, self.path)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise LogWriteError(f"Cannot write audit log '{self.path}': {exc}") from exc
