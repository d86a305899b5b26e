"""Safe replacement of a single target with a hard link to its source.

A replacement runs these stages in order and stops at the first failure::

    DISK_CHECK -> BACKUP -> REMOVE_TARGET -> CREATE_LINK -> VERIFY_IDENTITY -> LOG

Nothing is written before BACKUP, so a failed disk check or backup leaves the
target untouched. A failure at CREATE_LINK keeps the backup. If the process
is interrupted between REMOVE_TARGET and CREATE_LINK the target is gone but
its backup is in the backup directory for a manual restore.

The backup directory and its audit log are assumed to be used by one
invocation at a time. There is no file locking; two concurrent runs against
the same backup directory may interleave rotations and lose log entries.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .audit import AuditAction, AuditEntry, AuditLog, AuditStatus
from .backup import BackupStore
from .diskguard import DiskSpaceGuard
from .errors import ConfigError, ConflictRefusal, HashError, LinkIOError, LogWriteError, PromptSyncError
from .filesystem import create_hard_link, detect_entry_type, ensure_parent, ensure_same_filesystem
from .models import BackupRecord, EntryType, LinkPair, LinkPairState, LinkState, Outcome, PairKind, PairResult
from .verifier import classify

logger = logging.getLogger(__name__)


class LinkPipeline:
    """Drives link and repair decisions for one pair at a time."""

    def __init__(self, store: BackupStore, guard: DiskSpaceGuard, audit: AuditLog) -> None:
        self.store = store
        self.guard = guard
        self.audit = audit

    @property
    def backup_dir(self) -> Path:
        return self.store.directory

    def link(
        self,
        pair: LinkPair,
        *,
        force: bool = False,
        only_missing: bool = False,
        dry_run: bool = False,
    ) -> PairResult:
        current = self._inspect(pair)
        if isinstance(current, PairResult):
            return current

        if current.status is LinkState.OK:
            return PairResult(pair, Outcome.SKIPPED, "already linked")
        if current.status is LinkState.MISSING:
            return self._create(pair, dry_run=dry_run)
        if only_missing:
            return PairResult(pair, Outcome.SKIPPED, "skipped by --only-missing")
        if current.status is LinkState.CONFLICT and not force:
            refusal = ConflictRefusal(f"Target '{pair.target}' exists and differs from the source (use --force)")
            return _error(pair, refusal)
        return self._replace(pair, dry_run=dry_run)

    def repair(self, pair: LinkPair, *, force: bool = False, dry_run: bool = False) -> PairResult:
        current = self._inspect(pair)
        if isinstance(current, PairResult):
            return current

        if current.status is LinkState.OK:
            return PairResult(pair, Outcome.SKIPPED, "already healthy")
        if current.status is LinkState.MISSING:
            return self._create(pair, dry_run=dry_run)
        if current.status is LinkState.CONFLICT and not force:
            return PairResult(
                pair,
                Outcome.SKIPPED,
                "conflict skipped (use --force to override)",
                error_kind=ConflictRefusal.kind,
            )
        return self._replace(pair, dry_run=dry_run)

    # ------------------------------------------------------------------
    # Stages

    def _inspect(self, pair: LinkPair) -> LinkPairState | PairResult:
        try:
            if pair.kind is PairKind.CONFIG_FILE:
                _refuse_directories(pair)
            return classify(pair.source, pair.target)
        except PromptSyncError as exc:
            return _error(pair, exc)
        except OSError as exc:
            return _error(pair, LinkIOError(f"Cannot inspect '{pair.target}': {exc}"))

    def _create(self, pair: LinkPair, *, dry_run: bool) -> PairResult:
        if dry_run:
            return PairResult(pair, Outcome.WOULD_CREATE, "would create hardlink")

        try:
            try:
                ensure_parent(pair.target)
            except OSError as exc:
                raise LinkIOError(f"Failed to create parent directory for '{pair.target}': {exc}") from exc
            create_hard_link(pair.source, pair.target)
        except PromptSyncError as exc:
            warnings = self._log(AuditAction.CREATE, pair, AuditStatus.FAILED, error=str(exc))
            return _error(pair, exc, warnings=warnings)

        logger.info("Created hard link %s -> %s", pair.target, pair.source)
        return self._finish(pair, AuditAction.CREATE, Outcome.CREATED, "created hardlink")

    def _replace(self, pair: LinkPair, *, dry_run: bool) -> PairResult:
        target = pair.target
        action = AuditAction.REPLACE

        try:
            entry_type = detect_entry_type(target)
            if entry_type is EntryType.DIRECTORY:
                raise LinkIOError(f"Target '{target}' is a directory; refusing to replace it")
            ensure_same_filesystem(pair.source, target)
            estimated = target.lstat().st_size if entry_type is EntryType.FILE else 0
            logger.debug("DISK_CHECK %s (%d bytes)", target, estimated)
            self.guard.check(self.backup_dir, estimated)
        except OSError as exc:
            return self._fail(pair, action, LinkIOError(f"Cannot inspect '{target}': {exc}"), dry_run=dry_run)
        except PromptSyncError as exc:
            return self._fail(pair, action, exc, dry_run=dry_run)

        if dry_run:
            return PairResult(pair, Outcome.WOULD_REPLACE, "would replace target with hardlink")

        backup: BackupRecord | None = None
        if entry_type is EntryType.FILE:
            logger.debug("BACKUP %s", target)
            try:
                backup = self.store.backup(target)
            except HashError as exc:
                return self._fail(pair, action, exc, backup_location=exc.backup_path)
            except PromptSyncError as exc:
                return self._fail(pair, action, exc)

        hash_before = backup.sha256_hex if backup else None
        backup_location = backup.backup_path if backup else None

        logger.debug("REMOVE_TARGET %s", target)
        try:
            target.unlink()
        except OSError as exc:
            error = LinkIOError(f"Failed to remove existing target '{target}': {exc}")
            return self._fail(pair, action, error, hash_before=hash_before, backup_location=backup_location)

        logger.debug("CREATE_LINK %s -> %s", target, pair.source)
        try:
            create_hard_link(pair.source, target)
        except PromptSyncError as exc:
            return self._fail(
                pair, action, exc, hash_before=hash_before, backup_location=backup_location, backup=backup
            )

        logger.info("Replaced %s with hard link to %s", target, pair.source)
        return self._finish(
            pair,
            action,
            Outcome.REPLACED,
            "replaced target with hardlink",
            hash_before=hash_before,
            backup=backup,
        )

    def _finish(
        self,
        pair: LinkPair,
        action: AuditAction,
        outcome: Outcome,
        details: str,
        *,
        hash_before: str | None = None,
        backup: BackupRecord | None = None,
    ) -> PairResult:
        warnings = self._verify_identity(pair)
        status = AuditStatus.WARNING if warnings else AuditStatus.SUCCESS
        warnings += self._log(
            action,
            pair,
            status,
            error="; ".join(warnings) or None,
            hash_before=hash_before,
            backup_location=backup.backup_path if backup else None,
        )
        return PairResult(pair, outcome, details, backup=backup, warnings=tuple(warnings))

    def _fail(
        self,
        pair: LinkPair,
        action: AuditAction,
        exc: PromptSyncError,
        *,
        dry_run: bool = False,
        hash_before: str | None = None,
        backup_location: Path | None = None,
        backup: BackupRecord | None = None,
    ) -> PairResult:
        logger.warning("Replacing %s failed: %s", pair.target, exc)
        warnings: list[str] = []
        if not dry_run:
            warnings = self._log(
                action,
                pair,
                AuditStatus.FAILED,
                error=str(exc),
                hash_before=hash_before,
                backup_location=backup_location,
            )
        return _error(pair, exc, backup=backup, warnings=warnings)

    def _verify_identity(self, pair: LinkPair) -> list[str]:
        try:
            after = classify(pair.source, pair.target)
        except (PromptSyncError, OSError) as exc:
            return [f"link created but post-check failed: {exc}"]
        if after.status is not LinkState.OK:
            return [f"link created but post-check reports {after.status.value}: {after.details}"]
        return []

    def _log(
        self,
        action: AuditAction,
        pair: LinkPair,
        status: AuditStatus,
        *,
        error: str | None = None,
        hash_before: str | None = None,
        backup_location: Path | None = None,
    ) -> list[str]:
        entry = AuditEntry(
            action=action,
            source=str(pair.source),
            target=str(pair.target),
            status=status,
            hash_before=hash_before,
            backup_location=str(backup_location) if backup_location else None,
            error=error,
        )
        try:
            self.audit.record(entry)
        except LogWriteError as exc:
            logger.warning("%s", exc)
            return [*self.audit.pull_warnings(), str(exc)]
        return self.audit.pull_warnings()


def _refuse_directories(pair: LinkPair) -> None:
    if pair.source.is_dir():
        raise ConfigError(f"Source '{pair.source}' is a directory; use a skills_sets group for directories")
    if pair.target.is_dir():
        raise ConfigError(f"Target '{pair.target}' is a directory; links groups only manage files")


def _error(
    pair: LinkPair,
    exc: PromptSyncError,
    *,
    backup: BackupRecord | None = None,
    warnings: list[str] | tuple[str, ...] = (),
) -> PairResult:
    return PairResult(
        pair,
        Outcome.ERROR,
        str(exc),
        error_kind=exc.kind,
        backup=backup,
        warnings=tuple(warnings),
    )
