"""High level orchestration for prompt-sync commands."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable

from .audit import AuditLog
from .backup import BackupStore
from .config import Config
from .diskguard import DiskSpaceGuard
from .errors import ConfigError, FilesystemError, PromptSyncError
from .models import GroupHealth, LinkPair, Outcome, PairKind, PairResult, Report
from .pipeline import LinkPipeline
from .verifier import classify, group_health

logger = logging.getLogger(__name__)

PlanItem = LinkPair | PairResult
SkillRoot = tuple[str, Path, Path]


class SyncManager:
    """Expands the configuration into link pairs and runs commands over them.

    Pairs are processed one at a time in configuration order: every
    ``[[links]]`` group first, then every ``[[skills_sets]]`` group. A failure
    on one pair is recorded in the report and the next pair still runs.
    """

    def __init__(
        self,
        config: Config,
        *,
        backup_dir: Path | None = None,
        guard: DiskSpaceGuard | None = None,
        store: BackupStore | None = None,
    ) -> None:
        self.config = config
        settings = config.settings
        directory = backup_dir or settings.backup_dir
        self.store = store or BackupStore(directory, max_versions=settings.max_backup_versions)
        self.audit = AuditLog(self.store.directory, size_limit=settings.log_size_limit)
        self.guard = guard or DiskSpaceGuard(headroom=settings.disk_headroom)
        self.pipeline = LinkPipeline(self.store, self.guard, self.audit)
        self._warnings: list[str] = []
        self._skill_roots: dict[SkillRoot, None] = {}
        self._pair_roots: dict[tuple[Path, Path], list[SkillRoot]] = {}

    def pairs(self) -> list[LinkPair]:
        """Return every configured pair, deduplicated, in processing order."""

        return [item for item in self._plan() if isinstance(item, LinkPair)]

    def verify(self) -> Report:
        return self._inspect_all("verify")

    def status(self) -> Report:
        return self._inspect_all("status")

    def link(self, *, force: bool = False, only_missing: bool = False, dry_run: bool = False) -> Report:
        return self._run(
            "link",
            lambda pair: self.pipeline.link(pair, force=force, only_missing=only_missing, dry_run=dry_run),
        )

    def repair(self, *, force: bool = False, dry_run: bool = False) -> Report:
        return self._run("repair", lambda pair: self.pipeline.repair(pair, force=force, dry_run=dry_run))

    def pull_warnings(self) -> list[str]:
        messages = list(self._warnings)
        self._warnings.clear()
        return messages

    # ------------------------------------------------------------------
    # Internal helpers

    def _run(self, command: str, action: Callable[[LinkPair], PairResult]) -> Report:
        self._warnings.clear()
        results: list[PairResult] = []
        for item in self._plan():
            if isinstance(item, PairResult):
                results.append(item)
                continue
            result = action(item)
            if result.status is Outcome.ERROR:
                logger.warning("%s %s: %s", command, item.target, result.details)
            self._warnings.extend(result.warnings)
            results.append(result)
        return Report(command=command, results=tuple(results), warnings=tuple(self.pull_warnings()))

    def _inspect_all(self, command: str) -> Report:
        self._warnings.clear()
        results: list[PairResult] = []
        for item in self._plan():
            results.append(item if isinstance(item, PairResult) else _inspect(item))
        return Report(
            command=command,
            results=tuple(results),
            groups=self._group_health(results),
            warnings=tuple(self.pull_warnings()),
        )

    def _plan(self) -> list[PlanItem]:
        items: list[PlanItem] = []
        seen: set[tuple[Path, Path]] = set()
        self._skill_roots.clear()
        self._pair_roots.clear()

        def add(pair: LinkPair) -> None:
            key = (pair.source, pair.target)
            if key in seen:
                return
            seen.add(key)
            items.append(pair)

        for index, spec in enumerate(self.config.links):
            group = f"links[{index}]"
            for target in spec.targets:
                add(LinkPair(PairKind.CONFIG_FILE, spec.source, target, group))

        for index, skill_set in enumerate(self.config.skills_sets):
            group = f"skills_sets[{index}]"
            source_root = skill_set.source_root
            if not source_root.exists():
                message = f"skills source_root '{source_root}' does not exist; skipped"
                logger.warning(message)
                self._warnings.append(message)
                continue
            if not source_root.is_dir():
                error = ConfigError(f"skills source_root '{source_root}' is not a directory")
                for target_root in skill_set.target_roots:
                    pair = LinkPair(PairKind.SKILL_FILE, source_root, target_root, group)
                    items.append(PairResult(pair, Outcome.ERROR, str(error), error_kind=error.kind))
                continue

            try:
                files = _walk_files(source_root)
            except OSError as exc:
                error = FilesystemError(f"Cannot read skills source_root '{source_root}': {exc}")
                for target_root in skill_set.target_roots:
                    pair = LinkPair(PairKind.SKILL_FILE, source_root, target_root, group)
                    items.append(PairResult(pair, Outcome.ERROR, str(error), error_kind=error.kind))
                continue

            for target_root in skill_set.target_roots:
                root: SkillRoot = (group, source_root, target_root)
                self._skill_roots[root] = None
                for source_file in files:
                    target = target_root / source_file.relative_to(source_root)
                    pair = LinkPair(PairKind.SKILL_FILE, source_file, target, group)
                    roots = self._pair_roots.setdefault((source_file, target), [])
                    if root not in roots:
                        roots.append(root)
                    add(pair)

        return items

    def _group_health(self, results: list[PairResult]) -> tuple[GroupHealth, ...]:
        rollup: dict[SkillRoot, list[Outcome]] = {root: [] for root in self._skill_roots}
        for result in results:
            for root in self._pair_roots.get((result.pair.source, result.pair.target), ()):
                rollup[root].append(result.status)
        return tuple(
            GroupHealth(
                group=group,
                source_root=source_root,
                target_root=target_root,
                status=group_health(statuses),
                files=len(statuses),
            )
            for (group, source_root, target_root), statuses in rollup.items()
        )


def _inspect(pair: LinkPair) -> PairResult:
    try:
        state = classify(pair.source, pair.target)
    except PromptSyncError as exc:
        return PairResult(pair, Outcome.ERROR, str(exc), error_kind=exc.kind)
    except OSError as exc:
        error = FilesystemError(f"Cannot inspect '{pair.target}': {exc}")
        return PairResult(pair, Outcome.ERROR, str(error), error_kind=error.kind)
    return PairResult(pair, Outcome.from_state(state.status), state.details)


def _walk_files(root: Path) -> list[Path]:
    """Return regular files below ``root`` in a stable order."""

    def raise_error(exc: OSError) -> None:
        raise exc

    files: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, onerror=raise_error):
        dirnames.sort()
        base = Path(dirpath)
        for name in sorted(filenames):
            candidate = base / name
            if candidate.is_file() and not candidate.is_symlink():
                files.append(candidate)
    return files
