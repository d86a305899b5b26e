"""Shared models and enums for prompt-sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class EntryType(str, Enum):
    """Kinds of filesystem entries found at a path."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"


class PairKind(str, Enum):
    """Which configuration section a link pair was expanded from."""

    CONFIG_FILE = "config_file"
    SKILL_FILE = "skill_file"


class LinkState(str, Enum):
    """Observed state of a (source, target) pair."""

    OK = "OK"
    MISSING = "MISSING"
    BROKEN = "BROKEN"
    CONFLICT = "CONFLICT"


class Outcome(str, Enum):
    """Per-pair status reported by the commands."""

    OK = "OK"
    MISSING = "MISSING"
    BROKEN = "BROKEN"
    CONFLICT = "CONFLICT"
    CREATED = "CREATED"
    REPLACED = "REPLACED"
    WOULD_CREATE = "WOULD_CREATE"
    WOULD_REPLACE = "WOULD_REPLACE"
    SKIPPED = "SKIPPED"
    ERROR = "ERROR"

    @classmethod
    def from_state(cls, state: LinkState) -> "Outcome":
        return cls(state.value)


# Roll-up ordering for skill-set target roots; higher is worse.
SEVERITY: dict[Outcome, int] = {
    Outcome.OK: 0,
    Outcome.MISSING: 1,
    Outcome.BROKEN: 2,
    Outcome.CONFLICT: 3,
    Outcome.ERROR: 4,
}


@dataclass(frozen=True, slots=True)
class FileIdentity:
    """Opaque storage identity; only ever compared for equality."""

    device: int
    inode: int


@dataclass(frozen=True, slots=True)
class LinkPair:
    """One source file that should be hard-linked at one target path."""

    kind: PairKind
    source: Path
    target: Path
    group: str


@dataclass(frozen=True, slots=True)
class LinkPairState:
    """Classification of a pair at a single point in time."""

    source: Path
    target: Path
    status: LinkState
    details: str | None = None


@dataclass(frozen=True, slots=True)
class BackupRecord:
    """A copy of a file taken right before it was replaced."""

    original_path: Path
    backup_path: Path
    metadata_path: Path
    timestamp: int
    sha256_hex: str
    size_bytes: int


@dataclass(frozen=True, slots=True)
class PairResult:
    """Outcome of running a command against a single pair."""

    pair: LinkPair
    status: Outcome
    details: str | None = None
    error_kind: str | None = None
    backup: BackupRecord | None = None
    warnings: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "kind": self.pair.kind.value,
            "group": self.pair.group,
            "source": str(self.pair.source),
            "target": str(self.pair.target),
            "status": self.status.value,
        }
        if self.details is not None:
            payload["message"] = self.details
        if self.error_kind is not None:
            payload["error_kind"] = self.error_kind
        if self.backup is not None:
            payload["backup"] = str(self.backup.backup_path)
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


@dataclass(frozen=True, slots=True)
class GroupHealth:
    """Worst state across every file linked under one skill-set target root."""

    group: str
    source_root: Path
    target_root: Path
    status: Outcome
    files: int


@dataclass(frozen=True, slots=True)
class Summary:
    """Counts of each outcome within a report."""

    counts: dict[Outcome, int] = field(default_factory=dict)

    @classmethod
    def from_results(cls, results: tuple[PairResult, ...] | list[PairResult]) -> "Summary":
        counts = {outcome: 0 for outcome in Outcome}
        for result in results:
            counts[result.status] += 1
        return cls(counts=counts)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count(self, outcome: Outcome) -> int:
        return self.counts.get(outcome, 0)

    def has_inconsistency(self) -> bool:
        return any(self.count(outcome) for outcome in (Outcome.MISSING, Outcome.BROKEN, Outcome.CONFLICT))

    def has_error(self) -> bool:
        return self.count(Outcome.ERROR) > 0


@dataclass(frozen=True, slots=True)
class Report:
    """Everything a command produced, ready for rendering."""

    command: str
    results: tuple[PairResult, ...]
    groups: tuple[GroupHealth, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def summary(self) -> Summary:
        return Summary.from_results(self.results)

    def exit_code(self, *, include_inconsistency: bool) -> int:
        summary = self.summary
        if summary.has_error():
            return 2
        if include_inconsistency and summary.has_inconsistency():
            return 1
        return 0

    def to_payload(self) -> dict[str, object]:
        summary = self.summary
        return {
            "command": self.command,
            "summary": {"total": summary.total}
            | {outcome.value.lower(): summary.count(outcome) for outcome in Outcome},
            "records": [result.to_payload() for result in self.results],
            "groups": [
                {
                    "group": group.group,
                    "source_root": str(group.source_root),
                    "target_root": str(group.target_root),
                    "status": group.status.value,
                    "files": group.files,
                }
                for group in self.groups
            ],
            "warnings": list(self.warnings),
        }
