"""Core package for the prompt-sync project."""

from .audit import AuditEntry, AuditLog
from .backup import BackupStore
from .cli import app, run
from .config import Config, LinkSpec, Settings, SkillSetSpec, load_config
from .diskguard import DiskSpaceGuard
from .errors import (
    BackupIOError,
    ConfigError,
    ConflictRefusal,
    CrossFilesystemLinkError,
    FilesystemError,
    HashError,
    InsufficientSpaceError,
    LinkIOError,
    LogWriteError,
    PromptSyncError,
)
from .manager import SyncManager
from .models import (
    BackupRecord,
    LinkPair,
    LinkPairState,
    LinkState,
    Outcome,
    PairKind,
    PairResult,
    Report,
)
from .pipeline import LinkPipeline
from .verifier import classify

__all__ = [
    "AuditEntry",
    "AuditLog",
    "BackupStore",
    "Config",
    "LinkSpec",
    "Settings",
    "SkillSetSpec",
    "load_config",
    "DiskSpaceGuard",
    "BackupIOError",
    "ConfigError",
    "ConflictRefusal",
    "CrossFilesystemLinkError",
    "FilesystemError",
    "HashError",
    "InsufficientSpaceError",
    "LinkIOError",
    "LogWriteError",
    "PromptSyncError",
    "SyncManager",
    "BackupRecord",
    "LinkPair",
    "LinkPairState",
    "LinkState",
    "Outcome",
    "PairKind",
    "PairResult",
    "Report",
    "LinkPipeline",
    "classify",
    "app",
    "run",
]
