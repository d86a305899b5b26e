"""TOML configuration loading for prompt-sync."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .audit import DEFAULT_SIZE_LIMIT
from .backup import DEFAULT_MAX_VERSIONS
from .diskguard import DEFAULT_HEADROOM
from .errors import ConfigError

DEFAULT_CONFIG_FILENAME = "prompt-sync.toml"
DEFAULT_BACKUP_DIR = "~/.prompt-sync/backups"
HOME_TOKEN = "<home>"
REPO_TOKEN = "<repo>"


def find_repo_root(start: Path | None = None) -> Path:
    """Return the nearest directory at or above ``start`` holding ``.git``.

    Falls back to ``start`` (the current directory by default) outside a repository.
    """

    origin = (start or Path.cwd()).resolve(strict=False)
    for candidate in (origin, *origin.parents):
        if (candidate / ".git").exists():
            return candidate
    return origin


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path, repo_root: Path) -> Path:
    """Return an absolute ``Path`` after expanding placeholders, env vars and ``~``."""

    text = str(raw)
    if REPO_TOKEN in text:
        text = text.replace(REPO_TOKEN, str(repo_root))
    if HOME_TOKEN in text:
        text = text.replace(HOME_TOKEN, str(Path.home()))
    expanded = Path(os.path.expandvars(text)).expanduser()
    if expanded.is_absolute():
        return Path(os.path.normpath(expanded))
    return Path(os.path.normpath(base_dir / expanded))


class Settings(BaseModel):
    """Global configuration options."""

    model_config = ConfigDict(frozen=True)

    backup_dir: Path
    max_backup_versions: int = Field(default=DEFAULT_MAX_VERSIONS, ge=1)
    log_size_limit: int = Field(default=DEFAULT_SIZE_LIMIT, ge=0)
    disk_headroom: float = Field(default=DEFAULT_HEADROOM, ge=1.0)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path, repo_root: Path) -> "Settings":
        backup_dir = _expand_path(raw.get("backup_dir", DEFAULT_BACKUP_DIR), base_dir=base_dir, repo_root=repo_root)
        options = {key: raw[key] for key in ("max_backup_versions", "log_size_limit", "disk_headroom") if key in raw}
        return cls(backup_dir=backup_dir, **options)


class LinkSpec(BaseModel):
    """A source file hard-linked at every one of ``targets``."""

    model_config = ConfigDict(frozen=True)

    source: Path
    targets: tuple[Path, ...]

    @classmethod
    def from_raw(cls, index: int, raw: Mapping[str, Any], *, base_dir: Path, repo_root: Path) -> "LinkSpec":
        if not isinstance(raw, Mapping):
            raise ConfigError(f"links[{index}] must be a table ([[links]])")
        source_raw = raw.get("source")
        if not source_raw:
            raise ConfigError(f"links[{index}] must define a 'source'")
        targets_raw = raw.get("targets", [])
        if not isinstance(targets_raw, list):
            raise ConfigError(f"links[{index}].targets must be a list of paths")
        return cls(
            source=_expand_path(source_raw, base_dir=base_dir, repo_root=repo_root),
            targets=tuple(_expand_path(target, base_dir=base_dir, repo_root=repo_root) for target in targets_raw),
        )


class SkillSetSpec(BaseModel):
    """A directory whose files are mirrored under every one of ``target_roots``."""

    model_config = ConfigDict(frozen=True)

    source_root: Path
    target_roots: tuple[Path, ...]

    @classmethod
    def from_raw(cls, index: int, raw: Mapping[str, Any], *, base_dir: Path, repo_root: Path) -> "SkillSetSpec":
        if not isinstance(raw, Mapping):
            raise ConfigError(f"skills_sets[{index}] must be a table ([[skills_sets]])")
        source_raw = raw.get("source_root")
        if not source_raw:
            raise ConfigError(f"skills_sets[{index}] must define a 'source_root'")
        roots_raw = raw.get("target_roots", [])
        if not isinstance(roots_raw, list):
            raise ConfigError(f"skills_sets[{index}].target_roots must be a list of paths")
        return cls(
            source_root=_expand_path(source_raw, base_dir=base_dir, repo_root=repo_root),
            target_roots=tuple(_expand_path(root, base_dir=base_dir, repo_root=repo_root) for root in roots_raw),
        )


class Config(BaseModel):
    """Fully parsed configuration file."""

    model_config = ConfigDict(frozen=True)

    config_path: Path
    settings: Settings
    links: tuple[LinkSpec, ...] = ()
    skills_sets: tuple[SkillSetSpec, ...] = ()


def load_config(path: Path | None = None, *, repo_root: Path | None = None) -> Config:
    """Load and validate a configuration file.

    Args:
        path: Optional path to the TOML file, or a directory containing
            ``prompt-sync.toml``. Defaults to ``prompt-sync.toml`` in the current
            working directory.
        repo_root: Value for the ``<repo>`` placeholder. Defaults to the git
            work tree containing the current directory.
    """

    config_path = _resolve_config_path(path)
    base_dir = config_path.parent
    repo_root = repo_root or find_repo_root()

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in '{config_path}': {exc}") from exc

    links_raw = data.get("links", [])
    skills_raw = data.get("skills_sets", [])
    if not isinstance(links_raw, list) or not isinstance(skills_raw, list):
        raise ConfigError("'links' and 'skills_sets' must be arrays of tables ([[links]], [[skills_sets]])")
    settings_raw = data.get("settings", {})
    if not isinstance(settings_raw, Mapping):
        raise ConfigError("'settings' must be a table ([settings])")

    try:
        settings = Settings.from_raw(settings_raw, base_dir=base_dir, repo_root=repo_root)
        links = tuple(
            LinkSpec.from_raw(index, raw, base_dir=base_dir, repo_root=repo_root) for index, raw in enumerate(links_raw)
        )
        skills_sets = tuple(
            SkillSetSpec.from_raw(index, raw, base_dir=base_dir, repo_root=repo_root)
            for index, raw in enumerate(skills_raw)
        )
        return Config(config_path=config_path, settings=settings, links=links, skills_sets=skills_sets)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in '{config_path}': {exc}") from exc


def _resolve_config_path(path: Path | None) -> Path:
    if path is None:
        path = Path.cwd() / DEFAULT_CONFIG_FILENAME
    else:
        path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' does not exist")
    if path.is_dir():
        candidate = path / DEFAULT_CONFIG_FILENAME
        if not candidate.exists():
            raise ConfigError(f"Expected to find '{DEFAULT_CONFIG_FILENAME}' inside '{path}', but none was located")
        path = candidate

    return path.resolve(strict=False)


class Profile(str, Enum):
    """AI tools with well-known instruction and skills locations."""

    CODEX = "codex"
    CLAUDE = "claude"
    GEMINI = "gemini"
    COPILOT = "copilot"


_PROFILE_TARGETS: dict[Profile, tuple[str, ...]] = {
    Profile.CODEX: ("~/.codex/AGENTS.md",),
    Profile.CLAUDE: ("~/.claude/CLAUDE.md",),
    Profile.GEMINI: ("~/.gemini/GEMINI.md",),
    Profile.COPILOT: (f"{REPO_TOKEN}/.github/copilot-instructions.md",),
}

_PROFILE_SKILL_ROOTS: dict[Profile, tuple[str, ...]] = {
    Profile.CODEX: (),
    Profile.CLAUDE: ("~/.claude/skills",),
    Profile.GEMINI: ("~/.gemini/skills",),
    Profile.COPILOT: ("~/.copilot/skills", f"{REPO_TOKEN}/.github/skills"),
}


def build_default_config(profiles: Iterable[Profile] | None = None) -> dict[str, Any]:
    """Return the starter configuration written by ``prompt-sync init``."""

    selected = set(profiles or Profile)
    ordered = [profile for profile in Profile if profile in selected]

    targets = [target for profile in ordered for target in _PROFILE_TARGETS[profile]]
    skill_roots = [root for profile in ordered for root in _PROFILE_SKILL_ROOTS[profile]]
    legacy_roots = [
        root
        for profile in ordered
        if profile in (Profile.CLAUDE, Profile.GEMINI)
        for root in _PROFILE_SKILL_ROOTS[profile]
    ]

    data: dict[str, Any] = {
        "settings": {
            "backup_dir": DEFAULT_BACKUP_DIR,
            "max_backup_versions": DEFAULT_MAX_VERSIONS,
        },
        "links": [{"source": "~/.ai_settings/master.md", "targets": targets}],
    }

    skills_sets = []
    if skill_roots:
        skills_sets.append({"source_root": "~/.agents/skills", "target_roots": skill_roots})
    if legacy_roots:
        skills_sets.append({"source_root": "~/.codex/skills", "target_roots": legacy_roots})
    if skills_sets:
        data["skills_sets"] = skills_sets
    return data
