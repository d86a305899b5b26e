from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from prompt_sync.audit import LOG_FILE_NAME
from prompt_sync.config import DEFAULT_CONFIG_FILENAME, load_config
from prompt_sync.diskguard import DiskSpaceGuard
from prompt_sync.manager import SyncManager
from prompt_sync.models import Outcome, PairKind


def _write_config(project_dir: Path, body: str) -> Path:
    config_path = project_dir / DEFAULT_CONFIG_FILENAME
    config_path.write_text(body)
    return config_path


def _setup(tmp_path: Path) -> tuple[Path, Path, Path]:
    project_dir = tmp_path / "project"
    home = tmp_path / "home"
    project_dir.mkdir()
    home.mkdir()
    master = project_dir / "master.md"
    master.write_text("# master\n")
    return project_dir, home, master


def _manager(project_dir: Path, body: str, **kwargs) -> SyncManager:
    config_path = _write_config(project_dir, body)
    return SyncManager(load_config(config_path, repo_root=project_dir), **kwargs)


def _skills(project_dir: Path) -> Path:
    skills = project_dir / "skills"
    (skills / "review").mkdir(parents=True)
    (skills / "review" / "SKILL.md").write_text("review\n")
    (skills / "write.md").write_text("write\n")
    return skills


def test_link_creates_every_target_and_is_idempotent(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{home}/.codex/AGENTS.md", "{home}/.claude/CLAUDE.md"]
""",
    )

    report = manager.link()
    assert [result.status for result in report.results] == [Outcome.CREATED, Outcome.CREATED]
    assert os.path.samefile(home / ".codex" / "AGENTS.md", master)
    assert os.path.samefile(home / ".claude" / "CLAUDE.md", master)
    assert report.exit_code(include_inconsistency=False) == 0

    second = manager.link()
    assert [result.status for result in second.results] == [Outcome.SKIPPED, Outcome.SKIPPED]

    verify = manager.verify()
    assert [result.status for result in verify.results] == [Outcome.OK, Outcome.OK]
    assert verify.exit_code(include_inconsistency=True) == 0


def test_duplicate_pairs_are_processed_once(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{home}/AGENTS.md", "{home}/AGENTS.md"]

[[links]]
source = "{master}"
targets = ["{home}/AGENTS.md"]
""",
    )

    pairs = manager.pairs()

    assert len(pairs) == 1
    assert pairs[0].group == "links[0]"


def test_skill_sets_expand_to_files(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    skills = _skills(project_dir)
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{home}/AGENTS.md"]

[[skills_sets]]
source_root = "{skills}"
target_roots = ["{home}/.claude/skills", "{home}/.gemini/skills"]
""",
    )

    pairs = manager.pairs()

    assert [pair.kind for pair in pairs] == [PairKind.CONFIG_FILE] + [PairKind.SKILL_FILE] * 4
    assert [pair.target for pair in pairs[1:]] == [
        home / ".claude" / "skills" / "write.md",
        home / ".claude" / "skills" / "review" / "SKILL.md",
        home / ".gemini" / "skills" / "write.md",
        home / ".gemini" / "skills" / "review" / "SKILL.md",
    ]

    report = manager.link()
    assert all(result.status is Outcome.CREATED for result in report.results)
    assert os.path.samefile(home / ".gemini" / "skills" / "review" / "SKILL.md", skills / "review" / "SKILL.md")


def test_status_rolls_up_skill_roots(tmp_path: Path) -> None:
    project_dir, home, _master = _setup(tmp_path)
    skills = _skills(project_dir)
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[skills_sets]]
source_root = "{skills}"
target_roots = ["{home}/.claude/skills", "{home}/.gemini/skills"]
""",
    )
    manager.link()
    claude_skill = home / ".claude" / "skills" / "write.md"
    claude_skill.unlink()
    claude_skill.write_text("edited locally\n")

    report = manager.status()

    health = {group.target_root: group for group in report.groups}
    assert health[home / ".claude" / "skills"].status is Outcome.CONFLICT
    assert health[home / ".claude" / "skills"].files == 2
    assert health[home / ".gemini" / "skills"].status is Outcome.OK
    assert report.exit_code(include_inconsistency=True) == 1


def test_missing_skill_source_root_is_a_warning(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{home}/AGENTS.md"]

[[skills_sets]]
source_root = "{project_dir / 'no-skills'}"
target_roots = ["{home}/.claude/skills"]
""",
    )

    report = manager.link()

    assert [result.status for result in report.results] == [Outcome.CREATED]
    assert len(report.warnings) == 1
    assert "does not exist" in report.warnings[0]


def test_skill_source_root_file_is_an_error(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[skills_sets]]
source_root = "{master}"
target_roots = ["{home}/.claude/skills"]
""",
    )

    report = manager.verify()

    assert [result.status for result in report.results] == [Outcome.ERROR]
    assert report.results[0].error_kind == "config_invalid"
    assert report.exit_code(include_inconsistency=True) == 2


def test_failure_on_one_pair_does_not_stop_others(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    conflict = home / "AGENTS.md"
    conflict.write_text("legacy\n")
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{conflict}", "{home}/CLAUDE.md"]
""",
    )

    report = manager.link()

    assert [result.status for result in report.results] == [Outcome.ERROR, Outcome.CREATED]
    assert report.results[0].error_kind == "conflict_refusal"
    assert conflict.read_text() == "legacy\n"
    assert report.exit_code(include_inconsistency=False) == 2


def test_force_link_backs_up_into_configured_directory(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    conflict = home / "AGENTS.md"
    conflict.write_text("legacy\n")
    backups = tmp_path / "backups"
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{backups}"
max_backup_versions = 3

[[links]]
source = "{master}"
targets = ["{conflict}"]
""",
    )

    report = manager.link(force=True)

    (result,) = report.results
    assert result.status is Outcome.REPLACED
    assert result.backup is not None
    assert result.backup.backup_path.parent == backups
    assert manager.store.max_versions == 3
    entries = json.loads((backups / LOG_FILE_NAME).read_text())
    assert entries[0]["target"] == str(conflict)


def test_backup_dir_override(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    (home / "AGENTS.md").write_text("legacy\n")
    override = tmp_path / "override"
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{home}/AGENTS.md"]
""",
        backup_dir=override,
    )

    manager.link(force=True)

    assert len(list(override.glob("AGENTS.md-*.bak"))) == 1
    assert not (tmp_path / "backups").exists()


def test_repair_fixes_broken_and_skips_conflicts(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    broken = home / "CLAUDE.md"
    broken.symlink_to(home / "gone.md")
    conflict = home / "AGENTS.md"
    conflict.write_text("legacy\n")
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{conflict}", "{broken}", "{home}/GEMINI.md"]
""",
    )

    report = manager.repair()

    assert [result.status for result in report.results] == [Outcome.SKIPPED, Outcome.REPLACED, Outcome.CREATED]
    assert conflict.read_text() == "legacy\n"
    assert os.path.samefile(broken, master)
    assert manager.verify().exit_code(include_inconsistency=True) == 1


def test_zero_free_space_reports_error(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    conflict = home / "AGENTS.md"
    conflict.write_text("legacy\n")
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{conflict}"]
""",
        guard=DiskSpaceGuard(free_bytes=lambda _path: 0),
    )

    report = manager.link(force=True)

    assert report.results[0].error_kind == "insufficient_space"
    assert conflict.read_text() == "legacy\n"


def test_dry_run_link_reports_without_writing(tmp_path: Path) -> None:
    project_dir, home, master = _setup(tmp_path)
    (home / "AGENTS.md").write_text("legacy\n")
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[links]]
source = "{master}"
targets = ["{home}/AGENTS.md", "{home}/CLAUDE.md"]
""",
    )

    report = manager.link(force=True, dry_run=True)

    assert [result.status for result in report.results] == [Outcome.WOULD_REPLACE, Outcome.WOULD_CREATE]
    assert not (home / "CLAUDE.md").exists()
    assert not (tmp_path / "backups").exists()


def test_unlistable_backup_dir_fails_only_that_pair(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    project_dir, home, master = _setup(tmp_path)
    conflict = home / "AGENTS.md"
    conflict.write_text("legacy\n")
    backups = tmp_path / "backups"
    backups.mkdir()
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{backups}"

[[links]]
source = "{master}"
targets = ["{conflict}", "{home}/CLAUDE.md"]
""",
    )
    real_iterdir = Path.iterdir

    def iterdir(self: Path):
        if self == backups:
            raise PermissionError(13, "Permission denied", str(self))
        return real_iterdir(self)

    monkeypatch.setattr(Path, "iterdir", iterdir)

    report = manager.link(force=True)

    assert [result.status for result in report.results] == [Outcome.ERROR, Outcome.CREATED]
    assert report.results[0].error_kind == "io_error"
    assert conflict.read_text() == "legacy\n"
    assert os.path.samefile(home / "CLAUDE.md", master)
    entries = json.loads((backups / LOG_FILE_NAME).read_text())
    assert [(entry["action"], entry["status"]) for entry in entries] == [("replace", "failed"), ("create", "success")]


def test_shared_skill_files_count_toward_every_root(tmp_path: Path) -> None:
    project_dir, home, _master = _setup(tmp_path)
    skills = _skills(project_dir)
    manager = _manager(
        project_dir,
        f"""
[settings]
backup_dir = "{tmp_path / 'backups'}"

[[skills_sets]]
source_root = "{skills}"
target_roots = ["{home}/.claude/skills"]

[[skills_sets]]
source_root = "{skills}"
target_roots = ["{home}/.claude/skills"]
""",
    )
    manager.link()

    report = manager.status()

    assert len(report.results) == 2
    assert [(group.group, group.files, group.status) for group in report.groups] == [
        ("skills_sets[0]", 2, Outcome.OK),
        ("skills_sets[1]", 2, Outcome.OK),
    ]
