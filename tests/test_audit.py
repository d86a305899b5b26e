from __future__ import annotations

import json
from pathlib import Path

import pytest

from prompt_sync.audit import LOG_FILE_NAME, AuditAction, AuditEntry, AuditLog, AuditStatus
from prompt_sync.errors import LogWriteError


def _entry(index: int, status: AuditStatus = AuditStatus.SUCCESS) -> AuditEntry:
    return AuditEntry(
        action=AuditAction.REPLACE,
        source="/src/master.md",
        target=f"/dst/{index}.md",
        status=status,
    )


def test_records_parse_as_ordered_array(backup_dir: Path) -> None:
    log = AuditLog(backup_dir)

    for index in range(5):
        log.record(_entry(index))

    data = json.loads((backup_dir / LOG_FILE_NAME).read_text())
    assert isinstance(data, list)
    assert [item["target"] for item in data] == [f"/dst/{index}.md" for index in range(5)]
    assert [item["timestamp"] for item in data] == sorted(item["timestamp"] for item in data)
    assert set(data[0]) == {
        "timestamp",
        "action",
        "source",
        "target",
        "status",
        "hash_before",
        "backup_location",
        "error",
    }
    assert data[0]["action"] == "replace"
    assert data[0]["status"] == "success"


def test_entries_round_trip(backup_dir: Path) -> None:
    log = AuditLog(backup_dir)
    log.record(_entry(0, AuditStatus.FAILED))

    entries = log.entries()
    assert len(entries) == 1
    assert entries[0].status == "failed"


def test_corrupt_log_is_replaced_with_warning(backup_dir: Path) -> None:
    backup_dir.mkdir()
    (backup_dir / LOG_FILE_NAME).write_text("{not json")
    log = AuditLog(backup_dir)

    log.record(_entry(1))

    data = json.loads((backup_dir / LOG_FILE_NAME).read_text())
    assert len(data) == 1
    warnings = log.pull_warnings()
    assert len(warnings) == 1
    assert "unreadable" in warnings[0]
    assert log.pull_warnings() == []


def test_rotation_moves_log_to_dot_one(backup_dir: Path) -> None:
    writer = AuditLog(backup_dir)
    writer.record(_entry(0))
    writer.record(_entry(1))
    previous = json.loads(writer.path.read_text())

    log = AuditLog(backup_dir, size_limit=writer.path.stat().st_size - 1)
    log.record(_entry(2))

    assert json.loads(log.rotated_path.read_text()) == previous
    current = json.loads(log.path.read_text())
    assert [item["target"] for item in current] == ["/dst/2.md"]


def test_rotation_overwrites_older_rotated_log(backup_dir: Path) -> None:
    backup_dir.mkdir()
    log = AuditLog(backup_dir, size_limit=0)
    log.rotated_path.write_text("stale")

    log.record(_entry(0))
    log.record(_entry(1))

    rotated = json.loads(log.rotated_path.read_text())
    assert [item["target"] for item in rotated] == ["/dst/0.md"]


def test_write_failure_raises_log_write_error(backup_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    log = AuditLog(backup_dir)
    log.record(_entry(0))

    def failing_replace(*_args, **_kwargs):
        raise OSError("read-only filesystem")

    monkeypatch.setattr("prompt_sync.audit.os.replace", failing_replace)

    with pytest.raises(LogWriteError):
        log.record(_entry(1))
    assert sorted(p.name for p in backup_dir.iterdir()) == [LOG_FILE_NAME]


def test_interleaved_writers_lose_an_entry(backup_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """The log is not locked; one invocation per backup directory is assumed.

    A second writer that records between another writer's read and rewrite
    has its entry overwritten.
    """

    first = AuditLog(backup_dir)
    second = AuditLog(backup_dir)
    first.record(_entry(0))
    rewrite = first._write

    def interleaved(entries: list[AuditEntry]) -> None:
        second.record(_entry(1))
        rewrite(entries)

    monkeypatch.setattr(first, "_write", interleaved)
    first.record(_entry(2))

    targets = [item["target"] for item in json.loads(first.path.read_text())]
    assert targets == ["/dst/0.md", "/dst/2.md"]
