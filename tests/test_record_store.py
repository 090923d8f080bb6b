from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cadre_mcp.storage import (
    LockRecord,
    LockTable,
    QueueItem,
    RecordStore,
    RecordStoreError,
    generate_id,
    is_valid_task_id,
)


def _lock(lock_id: str = "LOCK-1") -> LockRecord:
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return LockRecord(
        lock_id=lock_id,
        project_id="proj",
        owner_id="sess",
        acquired_at=now,
        expires_at=now + timedelta(minutes=120),
    )


def test_missing_document_returns_default(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    table = store.read("locks.json", LockTable, LockTable)
    assert table.locks == []


def test_write_then_read_preserves_document(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.write("locks.json", LockTable(locks=[_lock()]))

    table = store.read("locks.json", LockTable, LockTable)

    assert [lock.lock_id for lock in table.locks] == ["LOCK-1"]
    assert table.locks[0].expires_at.tzinfo is not None


def test_write_leaves_no_temporary_files(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.write("pending/backend.json", LockTable())
    store.write("pending/backend.json", LockTable(locks=[_lock()]))

    leftovers = [path.name for path in (tmp_path / "pending").iterdir()]
    assert leftovers == ["backend.json"]


def test_corrupt_document_is_treated_as_missing(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    (tmp_path / "locks.json").write_text("{not json", encoding="utf-8")
    store = RecordStore(tmp_path)

    with caplog.at_level(logging.WARNING):
        table = store.read("locks.json", LockTable, LockTable)

    assert table.locks == []
    assert "Discarding unreadable document" in caplog.text


def test_write_failure_raises_record_store_error(tmp_path: Path) -> None:
    blocker = tmp_path / "state"
    blocker.write_text("not a directory", encoding="utf-8")
    store = RecordStore(blocker)

    with pytest.raises(RecordStoreError):
        store.write("locks.json", LockTable())


def test_list_documents_filters_pattern(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.write_text("inbox/a.json", "{}")
    store.write_text("inbox/b.json", "{}")
    store.write_text("inbox/notes.md", "hi")

    names = [path.name for path in store.list_documents("inbox")]

    assert names == ["a.json", "b.json"]
    assert store.list_documents("missing") == []


def test_exclusive_creates_sibling_lock_file(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    with store.exclusive("locks.json"):
        assert (tmp_path / "locks.json.lock").exists()
    # Re-entering after release must not block.
    with store.exclusive("locks.json"):
        pass


def test_exclusive_reports_unusable_lock_location(tmp_path: Path) -> None:
    store = RecordStore(tmp_path)
    store.write_text("blocker", "not a directory")

    with pytest.raises(RecordStoreError):
        with store.exclusive("blocker/locks.json"):
            pass


def test_generate_id_format() -> None:
    fixed = datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    identifier = generate_id("lock", clock=lambda: fixed)

    assert re.fullmatch(r"LOCK-20250304050607[0-9A-F]{6}", identifier)
    assert generate_id("lock", clock=lambda: fixed) != identifier


@pytest.mark.parametrize(
    ("task_id", "valid"),
    [
        ("T-1", True),
        ("feature.v2_fix", True),
        ("..", False),
        ("../assignments", False),
        ("nested/task", False),
        ("-flag", False),
        ("", False),
        ("x" * 129, False),
    ],
)
def test_task_id_validation(task_id: str, valid: bool) -> None:
    assert is_valid_task_id(task_id) is valid
    if not valid:
        with pytest.raises(ValueError):
            QueueItem(task_id=task_id)
