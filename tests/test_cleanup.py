from __future__ import annotations

from pathlib import Path

from cadre_mcp.checkouts import CheckoutError, CheckoutInfo
from cadre_mcp.coordination import CleanupService, LockCoordinator, ProjectRegistry, SessionManager
from cadre_mcp.results import ErrorCode
from cadre_mcp.storage import LockTable, RecordStore


class StubCheckouts:
    def __init__(self, root: Path) -> None:
        self.root = root
        self.existing: list[CheckoutInfo] = []
        self.removed: list[Path] = []
        self.dirty: set[Path] = set()
        self.broken: set[Path] = set()

    def create_checkout(self, project_path, project_name, task_id, branch=None):
        info = CheckoutInfo(
            path=self.root / project_name / task_id,
            branch=branch or f"feature/{task_id}",
            task_id=task_id,
            project_name=project_name,
        )
        self.existing.append(info)
        return info

    def remove_checkout(self, project_path, path, force=False):
        if path in self.broken:
            raise CheckoutError(f"Failed to remove worktree: {path}")
        self.removed.append(path)
        return f"Worktree removed: {path}"

    def has_uncommitted_changes(self, path):
        return path in self.dirty

    def list_checkouts(self, project_path):
        return list(self.existing)


class Harness:
    def __init__(self, tmp_path: Path, clock) -> None:
        self.store = RecordStore(tmp_path / "state")
        self.checkouts = StubCheckouts(tmp_path / "worktrees")
        self.sessions = SessionManager(self.store, clock=clock, ttl_hours=24)
        self.projects = ProjectRegistry(self.store, clock=clock)
        self.locks = LockCoordinator(self.store, self.sessions, self.projects, checkouts=self.checkouts)
        self.cleanup = CleanupService(self.sessions, self.locks, self.projects, checkouts=self.checkouts)
        self.project = self.projects.add_project("app", tmp_path / "app").get("project")


def test_cleanup_ends_stale_sessions_and_releases_their_locks(tmp_path: Path, clock) -> None:
    harness = Harness(tmp_path, clock)
    harness.sessions.create_session("stale")
    lock_id = harness.locks.claim("app", "T-1", session="stale", ttl_minutes=60 * 72).get("lock").lock_id
    clock.advance(hours=30)
    harness.sessions.create_session("fresh")

    result = harness.cleanup.cleanup()

    assert result.get("old_sessions") == ["stale"]
    assert result.get("released_locks") == [lock_id]
    assert result.get("orphaned_worktrees") == [str(tmp_path / "worktrees" / "app" / "T-1")]
    assert harness.sessions.get_session("stale").status == "ended"
    assert harness.sessions.get_session("fresh").status == "active"
    table = harness.store.read("locks.json", LockTable, LockTable)
    assert table.locks[0].status == "released"


def test_cleanup_dry_run_changes_nothing(tmp_path: Path, clock) -> None:
    harness = Harness(tmp_path, clock)
    harness.sessions.create_session("stale")
    harness.locks.claim("app", "T-1", session="stale", ttl_minutes=30)
    clock.advance(hours=30)

    result = harness.cleanup.cleanup(dry_run=True)

    assert result.get("dry_run") is True
    assert result.get("old_sessions") == ["stale"]
    assert result.get("expired_locks") == []
    assert result.message.startswith("[dry run] ")
    assert harness.sessions.get_session("stale").status == "active"
    table = harness.store.read("locks.json", LockTable, LockTable)
    assert table.locks[0].status == "active"


def test_cleanup_expires_lapsed_locks_of_live_sessions(tmp_path: Path, clock) -> None:
    harness = Harness(tmp_path, clock)
    harness.sessions.create_session("live")
    lock_id = harness.locks.claim("app", session="live", ttl_minutes=5, no_checkout=True).get("lock").lock_id
    clock.advance(minutes=10)
    harness.sessions.touch("live")

    result = harness.cleanup.cleanup()

    assert result.get("expired_locks") == [lock_id]
    assert result.get("old_sessions") == []


def test_cleanup_honours_explicit_ttl(tmp_path: Path, clock) -> None:
    harness = Harness(tmp_path, clock)
    harness.sessions.create_session("recent")
    clock.advance(hours=2)

    assert harness.cleanup.cleanup(session_ttl_hours=1, dry_run=True).get("old_sessions") == ["recent"]
    assert harness.cleanup.cleanup(session_ttl_hours=0).error is ErrorCode.INVALID_ARGS


def test_prune_checkouts_skips_referenced_worktrees(tmp_path: Path, clock) -> None:
    harness = Harness(tmp_path, clock)
    harness.sessions.create_session("owner")
    harness.locks.claim("app", "T-1", session="owner")
    orphan = harness.checkouts.create_checkout(tmp_path / "app", "app", "T-2")
    broken = harness.checkouts.create_checkout(tmp_path / "app", "app", "T-3")
    harness.checkouts.broken.add(broken.path)

    preview = harness.cleanup.prune_checkouts(dry_run=True)
    assert preview.get("orphaned") == [str(orphan.path), str(broken.path)]
    assert harness.checkouts.removed == []

    result = harness.cleanup.prune_checkouts()
    assert result.get("removed") == [str(orphan.path)]
    assert [entry["path"] for entry in result.get("failed")] == [str(broken.path)]


def test_remove_task_checkout_paths(tmp_path: Path, clock) -> None:
    harness = Harness(tmp_path, clock)

    assert harness.cleanup.remove_task_checkout(None, "T-1").error is ErrorCode.MISSING_ARGS
    assert harness.cleanup.remove_task_checkout("ghost", "T-1").error is ErrorCode.PROJECT_NOT_FOUND

    missing = harness.cleanup.remove_task_checkout("app", "T-1")
    assert missing.success
    assert missing.get("removed") is False

    info = harness.checkouts.create_checkout(tmp_path / "app", "app", "T-1")
    harness.checkouts.dirty.add(info.path)
    assert harness.cleanup.remove_task_checkout("app", "T-1").error is ErrorCode.UNCOMMITTED_CHANGES

    forced = harness.cleanup.remove_task_checkout(harness.project.id, "T-1", force=True)
    assert forced.get("removed") is True
    assert harness.checkouts.removed == [info.path]
