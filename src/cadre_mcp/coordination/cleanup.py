"""Garbage collection of stale sessions, locks and working copies."""

from __future__ import annotations

import logging
from pathlib import Path

from ..checkouts import CheckoutError, CheckoutInfo, CheckoutProvider
from ..results import CoordinatorResult, ErrorCode, coordinator_operation
from ..storage import ChromaStore, record_audit
from .locks import LockCoordinator
from .projects import ProjectRegistry
from .sessions import SessionManager

logger = logging.getLogger(__name__)


class CleanupService:
    """Sweep expired locks, end idle sessions and report orphaned checkouts."""

    def __init__(
        self,
        sessions: SessionManager,
        locks: LockCoordinator,
        projects: ProjectRegistry,
        *,
        checkouts: CheckoutProvider | None = None,
        audit: ChromaStore | None = None,
    ) -> None:
        self._sessions = sessions
        self._locks = locks
        self._projects = projects
        self._checkouts = checkouts
        self._audit = audit

    def _scan_checkouts(self) -> list[tuple[Path, CheckoutInfo]]:
        if self._checkouts is None:
            return []
        found: list[tuple[Path, CheckoutInfo]] = []
        for project in self._projects.list_projects():
            project_path = Path(project.path)
            for info in self._checkouts.list_checkouts(project_path):
                found.append((project_path, info))
        return found

    def _referenced_paths(self) -> set[str]:
        referenced: set[str] = set()
        for entry in self._sessions.active_sessions():
            if entry.worktree_path:
                referenced.add(str(Path(entry.worktree_path)))
        return referenced

    @coordinator_operation
    def cleanup(
        self,
        *,
        session_ttl_hours: float | None = None,
        dry_run: bool = False,
    ) -> CoordinatorResult:
        ttl = self._sessions.ttl_hours if session_ttl_hours is None else session_ttl_hours
        if ttl <= 0:
            return CoordinatorResult.fail(ErrorCode.INVALID_ARGS, "session_ttl_hours must be positive")

        stale = [entry for entry in self._sessions.active_sessions() if self._sessions.is_old(entry, ttl)]
        orphaned: list[str] = [entry.worktree_path for entry in stale if entry.worktree_path]

        expired_locks: list[str] = []
        ended_sessions: list[str] = []
        released_locks: list[str] = []
        if not dry_run:
            expired_locks = [lock.lock_id for lock in self._locks.expire_locks()]
            for entry in stale:
                released_locks.extend(self._locks.release_owned(entry.id))
                self._sessions.update_session(entry.id, locks=[])
                self._sessions.end_session_record(entry.id)
                ended_sessions.append(entry.id)

        stale_ids = {entry.id for entry in stale}
        referenced = {
            str(Path(entry.worktree_path))
            for entry in self._sessions.active_sessions()
            if entry.worktree_path and entry.id not in stale_ids
        }
        for _, info in self._scan_checkouts():
            path = str(info.path)
            if path not in referenced and path not in orphaned:
                orphaned.append(path)

        if not dry_run:
            record_audit(
                self._audit,
                "cleanup",
                actor="SYSTEM",
                data={
                    "expired_locks": expired_locks,
                    "ended_sessions": ended_sessions,
                    "released_locks": released_locks,
                    "orphaned_checkouts": orphaned,
                },
            )

        prefix = "[dry run] " if dry_run else ""
        message = (
            f"{prefix}Cleaned up {len(stale)} old session(s), "
            f"{len(expired_locks) + len(released_locks)} lock(s); "
            f"{len(orphaned)} orphaned worktree(s) found"
        )
        logger.info(
            "Cleanup finished",
            extra={"dry_run": dry_run, "sessions": len(stale), "orphaned": len(orphaned)},
        )
        return CoordinatorResult.ok(
            message,
            dry_run=dry_run,
            old_sessions=[entry.id for entry in stale],
            expired_locks=expired_locks,
            released_locks=released_locks,
            orphaned_worktrees=orphaned,
        )

    @coordinator_operation
    def prune_checkouts(self, *, dry_run: bool = False) -> CoordinatorResult:
        referenced = self._referenced_paths()
        candidates = [
            (project_path, info)
            for project_path, info in self._scan_checkouts()
            if str(info.path) not in referenced
        ]

        removed: list[str] = []
        failed: list[dict[str, str]] = []
        for project_path, info in candidates:
            if dry_run:
                continue
            try:
                self._checkouts.remove_checkout(project_path, info.path, force=False)
            except CheckoutError as exc:
                logger.warning(
                    "Failed to prune checkout", extra={"path": str(info.path), "error": str(exc)}
                )
                failed.append({"path": str(info.path), "error": str(exc)})
                continue
            removed.append(str(info.path))

        prefix = "[dry run] " if dry_run else ""
        return CoordinatorResult.ok(
            f"{prefix}{len(candidates)} orphaned worktree(s), {len(removed)} removed",
            dry_run=dry_run,
            orphaned=[str(info.path) for _, info in candidates],
            removed=removed,
            failed=failed,
        )

    @coordinator_operation
    def remove_task_checkout(
        self,
        project: str | None,
        task_id: str | None,
        *,
        force: bool = False,
    ) -> CoordinatorResult:
        if not project or not task_id:
            return CoordinatorResult.fail(ErrorCode.MISSING_ARGS, "Project and task are required")

        registered = self._projects.find(project)
        if registered is None:
            return CoordinatorResult.fail(ErrorCode.PROJECT_NOT_FOUND, f"Project not found: {project}")
        if self._checkouts is None:
            return CoordinatorResult.fail(ErrorCode.WORKTREE_FAILED, "Checkouts are disabled")

        project_path = Path(registered.path)
        target = next(
            (
                info.path
                for info in self._checkouts.list_checkouts(project_path)
                if info.task_id == task_id and info.project_name == registered.name
            ),
            None,
        )
        if target is None:
            return CoordinatorResult.ok("Worktree does not exist", removed=False)

        if not force and self._checkouts.has_uncommitted_changes(target):
            return CoordinatorResult.fail(
                ErrorCode.UNCOMMITTED_CHANGES,
                f"Worktree has uncommitted changes: {target}. Use force to remove anyway.",
                path=str(target),
            )

        try:
            message = self._checkouts.remove_checkout(project_path, target, force=force)
        except CheckoutError as exc:
            return CoordinatorResult.fail(ErrorCode.WORKTREE_FAILED, str(exc))
        return CoordinatorResult.ok(message, removed=True, path=str(target))


__all__ = ["CleanupService"]
