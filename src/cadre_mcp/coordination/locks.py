"""Lease-based mutual exclusion over project and task keys."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Iterator

from ..checkouts import CheckoutError, CheckoutProvider
from ..results import CoordinatorResult, ErrorCode, coordinator_operation
from ..storage import (
    ChromaStore,
    LockRecord,
    LockTable,
    RecordStore,
    SessionProject,
    SessionWorktree,
    generate_id,
    is_valid_task_id,
    record_audit,
)
from .projects import ProjectRegistry
from .sessions import SessionManager

logger = logging.getLogger(__name__)

LOCKS_DOCUMENT = "locks.json"


class LockCoordinator:
    """Claim, release, heartbeat and sweep locks stored in ``locks.json``.

    Every read-modify-write of the lock table happens inside
    :meth:`transaction`, which holds the ``locks.json.lock`` arbiter. That makes
    the conflict check and the lock creation in :meth:`claim` a single atomic
    step across processes sharing the same state directory.
    """

    def __init__(
        self,
        store: RecordStore,
        sessions: SessionManager,
        projects: ProjectRegistry,
        *,
        checkouts: CheckoutProvider | None = None,
        audit: ChromaStore | None = None,
        default_ttl_minutes: int = 120,
        force_expire_hours: float = 24.0,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._projects = projects
        self._checkouts = checkouts
        self._audit = audit
        self._default_ttl_minutes = default_ttl_minutes
        self._force_expire_hours = force_expire_hours

    @contextmanager
    def transaction(self) -> Iterator[LockTable]:
        with self._store.exclusive(LOCKS_DOCUMENT):
            table = self._store.read(LOCKS_DOCUMENT, LockTable, LockTable)
            yield table
            self._store.write(LOCKS_DOCUMENT, table)

    def _load(self) -> LockTable:
        return self._store.read(LOCKS_DOCUMENT, LockTable, LockTable)

    def active_locks(self, owner_id: str | None = None) -> list[LockRecord]:
        now = self._sessions.now()
        return [
            lock
            for lock in self._load().locks
            if lock.is_held(now) and (owner_id is None or lock.owner_id == owner_id)
        ]

    @coordinator_operation
    def claim(
        self,
        project: str | None = None,
        task: str | None = None,
        *,
        owner: str | None = None,
        ttl_minutes: int | None = None,
        session: str | None = None,
        no_checkout: bool = False,
    ) -> CoordinatorResult:
        acting = self._sessions.resolve(session)
        if isinstance(acting, CoordinatorResult):
            return acting

        project_key = project or (acting.project.id if acting.project else None)
        if not project_key and not task:
            return CoordinatorResult.fail(
                ErrorCode.MISSING_ARGS, "A project or a task is required to claim a lock"
            )
        if task and not is_valid_task_id(task):
            return CoordinatorResult.fail(ErrorCode.INVALID_ARGS, f"Invalid task id: {task!r}")

        ttl = self._default_ttl_minutes if ttl_minutes is None else ttl_minutes
        if ttl <= 0:
            return CoordinatorResult.fail(ErrorCode.INVALID_ARGS, "ttl_minutes must be positive")

        registered = self._projects.find(project_key) if project_key else None
        project_id = registered.id if registered else project_key
        owner_id = owner or acting.id

        with self.transaction() as table:
            now = self._sessions.now()
            for existing in table.locks:
                if not existing.is_held(now):
                    continue
                same_project = project_id is not None and existing.project_id == project_id
                same_task = task is not None and existing.task_id == task
                if same_project or same_task:
                    return CoordinatorResult.fail(
                        ErrorCode.LOCKED,
                        f"Already locked by {existing.owner_id}",
                        conflicting_lock={
                            "lock_id": existing.lock_id,
                            "owner_id": existing.owner_id,
                            "expires_at": existing.expires_at,
                        },
                    )

            worktree: SessionWorktree | None = None
            if task and registered and self._checkouts is not None and not no_checkout:
                try:
                    info = self._checkouts.create_checkout(
                        Path(registered.path), registered.name, task
                    )
                except CheckoutError as exc:
                    logger.warning(
                        "Checkout provisioning failed",
                        extra={"project_id": project_id, "task_id": task, "error": str(exc)},
                    )
                    return CoordinatorResult.fail(ErrorCode.WORKTREE_FAILED, str(exc))
                worktree = SessionWorktree(path=str(info.path), branch=info.branch, created_at=now)

            lock = LockRecord(
                lock_id=generate_id("lock", clock=self._sessions.now),
                project_id=project_id,
                task_id=task,
                owner_id=owner_id,
                acquired_at=now,
                expires_at=now + timedelta(minutes=ttl),
            )
            table.locks.append(lock)

        updates: dict = {"locks": [*acting.locks, lock.lock_id]}
        if task:
            updates["current_task"] = task
        if registered and acting.project is None:
            updates["project"] = SessionProject(
                id=registered.id, name=registered.name, path=registered.path
            )
        if worktree is not None:
            updates["worktree"] = worktree
        self._sessions.update_session(acting.id, **updates)
        if registered:
            self._projects.touch(registered.id)

        logger.info(
            "Lock claimed",
            extra={"lock_id": lock.lock_id, "owner_id": owner_id, "project_id": project_id, "task_id": task},
        )
        record_audit(
            self._audit,
            "lock_claimed",
            actor=acting.id,
            data={"lock_id": lock.lock_id, "project_id": project_id, "task_id": task},
        )
        return CoordinatorResult.ok(
            f"Lock acquired: {lock.lock_id}",
            lock=lock,
            worktree=worktree,
        )

    @coordinator_operation
    def release(
        self,
        lock_id: str | None = None,
        *,
        release_all: bool = False,
        owner: str | None = None,
        session: str | None = None,
    ) -> CoordinatorResult:
        acting = self._sessions.resolve(session)
        if isinstance(acting, CoordinatorResult):
            return acting

        if not lock_id and not release_all:
            return CoordinatorResult.fail(
                ErrorCode.MISSING_ARGS, "Provide a lock id or request release of all locks"
            )

        owner_id = owner or acting.id
        released: list[str] = []
        with self.transaction() as table:
            if lock_id:
                target = next((lock for lock in table.locks if lock.lock_id == lock_id), None)
                if target is None:
                    return CoordinatorResult.fail(
                        ErrorCode.LOCK_NOT_FOUND, f"Lock not found: {lock_id}"
                    )
                if target.owner_id != owner_id:
                    return CoordinatorResult.fail(
                        ErrorCode.NOT_OWNER, f"Lock {lock_id} is owned by {target.owner_id}"
                    )
                if target.status == "active":
                    target.status = "released"
                    released.append(target.lock_id)
            else:
                for lock in table.locks:
                    if lock.owner_id == owner_id and lock.status == "active":
                        lock.status = "released"
                        released.append(lock.lock_id)

        remaining = [item for item in acting.locks if item not in released]
        self._sessions.update_session(acting.id, locks=remaining)

        for item in released:
            record_audit(self._audit, "lock_released", actor=acting.id, data={"lock_id": item})
        logger.info("Locks released", extra={"owner_id": owner_id, "count": len(released)})
        return CoordinatorResult.ok(
            f"Released {len(released)} lock(s)", released=released, count=len(released)
        )

    @coordinator_operation
    def heartbeat(
        self,
        *,
        owner: str | None = None,
        lock_id: str | None = None,
        session: str | None = None,
        ttl_minutes: int | None = None,
    ) -> CoordinatorResult:
        acting = self._sessions.resolve(session)
        if isinstance(acting, CoordinatorResult):
            return acting

        ttl = self._default_ttl_minutes if ttl_minutes is None else ttl_minutes
        if ttl <= 0:
            return CoordinatorResult.fail(ErrorCode.INVALID_ARGS, "ttl_minutes must be positive")

        owner_id = owner or acting.id
        extended: list[str] = []
        with self.transaction() as table:
            now = self._sessions.now()
            new_expiry = now + timedelta(minutes=ttl)
            for lock in table.locks:
                if lock.owner_id != owner_id or not lock.is_held(now):
                    continue
                if lock_id and lock.lock_id != lock_id:
                    continue
                if new_expiry > lock.expires_at:
                    lock.expires_at = new_expiry
                extended.append(lock.lock_id)

        self._sessions.touch(acting.id)
        if extended:
            record_audit(
                self._audit,
                "lock_heartbeat",
                actor=acting.id,
                data={"locks": extended, "ttl_minutes": ttl},
            )
        return CoordinatorResult.ok(
            f"Extended {len(extended)} lock(s)",
            extended=extended,
            count=len(extended),
            expires_at=new_expiry,
        )

    def expire_locks(self, *, force: bool = False) -> list[LockRecord]:
        """Mark lapsed locks ``expired``; ``force`` also expires leases older than the cutoff."""

        expired: list[LockRecord] = []
        with self.transaction() as table:
            now = self._sessions.now()
            cutoff = now - timedelta(hours=self._force_expire_hours)
            for lock in table.locks:
                if lock.status != "active":
                    continue
                if lock.is_expired(now) or (force and lock.acquired_at < cutoff):
                    lock.status = "expired"
                    expired.append(lock)
        return expired

    def release_owned(self, owner_id: str) -> list[str]:
        released: list[str] = []
        with self.transaction() as table:
            for lock in table.locks:
                if lock.owner_id == owner_id and lock.status == "active":
                    lock.status = "released"
                    released.append(lock.lock_id)
        return released

    @coordinator_operation
    def cleanup_locks(self, *, force: bool = False) -> CoordinatorResult:
        expired = self.expire_locks(force=force)
        if expired:
            record_audit(
                self._audit,
                "cleanup",
                actor="SYSTEM",
                data={"expired_locks": [lock.lock_id for lock in expired], "force": force},
            )
        logger.info("Lock cleanup finished", extra={"expired": len(expired), "force": force})
        return CoordinatorResult.ok(
            f"Expired {len(expired)} lock(s)",
            expired=[lock.lock_id for lock in expired],
            count=len(expired),
        )

    @coordinator_operation
    def status(self, session: str | None = None) -> CoordinatorResult:
        acting = self._sessions.resolve(session)
        if isinstance(acting, CoordinatorResult):
            return acting
        return CoordinatorResult.ok(
            f"Session {acting.id}",
            session=acting,
            locks=self.active_locks(acting.id),
            projects=len(self._projects.list_projects()),
        )


__all__ = ["LOCKS_DOCUMENT", "LockCoordinator"]
