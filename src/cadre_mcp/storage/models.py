"""Document models persisted by the record store."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, StringConstraints

from ..roles import WorkerRole

SessionStatus = Literal["active", "ended"]
LockStatus = Literal["active", "expired", "released"]
QueueItemStatus = Literal["pending", "in_progress", "completed", "failed"]
ProgressStatus = Literal["IN_PROGRESS", "COMPLETE", "BLOCKED", "FAILED"]
HandoffStatus = Literal["COMPLETE", "BLOCKED", "FAILED"]
AssignmentStatus = Literal["dispatched", "awaiting_capacity", "blocked", "failed"]

# Task ids name files under the state directory, so they stay a single safe path segment.
TASK_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"
TASK_ID_MAX_LENGTH = 128

TaskId = Annotated[str, StringConstraints(pattern=TASK_ID_PATTERN, max_length=TASK_ID_MAX_LENGTH)]


def is_valid_task_id(value: str | None) -> bool:
    if not value or len(value) > TASK_ID_MAX_LENGTH:
        return False
    return re.fullmatch(TASK_ID_PATTERN, value) is not None


class SessionProject(BaseModel):
    id: str
    name: str
    path: str


class SessionWorktree(BaseModel):
    path: str
    branch: str
    created_at: datetime


class SessionRecord(BaseModel):
    """Full per-session document stored under ``sessions/<id>.json``."""

    id: str
    project: SessionProject | None = None
    current_task: str | None = None
    worktree: SessionWorktree | None = None
    locks: list[str] = Field(default_factory=list)
    status: SessionStatus = "active"
    created_at: datetime
    last_activity: datetime


class SessionRegistryEntry(BaseModel):
    """Flat index entry mirrored into ``sessions.json``."""

    id: str
    project_id: str | None = None
    project_name: str | None = None
    task_id: str | None = None
    worktree_path: str | None = None
    status: SessionStatus = "active"
    created_at: datetime
    last_activity: datetime

    @classmethod
    def from_session(cls, session: SessionRecord) -> "SessionRegistryEntry":
        return cls(
            id=session.id,
            project_id=session.project.id if session.project else None,
            project_name=session.project.name if session.project else None,
            task_id=session.current_task,
            worktree_path=session.worktree.path if session.worktree else None,
            status=session.status,
            created_at=session.created_at,
            last_activity=session.last_activity,
        )


class SessionRegistry(BaseModel):
    sessions: list[SessionRegistryEntry] = Field(default_factory=list)
    version: str = "2.0"


class LockRecord(BaseModel):
    """A time-bounded exclusive lease over a project or task key."""

    lock_id: str
    project_id: str | None = None
    task_id: str | None = None
    owner_id: str
    acquired_at: datetime
    expires_at: datetime
    status: LockStatus = "active"

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_held(self, now: datetime) -> bool:
        return self.status == "active" and not self.is_expired(now)


class LockTable(BaseModel):
    locks: list[LockRecord] = Field(default_factory=list)


class Project(BaseModel):
    id: str
    name: str
    path: str
    remote: str | None = None
    added_at: datetime
    last_accessed: datetime | None = None


class ProjectsDocument(BaseModel):
    projects: list[Project] = Field(default_factory=list)
    version: str = "1.0"
    last_updated: datetime | None = None


class QueueItem(BaseModel):
    """A task reference waiting in exactly one worker's queue."""

    task_id: TaskId
    project_id: str = ""
    title: str = ""
    priority: int = 0
    status: QueueItemStatus = "pending"
    enqueued_at: datetime | None = None
    workflow: str = "default"
    description: str | None = None
    plan_path: str | None = None
    handoff_path: str | None = None
    handoff_from: WorkerRole | None = None


class QueueDocument(BaseModel):
    role: WorkerRole
    max_length: int = 3
    items: list[QueueItem] = Field(default_factory=list)


class HandoffRecord(BaseModel):
    """Immutable outcome of one pipeline stage, consumed by the next."""

    task_id: TaskId
    from_stage: WorkerRole
    to_stage: WorkerRole
    status: HandoffStatus
    confidence: float = Field(ge=0.0, le=1.0)
    summary: str
    files_changed: list[str] = Field(default_factory=list)
    learnings: list[str] = Field(default_factory=list)
    blockers: str = "None"
    recommendations: list[str] = Field(default_factory=list)
    created_at: datetime


class ProgressEntry(BaseModel):
    timestamp: datetime
    message: str


class ProgressRecord(BaseModel):
    """Externally maintained progress of one task at its current stage."""

    task_id: TaskId
    role: WorkerRole
    status: ProgressStatus = "IN_PROGRESS"
    started_at: datetime
    updated_at: datetime
    description: str = "No description"
    log: list[ProgressEntry] = Field(default_factory=list)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    summary: str | None = None
    files_changed: list[str] = Field(default_factory=list)
    learnings: list[str] = Field(default_factory=list)
    blockers: str | None = None
    recommendations: list[str] = Field(default_factory=list)


class Assignment(BaseModel):
    """Entry of the durable active-task registry."""

    task_id: TaskId
    role: WorkerRole
    workflow: str = "default"
    project_id: str = ""
    title: str = ""
    priority: int = 0
    started_at: datetime
    status: AssignmentStatus = "dispatched"
    escalated: bool = False
    note: str | None = None


class AssignmentTable(BaseModel):
    assignments: dict[str, Assignment] = Field(default_factory=dict)


__all__ = [
    "Assignment",
    "AssignmentTable",
    "HandoffRecord",
    "LockRecord",
    "LockTable",
    "ProgressEntry",
    "ProgressRecord",
    "Project",
    "ProjectsDocument",
    "QueueDocument",
    "QueueItem",
    "SessionProject",
    "SessionRecord",
    "SessionRegistry",
    "SessionRegistryEntry",
    "SessionWorktree",
    "TASK_ID_PATTERN",
    "TaskId",
    "is_valid_task_id",
]
