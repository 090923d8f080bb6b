"""Storage abstractions for Cadre MCP."""

from .chroma import AuditEvent, ChromaStore, ChromaUnavailableError, record_audit
from .models import (
    Assignment,
    AssignmentTable,
    HandoffRecord,
    LockRecord,
    LockTable,
    ProgressEntry,
    ProgressRecord,
    Project,
    ProjectsDocument,
    QueueDocument,
    QueueItem,
    SessionProject,
    SessionRecord,
    SessionRegistry,
    SessionRegistryEntry,
    SessionWorktree,
    TaskId,
    is_valid_task_id,
)
from .records import RecordStore, RecordStoreError, generate_id

__all__ = [
    "Assignment",
    "AssignmentTable",
    "AuditEvent",
    "ChromaStore",
    "ChromaUnavailableError",
    "HandoffRecord",
    "LockRecord",
    "LockTable",
    "ProgressEntry",
    "ProgressRecord",
    "Project",
    "ProjectsDocument",
    "QueueDocument",
    "QueueItem",
    "RecordStore",
    "RecordStoreError",
    "SessionProject",
    "SessionRecord",
    "SessionRegistry",
    "SessionRegistryEntry",
    "SessionWorktree",
    "TaskId",
    "generate_id",
    "is_valid_task_id",
    "record_audit",
]
