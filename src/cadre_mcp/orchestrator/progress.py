"""Progress records that workers update while they work a stage."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from ..roles import WorkerRole, resolve_role
from ..storage import ProgressEntry, ProgressRecord, RecordStore, is_valid_task_id

PROGRESS_DIR = "progress"


def progress_document(task_id: str) -> str:
    if not is_valid_task_id(task_id):
        raise ValueError(f"Invalid task id: {task_id!r}")
    return f"{PROGRESS_DIR}/{task_id}.json"


class ProgressStore:
    def __init__(self, store: RecordStore, *, clock: Callable[[], datetime] | None = None) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def create(self, role: str | WorkerRole, task_id: str, description: str | None = None) -> ProgressRecord:
        """Start a fresh record for ``task_id`` at ``role``, replacing the previous stage's."""

        now = self._clock()
        record = ProgressRecord(
            task_id=task_id,
            role=resolve_role(role),
            started_at=now,
            updated_at=now,
            description=description or "No description",
            log=[ProgressEntry(timestamp=now, message=f"Task assigned to {resolve_role(role).value}")],
        )
        self._store.write(progress_document(task_id), record)
        return record

    def read(self, task_id: str) -> ProgressRecord | None:
        if not is_valid_task_id(task_id):
            return None
        if not self._store.exists(progress_document(task_id)):
            return None
        return self._store.read(progress_document(task_id), ProgressRecord, lambda: None)

    def update(
        self,
        task_id: str,
        *,
        status: str | None = None,
        log: str | None = None,
        **fields: Any,
    ) -> ProgressRecord | None:
        record = self.read(task_id)
        if record is None:
            return None

        now = self._clock()
        changes: dict[str, Any] = {key: value for key, value in fields.items() if value is not None}
        if status is not None:
            changes["status"] = status
        if log:
            changes["log"] = [*record.log, ProgressEntry(timestamp=now, message=log)]
        changes["updated_at"] = now

        # Round-trip through validation so bad statuses or confidences are rejected.
        updated = ProgressRecord.model_validate({**record.model_dump(), **changes})
        self._store.write(progress_document(task_id), updated)
        return updated


__all__ = ["PROGRESS_DIR", "ProgressStore", "progress_document"]
