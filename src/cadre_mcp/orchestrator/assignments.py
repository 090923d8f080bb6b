"""Durable registry of tasks currently held by a worker."""

from __future__ import annotations

from ..storage import Assignment, AssignmentTable, RecordStore

ASSIGNMENTS_DOCUMENT = "assignments.json"


class AssignmentStore:
    """Keep ``assignments.json`` in step with what the orchestrator has dispatched.

    The table survives restarts, so a restarted orchestrator resumes
    monitoring the tasks it handed out before it stopped.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def load(self) -> dict[str, Assignment]:
        return dict(self._store.read(ASSIGNMENTS_DOCUMENT, AssignmentTable, AssignmentTable).assignments)

    def save(self, assignments: dict[str, Assignment]) -> None:
        self._store.write(ASSIGNMENTS_DOCUMENT, AssignmentTable(assignments=assignments))

    def get(self, task_id: str) -> Assignment | None:
        return self.load().get(task_id)

    def put(self, assignment: Assignment) -> None:
        assignments = self.load()
        assignments[assignment.task_id] = assignment
        self.save(assignments)

    def remove(self, task_id: str) -> Assignment | None:
        assignments = self.load()
        removed = assignments.pop(task_id, None)
        if removed is not None:
            self.save(assignments)
        return removed


__all__ = ["ASSIGNMENTS_DOCUMENT", "AssignmentStore"]
