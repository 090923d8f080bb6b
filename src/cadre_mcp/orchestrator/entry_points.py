"""Sources the orchestrator polls for newly submitted tasks."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

from ..storage import RecordStore, TaskId

logger = logging.getLogger(__name__)

INBOX_DIR = "inbox"


class TaskSubmission(BaseModel):
    task_id: TaskId
    description: str | None = None
    workflow: str | None = None
    plan_path: str | None = None
    project_id: str = ""
    priority: int = 0


@dataclass(slots=True)
class PolledSubmission:
    """A submission plus the handle its entry point needs to acknowledge it."""

    submission: TaskSubmission
    source: Path


class EntryPoint(Protocol):
    name: str

    def poll(self) -> list[PolledSubmission]:
        ...

    def acknowledge(self, polled: PolledSubmission, *, accepted: bool) -> None:
        ...


class InboxEntryPoint:
    """Pick up ``inbox/*.json`` submissions.

    A file stays in ``inbox/`` until the orchestrator acknowledges it. Accepted
    submissions then move to ``inbox/processed/`` and refused or unreadable
    ones to ``inbox/rejected/``. A submission that is never acknowledged, for
    example because its queue was full, is polled again on the next tick.
    """

    name = "inbox"

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def _move(self, path: Path, folder: str) -> None:
        target_dir = path.parent / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        os.replace(path, target_dir / path.name)

    def poll(self) -> list[PolledSubmission]:
        submissions: list[PolledSubmission] = []
        for path in self._store.list_documents(INBOX_DIR):
            try:
                submission = TaskSubmission.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                logger.warning("Rejected inbox submission", extra={"path": str(path), "error": str(exc)})
                self._move(path, "rejected")
                continue
            submissions.append(PolledSubmission(submission=submission, source=path))
        return submissions

    def acknowledge(self, polled: PolledSubmission, *, accepted: bool) -> None:
        if polled.source.exists():
            self._move(polled.source, "processed" if accepted else "rejected")


__all__ = ["EntryPoint", "INBOX_DIR", "InboxEntryPoint", "PolledSubmission", "TaskSubmission"]
