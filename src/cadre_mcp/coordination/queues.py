"""Bounded FIFO queues, one per worker role."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from ..results import CoordinatorResult, ErrorCode, coordinator_operation
from ..roles import CORE_ROLES, UnknownRoleError, WorkerRole, resolve_role
from ..storage import QueueDocument, QueueItem, RecordStore

logger = logging.getLogger(__name__)


def queue_document(role: WorkerRole) -> str:
    return f"pending/{role.value}.json"


class QueueManager:
    """Persist each role's pending work in ``pending/<role>.json``.

    ``enqueue`` reports failures through :class:`CoordinatorResult`; the
    read-side helpers raise :class:`UnknownRoleError` for unregistered roles.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        max_length: int = 3,
        task_duration_ms: int = 300_000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._max_length = max_length
        self._task_duration_ms = task_duration_ms
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def max_length(self) -> int:
        return self._max_length

    def _load(self, role: WorkerRole) -> QueueDocument:
        document = self._store.read(
            queue_document(role),
            QueueDocument,
            lambda: QueueDocument(role=role, max_length=self._max_length),
        )
        document.max_length = self._max_length
        return document

    def _save(self, document: QueueDocument) -> None:
        self._store.write(queue_document(document.role), document)

    @coordinator_operation
    def enqueue(self, role: str | WorkerRole, item: QueueItem) -> CoordinatorResult:
        try:
            resolved = resolve_role(role)
        except UnknownRoleError as exc:
            return CoordinatorResult.fail(ErrorCode.UNKNOWN_ROLE, str(exc))

        document = self._load(resolved)
        if len(document.items) >= self._max_length:
            return CoordinatorResult.fail(
                ErrorCode.QUEUE_FULL,
                f"Queue for {resolved.value} is full ({self._max_length} items)",
                max_length=self._max_length,
            )

        queued = item.model_copy(update={"enqueued_at": self._clock(), "status": "pending"})
        document.items.append(queued)
        self._save(document)

        position = len(document.items)
        logger.info(
            "Task enqueued",
            extra={"role": resolved.value, "task_id": queued.task_id, "position": position},
        )
        return CoordinatorResult.ok(
            f"Queued {queued.task_id} for {resolved.value} at position {position}",
            position=position,
            estimated_wait_ms=position * self._task_duration_ms,
        )

    def dequeue(self, role: str | WorkerRole) -> QueueItem | None:
        document = self._load(resolve_role(role))
        if not document.items:
            return None
        head = document.items.pop(0)
        self._save(document)
        return head

    def peek(self, role: str | WorkerRole) -> QueueItem | None:
        items = self._load(resolve_role(role)).items
        return items[0] if items else None

    def clear(self, role: str | WorkerRole) -> None:
        resolved = resolve_role(role)
        self._save(QueueDocument(role=resolved, max_length=self._max_length))

    def snapshot(self, role: str | WorkerRole) -> list[QueueItem]:
        return list(self._load(resolve_role(role)).items)

    def length(self, role: str | WorkerRole) -> int:
        return len(self.snapshot(role))

    def is_full(self, role: str | WorkerRole) -> bool:
        return self.length(role) >= self._max_length

    def lengths(self) -> dict[str, int]:
        return {role.value: self.length(role) for role in CORE_ROLES}

    def pick_by_priority(self, role: str | WorkerRole) -> list[QueueItem]:
        """Return the queue ordered by priority, highest first; ties keep enqueue order."""

        # sorted() is stable, so equal priorities stay FIFO.
        return sorted(self.snapshot(role), key=lambda item: -item.priority)


__all__ = ["QueueManager", "queue_document"]
