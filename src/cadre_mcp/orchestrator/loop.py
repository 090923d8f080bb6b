"""Polling scheduler that drains queues into idle workers and advances finished tasks."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from ..coordination.queues import QueueManager
from ..pipeline.router import PipelineRouter, StageResult
from ..results import CoordinatorResult, ErrorCode
from ..roles import CORE_ROLES, WorkerRole
from ..storage import Assignment, ChromaStore, ProgressRecord, QueueItem, record_audit
from ..workers import WorkerConfig, WorkerSupervisor, WorkerSupervisorError
from .assignments import AssignmentStore
from .entry_points import EntryPoint
from .notifier import LoggingNotifier, Notifier
from .progress import ProgressStore

logger = logging.getLogger(__name__)

# Failures that clear up on their own; the work is retried on a later tick.
_RETRYABLE_ERRORS = frozenset({ErrorCode.QUEUE_FULL, ErrorCode.STATE_ERROR, ErrorCode.WORKFLOW_INVALID})


def build_instruction(item: QueueItem) -> str:
    """Return the command typed into the worker for ``item``."""

    if item.handoff_path:
        return f"/skill plan-execute --handoff {item.handoff_path}"
    if item.plan_path:
        return f"/skill plan-execute --plan {item.plan_path}"
    return f"/skill plan-execute --task {item.task_id}"


class Orchestrator:
    """Own the single asyncio task that drives dispatch.

    Each tick polls entry points, reacts to progress reported by workers and
    then hands queued work to any role without a dispatched assignment.
    """

    def __init__(
        self,
        router: PipelineRouter,
        queues: QueueManager,
        progress: ProgressStore,
        assignments: AssignmentStore,
        supervisor: WorkerSupervisor,
        *,
        notifier: Notifier | None = None,
        entry_points: Iterable[EntryPoint] = (),
        audit: ChromaStore | None = None,
        interval_seconds: float = 30.0,
        worker_config: WorkerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._router = router
        self._queues = queues
        self._progress = progress
        self._assignments = assignments
        self._supervisor = supervisor
        self._notifier = notifier or LoggingNotifier(audit)
        self._entry_points = list(entry_points)
        self._audit = audit
        self._interval_seconds = interval_seconds
        self._worker_config = worker_config
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._stop_event = asyncio.Event()
        self._loop_count = 0
        self._running = False

    @property
    def loop_count(self) -> int:
        return self._loop_count

    async def initialize(self) -> None:
        for role in CORE_ROLES:
            if await self._supervisor.is_running(role):
                continue
            result = await self._supervisor.spawn(role, self._worker_config)
            if result.status == "error":
                logger.error(
                    "Failed to start worker",
                    extra={"role": role.value, "error": result.error},
                )
            else:
                logger.info("Worker started", extra={"role": role.value, "session": result.session_name})

    async def run(self) -> None:
        self._stop_event.clear()
        self._running = True
        logger.info("Orchestrator starting", extra={"interval_seconds": self._interval_seconds})
        try:
            await self.initialize()
            while not self._stop_event.is_set():
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Orchestrator tick failed")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Orchestrator stopped", extra={"loops": self._loop_count})

    def stop(self) -> None:
        self._stop_event.set()

    async def tick(self) -> None:
        self._loop_count += 1
        self._poll_entry_points()
        self._monitor_assignments()
        await self._process_queues()

    def submit_task(
        self,
        task_id: str,
        *,
        description: str | None = None,
        workflow: str | None = None,
        plan_path: str | None = None,
        project_id: str = "",
        priority: int = 0,
        title: str | None = None,
    ) -> CoordinatorResult:
        return self._router.submit(
            task_id,
            description=description,
            workflow=workflow,
            plan_path=plan_path,
            project_id=project_id,
            priority=priority,
            title=title,
        )

    async def status(self) -> dict[str, Any]:
        assignments = self._assignments.load()
        return {
            "running": self._running,
            "loop_count": self._loop_count,
            "assignments": {task: item.model_dump(mode="json") for task, item in assignments.items()},
            "queues": self._queues.lengths(),
            "workers": [role.value for role in await self._supervisor.list_running()],
        }

    def _poll_entry_points(self) -> None:
        for entry_point in self._entry_points:
            for polled in entry_point.poll():
                submission = polled.submission
                result = self.submit_task(
                    submission.task_id,
                    description=submission.description,
                    workflow=submission.workflow,
                    plan_path=submission.plan_path,
                    project_id=submission.project_id,
                    priority=submission.priority,
                )
                if result.success:
                    entry_point.acknowledge(polled, accepted=True)
                    continue

                extra = {
                    "entry_point": entry_point.name,
                    "task_id": submission.task_id,
                    "error": result.error.value if result.error else None,
                }
                if result.error in _RETRYABLE_ERRORS:
                    logger.info("Submission deferred", extra=extra)
                    continue
                logger.warning("Submission refused", extra=extra)
                entry_point.acknowledge(polled, accepted=False)

    def _escalate(self, assignment: Assignment, kind: str, detail: dict[str, Any]) -> None:
        if assignment.escalated:
            return
        self._notifier.notify(kind, assignment.task_id, {"role": assignment.role.value, **detail})
        assignment.escalated = True

    def _monitor_assignments(self) -> None:
        for task_id, assignment in self._assignments.load().items():
            if assignment.status in ("blocked", "failed") and assignment.escalated:
                continue

            record = self._progress.read(task_id)
            if record is None:
                logger.warning("No progress record for assigned task", extra={"task_id": task_id})
                continue

            if record.status == "COMPLETE":
                self._complete_stage(assignment, record)
            elif record.status in ("BLOCKED", "FAILED"):
                assignment.status = "blocked" if record.status == "BLOCKED" else "failed"
                assignment.note = record.blockers
                self._escalate(assignment, f"task_{assignment.status}", {"blockers": record.blockers})
                self._assignments.put(assignment)

    def _complete_stage(self, assignment: Assignment, record: ProgressRecord) -> None:
        result = StageResult(
            workflow=assignment.workflow,
            status="COMPLETE",
            confidence=record.confidence,
            summary=record.summary,
            files_changed=record.files_changed,
            learnings=record.learnings,
            blockers=record.blockers,
            recommendations=record.recommendations,
        )
        outcome = self._router.advance(
            assignment.task_id,
            assignment.role,
            result,
            project_id=assignment.project_id,
            title=assignment.title,
            priority=assignment.priority,
            description=record.description,
        )

        if outcome.success:
            self._assignments.remove(assignment.task_id)
            record_audit(
                self._audit,
                "stage_advanced",
                actor=assignment.task_id,
                data={
                    "from": assignment.role.value,
                    "complete": bool(outcome.get("complete")),
                    "next_agent": outcome.get("next_agent"),
                },
            )
            return

        if outcome.error in (ErrorCode.STATE_ERROR, ErrorCode.WORKFLOW_INVALID):
            logger.warning(
                "Advance deferred",
                extra={"task_id": assignment.task_id, "error": outcome.error.value},
            )
            return
        if outcome.error == ErrorCode.QUEUE_FULL:
            assignment.status = "awaiting_capacity"
            assignment.note = outcome.message
        else:
            assignment.status = (
                "blocked" if outcome.error == ErrorCode.CONFIDENCE_BELOW_THRESHOLD else "failed"
            )
            assignment.note = outcome.message
            self._escalate(
                assignment,
                outcome.error.value.lower() if outcome.error else "advance_failed",
                {key: value for key, value in outcome.to_dict().items() if key != "success"},
            )
        self._assignments.put(assignment)

    async def _process_queues(self) -> None:
        busy = {
            assignment.role
            for assignment in self._assignments.load().values()
            if assignment.status == "dispatched"
        }
        for role in CORE_ROLES:
            if role in busy or self._queues.length(role) == 0:
                continue
            if not await self._supervisor.is_running(role):
                spawned = await self._supervisor.spawn(role, self._worker_config)
                if spawned.status == "error":
                    logger.warning(
                        "Worker unavailable; leaving work queued",
                        extra={"role": role.value, "error": spawned.error},
                    )
                    continue
            item = self._queues.dequeue(role)
            if item is not None:
                await self._dispatch(role, item)

    async def _dispatch(self, role: WorkerRole, item: QueueItem) -> None:
        self._progress.create(role, item.task_id, item.description)
        assignment = Assignment(
            task_id=item.task_id,
            role=role,
            workflow=item.workflow,
            project_id=item.project_id,
            title=item.title,
            priority=item.priority,
            started_at=self._clock(),
        )
        self._assignments.put(assignment)

        instruction = build_instruction(item)
        try:
            await self._supervisor.dispatch(role, instruction)
        except WorkerSupervisorError as exc:
            logger.error("Dispatch failed", extra={"role": role.value, "task_id": item.task_id, "error": str(exc)})
            assignment.status = "failed"
            assignment.note = str(exc)
            self._escalate(assignment, "dispatch_failed", {"error": str(exc)})
            self._assignments.put(assignment)
            return

        logger.info("Task dispatched", extra={"role": role.value, "task_id": item.task_id})
        record_audit(
            self._audit,
            "task_dispatched",
            actor=item.task_id,
            data={"role": role.value, "instruction": instruction},
        )


__all__ = ["Orchestrator", "build_instruction"]
