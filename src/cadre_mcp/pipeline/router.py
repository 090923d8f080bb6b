"""Stage state machine that moves tasks through a workflow."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal

from pydantic import BaseModel, Field

from ..coordination.queues import QueueManager
from ..results import CoordinatorResult, ErrorCode, coordinator_operation
from ..roles import REVIEW_STAGE, UnknownRoleError, WorkerRole, resolve_role
from ..storage import ChromaStore, HandoffRecord, QueueItem, is_valid_task_id, record_audit
from ..workflows import Workflow, WorkflowLoader
from .handoff import HandoffStore

logger = logging.getLogger(__name__)


class StageResult(BaseModel):
    """What a worker reports when it finishes a stage."""

    workflow: str | None = None
    status: Literal["COMPLETE", "BLOCKED", "FAILED"] = "COMPLETE"
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    summary: str | None = None
    files_changed: list[str] = Field(default_factory=list)
    learnings: list[str] = Field(default_factory=list)
    blockers: str | None = None
    recommendations: list[str] = Field(default_factory=list)


@dataclass(slots=True)
class StageInfo:
    agent: str
    index: int
    total: int
    is_first: bool
    is_last: bool
    previous: WorkerRole | None
    next: WorkerRole | None


class PipelineRouter:
    """Decide where a task goes after each stage and write the handoff for it."""

    def __init__(
        self,
        workflows: WorkflowLoader,
        queues: QueueManager,
        handoffs: HandoffStore,
        *,
        default_confidence: float = 0.8,
        audit: ChromaStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._workflows = workflows
        self._audit = audit
        self._queues = queues
        self._handoffs = handoffs
        self._default_confidence = default_confidence
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def handoffs(self) -> HandoffStore:
        return self._handoffs

    def workflow(self, name: str | None = None) -> Workflow:
        return self._workflows.get(name)

    @coordinator_operation
    def route(self, workflow: str | None = None) -> CoordinatorResult:
        selected = self.workflow(workflow)
        return CoordinatorResult.ok(
            f"Workflow {selected.name} starts at {selected.entry_stage.value}",
            workflow=selected.name,
            entry_stage=selected.entry_stage,
            pipeline=list(selected.pipeline),
            review_threshold=selected.review_threshold,
        )

    @coordinator_operation
    def submit(
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
        """Enqueue a new task for the entry stage of its workflow."""

        if not task_id:
            return CoordinatorResult.fail(ErrorCode.MISSING_ARGS, "Task id is required")
        if not is_valid_task_id(task_id):
            return CoordinatorResult.fail(ErrorCode.INVALID_ARGS, f"Invalid task id: {task_id!r}")

        selected = self.workflow(workflow)
        entry = selected.entry_stage
        queued = self._queues.enqueue(
            entry,
            QueueItem(
                task_id=task_id,
                project_id=project_id,
                title=title or task_id,
                priority=priority,
                workflow=selected.name,
                description=description,
                plan_path=plan_path,
            ),
        )
        if not queued.success:
            return queued

        record_audit(
            self._audit,
            "task_submitted",
            actor=task_id,
            data={"workflow": selected.name, "entry_stage": entry.value},
        )
        return CoordinatorResult.ok(
            f"Task {task_id} submitted to {entry.value}",
            task_id=task_id,
            workflow=selected.name,
            entry_stage=entry,
            position=queued.get("position"),
            estimated_wait_ms=queued.get("estimated_wait_ms"),
        )

    @coordinator_operation
    def advance(
        self,
        task_id: str,
        current_stage: str | WorkerRole,
        result: StageResult | None = None,
        *,
        project_id: str = "",
        title: str | None = None,
        priority: int = 0,
        description: str | None = None,
    ) -> CoordinatorResult:
        if not is_valid_task_id(task_id):
            return CoordinatorResult.fail(ErrorCode.INVALID_ARGS, f"Invalid task id: {task_id!r}")
        result = result or StageResult()
        selected = self.workflow(result.workflow)
        index = selected.index_of(current_stage)
        if index < 0:
            return CoordinatorResult.fail(
                ErrorCode.AGENT_NOT_IN_PIPELINE,
                f"Agent {current_stage} is not part of workflow {selected.name}",
            )

        stage = selected.pipeline[index]
        if index == len(selected.pipeline) - 1:
            logger.info("Task completed pipeline", extra={"task_id": task_id, "workflow": selected.name})
            return CoordinatorResult.ok(
                f"Task {task_id} completed workflow {selected.name}", complete=True
            )

        confidence = self._default_confidence if result.confidence is None else result.confidence
        if (
            stage == REVIEW_STAGE
            and result.confidence is not None
            and result.confidence < selected.review_threshold
        ):
            logger.warning(
                "Review confidence below threshold",
                extra={"task_id": task_id, "confidence": confidence, "threshold": selected.review_threshold},
            )
            return CoordinatorResult.fail(
                ErrorCode.CONFIDENCE_BELOW_THRESHOLD,
                f"Confidence {confidence} is below the review threshold {selected.review_threshold}",
                confidence=confidence,
                threshold=selected.review_threshold,
                suggestion="block_and_notify",
            )

        next_stage = selected.pipeline[index + 1]
        if self._queues.is_full(next_stage):
            return CoordinatorResult.fail(
                ErrorCode.QUEUE_FULL,
                f"Queue for {next_stage.value} is full",
                next_agent=next_stage,
                max_length=self._queues.max_length,
            )

        handoff = HandoffRecord(
            task_id=task_id,
            from_stage=stage,
            to_stage=next_stage,
            status="FAILED" if result.status == "FAILED" else "COMPLETE",
            confidence=confidence,
            summary=result.summary or f"Completed by {stage.value}",
            files_changed=result.files_changed,
            learnings=result.learnings,
            blockers=result.blockers or "None",
            recommendations=result.recommendations,
            created_at=self._clock(),
        )
        handoff_path = self._handoffs.save(handoff)

        queued = self._queues.enqueue(
            next_stage,
            QueueItem(
                task_id=task_id,
                project_id=project_id,
                title=title or task_id,
                priority=priority,
                workflow=selected.name,
                description=description,
                handoff_path=str(handoff_path),
                handoff_from=stage,
            ),
        )
        if not queued.success:
            return queued

        logger.info(
            "Task advanced",
            extra={"task_id": task_id, "from": stage.value, "to": next_stage.value},
        )
        return CoordinatorResult.ok(
            f"Task {task_id} handed off from {stage.value} to {next_stage.value}",
            complete=False,
            next_agent=next_stage,
            handoff_path=str(handoff_path),
            queue_position=queued.get("position"),
            estimated_wait_ms=queued.get("estimated_wait_ms"),
        )

    def get_next_agent(self, stage: str | WorkerRole, workflow: str | None = None) -> WorkerRole | None:
        selected = self.workflow(workflow)
        index = selected.index_of(stage)
        if index < 0 or index == len(selected.pipeline) - 1:
            return None
        return selected.pipeline[index + 1]

    def get_stage_info(self, stage: str | WorkerRole, workflow: str | None = None) -> StageInfo:
        selected = self.workflow(workflow)
        index = selected.index_of(stage)
        total = len(selected.pipeline)
        agent = stage.value if isinstance(stage, WorkerRole) else str(stage)
        if index < 0:
            return StageInfo(agent, -1, total, False, False, None, None)
        return StageInfo(
            agent=agent,
            index=index,
            total=total,
            is_first=index == 0,
            is_last=index == total - 1,
            previous=selected.pipeline[index - 1] if index > 0 else None,
            next=selected.pipeline[index + 1] if index < total - 1 else None,
        )

    def needs_review_before_advance(self, stage: str | WorkerRole, workflow: str | None = None) -> bool:
        """True when the stage after ``stage`` is the review stage."""

        return self.get_next_agent(stage, workflow) == REVIEW_STAGE

    def read_handoff(
        self,
        task_id: str,
        from_stage: str | WorkerRole,
        to_stage: str | WorkerRole,
    ) -> HandoffRecord | None:
        if not is_valid_task_id(task_id):
            return None
        try:
            return self._handoffs.read(task_id, resolve_role(from_stage), resolve_role(to_stage))
        except UnknownRoleError:
            return None

    def list_handoffs(self, task_id: str) -> list[HandoffRecord]:
        if not is_valid_task_id(task_id):
            return []
        return self._handoffs.list_handoffs(task_id)


__all__ = ["PipelineRouter", "StageInfo", "StageResult"]
