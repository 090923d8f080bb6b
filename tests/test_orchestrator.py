from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import pytest

from cadre_mcp.coordination import QueueManager
from cadre_mcp.orchestrator import AssignmentStore, InboxEntryPoint, Orchestrator, ProgressStore
from cadre_mcp.pipeline import HandoffStore, PipelineRouter
from cadre_mcp.results import ErrorCode
from cadre_mcp.roles import CORE_ROLES, WorkerRole
from cadre_mcp.storage import Assignment, QueueItem, RecordStore
from cadre_mcp.workers import FakeWorkerSupervisor
from cadre_mcp.workflows import WorkflowLoader


class StubNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def notify(self, kind: str, task_id: str, detail: dict[str, Any]) -> None:
        self.calls.append((kind, task_id, detail))


class ExplodingEntryPoint:
    name = "exploding"

    def poll(self):
        raise RuntimeError("boom")


class Harness:
    def __init__(self, tmp_path: Path, clock, supervisor=None, entry_points=(), workflows=None) -> None:
        self.store = RecordStore(tmp_path)
        self.queues = QueueManager(self.store, clock=clock)
        self.router = PipelineRouter(
            workflows or WorkflowLoader([]), self.queues, HandoffStore(self.store), clock=clock
        )
        self.progress = ProgressStore(self.store, clock=clock)
        self.assignments = AssignmentStore(self.store)
        self.supervisor = supervisor or FakeWorkerSupervisor(running=CORE_ROLES)
        self.notifier = StubNotifier()
        self.orchestrator = Orchestrator(
            self.router,
            self.queues,
            self.progress,
            self.assignments,
            self.supervisor,
            notifier=self.notifier,
            entry_points=entry_points,
            interval_seconds=0.01,
            clock=clock,
        )

    def tick(self) -> None:
        asyncio.run(self.orchestrator.tick())


@pytest.fixture
def harness(tmp_path: Path, clock) -> Harness:
    return Harness(tmp_path, clock)


def test_initialize_spawns_missing_workers(tmp_path: Path, clock) -> None:
    supervisor = FakeWorkerSupervisor(running=[WorkerRole.BACKEND])
    harness = Harness(tmp_path, clock, supervisor)

    asyncio.run(harness.orchestrator.initialize())

    assert set(supervisor.spawned) == {WorkerRole.REVIEW, WorkerRole.FRONTEND, WorkerRole.QA}


def test_submitted_task_is_dispatched_to_entry_stage(harness: Harness) -> None:
    assert harness.orchestrator.submit_task("T-1", description="Add endpoint").success

    harness.tick()

    assert harness.supervisor.dispatched == [(WorkerRole.BACKEND, "/skill plan-execute --task T-1")]
    assignment = harness.assignments.get("T-1")
    assert assignment.role is WorkerRole.BACKEND
    assert assignment.status == "dispatched"
    record = harness.progress.read("T-1")
    assert record.status == "IN_PROGRESS"
    assert record.log[0].message == "Task assigned to backend"
    assert harness.queues.length("backend") == 0


def test_busy_role_keeps_work_queued(harness: Harness) -> None:
    harness.orchestrator.submit_task("T-1")
    harness.tick()
    harness.orchestrator.submit_task("T-2")

    harness.tick()

    assert len(harness.supervisor.dispatched) == 1
    assert [item.task_id for item in harness.queues.snapshot("backend")] == ["T-2"]


def test_completed_stage_advances_with_handoff(harness: Harness) -> None:
    harness.orchestrator.submit_task("T-1")
    harness.tick()
    harness.progress.update("T-1", status="COMPLETE", summary="API done", files_changed=["api.py"])

    harness.tick()

    role, instruction = harness.supervisor.dispatched[-1]
    assert role is WorkerRole.REVIEW
    assert instruction.startswith("/skill plan-execute --handoff ")
    assert instruction.endswith("HANDOFF_T-1_backend_to_review.md")
    assert harness.assignments.get("T-1").role is WorkerRole.REVIEW
    assert harness.progress.read("T-1").role is WorkerRole.REVIEW
    assert harness.router.read_handoff("T-1", "backend", "review").summary == "API done"


def test_low_confidence_review_blocks_and_escalates_once(harness: Harness) -> None:
    harness.orchestrator.submit_task("T-1")
    harness.tick()
    harness.progress.update("T-1", status="COMPLETE")
    harness.tick()
    harness.progress.update("T-1", status="COMPLETE", confidence=0.4)

    harness.tick()
    harness.tick()

    assignment = harness.assignments.get("T-1")
    assert assignment.status == "blocked"
    assert assignment.escalated
    assert [call[0] for call in harness.notifier.calls] == ["confidence_below_threshold"]
    assert harness.queues.length("frontend") == 0


def test_blocked_progress_escalates_once(harness: Harness) -> None:
    harness.orchestrator.submit_task("T-1")
    harness.tick()
    harness.progress.update("T-1", status="BLOCKED", blockers="Missing credentials")

    harness.tick()
    harness.tick()

    assignment = harness.assignments.get("T-1")
    assert assignment.status == "blocked"
    assert assignment.note == "Missing credentials"
    assert harness.notifier.calls == [
        ("task_blocked", "T-1", {"role": "backend", "blockers": "Missing credentials"})
    ]


def test_dispatch_failure_marks_assignment_failed(tmp_path: Path, clock) -> None:
    supervisor = FakeWorkerSupervisor(running=CORE_ROLES, fail_dispatch=[WorkerRole.BACKEND])
    harness = Harness(tmp_path, clock, supervisor)
    harness.orchestrator.submit_task("T-1")

    harness.tick()

    assignment = harness.assignments.get("T-1")
    assert assignment.status == "failed"
    assert [call[0] for call in harness.notifier.calls] == ["dispatch_failed"]


def test_idle_worker_is_started_before_dispatch(tmp_path: Path, clock) -> None:
    supervisor = FakeWorkerSupervisor()
    harness = Harness(tmp_path, clock, supervisor)
    harness.orchestrator.submit_task("T-1")

    harness.tick()

    assert supervisor.spawned == [WorkerRole.BACKEND]
    assert supervisor.dispatched[0][0] is WorkerRole.BACKEND


def test_full_next_queue_waits_for_capacity(harness: Harness) -> None:
    harness.orchestrator.submit_task("T-1")
    harness.tick()
    for index in range(3):
        harness.queues.enqueue("review", QueueItem(task_id=f"other-{index}"))
    harness.progress.update("T-1", status="COMPLETE")

    harness.tick()
    assert harness.assignments.get("T-1").status == "awaiting_capacity"
    assert harness.notifier.calls == []

    harness.tick()
    assert harness.assignments.get("T-1") is None
    assert harness.queues.snapshot("review")[-1].task_id == "T-1"


def test_inbox_submissions_are_processed_once(tmp_path: Path, clock) -> None:
    store = RecordStore(tmp_path)
    store.write_text("inbox/a.json", json.dumps({"task_id": "T-9", "plan_path": "plans/T-9.md"}))
    store.write_text("inbox/bad.json", json.dumps({"description": "no id"}))
    harness = Harness(tmp_path, clock, entry_points=[InboxEntryPoint(store)])

    harness.tick()
    harness.tick()

    assert harness.supervisor.dispatched == [(WorkerRole.BACKEND, "/skill plan-execute --plan plans/T-9.md")]
    assert (tmp_path / "inbox" / "processed" / "a.json").exists()
    assert (tmp_path / "inbox" / "rejected" / "bad.json").exists()
    assert store.list_documents("inbox") == []


def test_inbox_submission_waits_for_queue_capacity(tmp_path: Path, clock) -> None:
    store = RecordStore(tmp_path)
    harness = Harness(tmp_path, clock, entry_points=[InboxEntryPoint(store)])
    for task_id in ("A", "B", "C"):
        harness.queues.enqueue(WorkerRole.BACKEND, QueueItem(task_id=task_id))
    store.write_text("inbox/d.json", json.dumps({"task_id": "D"}))

    harness.tick()

    assert (tmp_path / "inbox" / "d.json").exists()
    assert not (tmp_path / "inbox" / "processed").exists()
    assert [item.task_id for item in harness.queues.snapshot("backend")] == ["B", "C"]

    harness.tick()

    assert [item.task_id for item in harness.queues.snapshot("backend")] == ["B", "C", "D"]
    assert (tmp_path / "inbox" / "processed" / "d.json").exists()
    assert store.list_documents("inbox") == []


def test_inbox_rejects_task_ids_that_are_not_path_segments(tmp_path: Path, clock) -> None:
    store = RecordStore(tmp_path)
    store.write_text("inbox/escape.json", json.dumps({"task_id": "../assignments"}))
    harness = Harness(tmp_path, clock, entry_points=[InboxEntryPoint(store)])

    harness.tick()

    assert (tmp_path / "inbox" / "rejected" / "escape.json").exists()
    assert harness.supervisor.dispatched == []
    assert not (tmp_path / "assignments.json").exists()
    assert harness.orchestrator.submit_task("../assignments").error is ErrorCode.INVALID_ARGS


def test_invalid_workflows_defer_work_instead_of_failing_it(tmp_path: Path, clock) -> None:
    workflows_dir = tmp_path / "workflows"
    workflows_dir.mkdir()
    (workflows_dir / "bad.yaml").write_text("name: bad\npipeline: [backend, nope]\n", encoding="utf-8")
    store = RecordStore(tmp_path / "state")
    harness = Harness(
        tmp_path / "state",
        clock,
        entry_points=[InboxEntryPoint(store)],
        workflows=WorkflowLoader([workflows_dir]),
    )
    harness.assignments.put(Assignment(task_id="T-1", role=WorkerRole.BACKEND, started_at=clock.now))
    harness.progress.create(WorkerRole.BACKEND, "T-1")
    harness.progress.update("T-1", status="COMPLETE")
    store.write_text("inbox/t2.json", json.dumps({"task_id": "T-2"}))

    harness.tick()

    assert harness.assignments.get("T-1").status == "dispatched"
    assert harness.notifier.calls == []
    assert (tmp_path / "state" / "inbox" / "t2.json").exists()


def test_run_until_stopped(harness: Harness) -> None:
    async def scenario() -> dict[str, Any]:
        task = asyncio.create_task(harness.orchestrator.run())
        while harness.orchestrator.loop_count < 2:
            await asyncio.sleep(0.005)
        harness.orchestrator.stop()
        await asyncio.wait_for(task, timeout=1)
        return await harness.orchestrator.status()

    status = asyncio.run(scenario())

    assert status["running"] is False
    assert status["loop_count"] >= 2
    assert status["workers"] == [role.value for role in CORE_ROLES]


def test_failing_tick_is_logged_and_loop_continues(
    tmp_path: Path, clock, caplog: pytest.LogCaptureFixture
) -> None:
    harness = Harness(tmp_path, clock, entry_points=[ExplodingEntryPoint()])

    async def scenario() -> None:
        task = asyncio.create_task(harness.orchestrator.run())
        while harness.orchestrator.loop_count < 2:
            await asyncio.sleep(0.005)
        harness.orchestrator.stop()
        await asyncio.wait_for(task, timeout=1)

    with caplog.at_level(logging.ERROR):
        asyncio.run(scenario())

    assert "Orchestrator tick failed" in caplog.text
    assert harness.orchestrator.loop_count >= 2
