"""Tool registration for Cadre MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from ..config import CadreSettings
from ..pipeline import StageResult
from ..results import CoordinatorResult, ErrorCode
from ..roles import CORE_ROLES, UnknownRoleError, resolve_role
from ..services import CadreServices
from ..storage import QueueItem, RecordStoreError, is_valid_task_id
from ..workflows import WorkflowLoadError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    create_session: Any
    list_sessions: Any
    end_session: Any
    claim: Any
    release: Any
    heartbeat: Any
    cleanup_locks: Any
    cleanup: Any
    prune_checkouts: Any
    add_project: Any
    list_projects: Any
    remove_checkout: Any
    enqueue_task: Any
    queue_status: Any
    submit_task: Any
    advance_task: Any
    stage_info: Any
    list_handoffs: Any
    report_progress: Any
    orchestrator_status: Any


def _respond(
    context: Context | None,
    result: CoordinatorResult,
    action: str,
    **extra: Any,
) -> dict[str, Any]:
    level = "info" if result.success else "warning"
    _emit_log(
        context,
        level,
        action,
        extra={"success": result.success, "error": result.error.value if result.error else None, **extra},
    )
    return result.to_dict()


def register_tools(
    server: FastMCP,
    *,
    services: CadreServices,
    settings: CadreSettings,
) -> ToolHandles:
    """Register Cadre's MCP tools on the server."""

    sessions = services.sessions
    locks = services.locks
    cleanup_service = services.cleanup
    projects = services.projects
    queues = services.queues
    router = services.router
    progress = services.progress

    def _resolve(role: str):
        try:
            return resolve_role(role)
        except UnknownRoleError as exc:
            raise ValueError(str(exc)) from exc

    # Sessions -----------------------------------------------------------

    def _create_session(session_id: str | None = None, context: Context | None = None) -> dict[str, Any]:
        """Start a new coordination session."""

        try:
            session = sessions.create_session(session_id)
        except RecordStoreError as exc:
            failure = CoordinatorResult.fail(ErrorCode.STATE_ERROR, str(exc))
            return _respond(context, failure, "Create session", session_id=session_id)
        _emit_log(context, "info", "Created session", extra={"session_id": session.id})
        return CoordinatorResult.ok(f"Session created: {session.id}", session=session).to_dict()

    def _list_sessions(show_all: bool = False, context: Context | None = None) -> dict[str, Any]:
        """List sessions, flagging those idle past the session TTL."""

        return _respond(context, sessions.list_sessions_summary(show_all=show_all), "Listed sessions")

    def _end_session(
        session_id: str | None = None,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        result = sessions.end_session(session_id, force=force)
        return _respond(context, result, "End session requested", session_id=session_id)

    tool_create_session = server.tool(
        name="create_session",
        description="Create a coordination session. Locks are claimed on behalf of a session.",
    )(_create_session)

    tool_list_sessions = server.tool(
        name="list_sessions",
        description="List active sessions (show_all=true includes ended ones) with an is_old flag.",
    )(_list_sessions)

    tool_end_session = server.tool(
        name="end_session",
        description="End a session. Fails with ACTIVE_LOCKS while locks are held unless force=true.",
    )(_end_session)

    # Locks --------------------------------------------------------------

    def _claim(
        project: str | None = None,
        task: str | None = None,
        *,
        owner: str | None = None,
        ttl_minutes: int | None = None,
        session_id: str | None = None,
        no_checkout: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Claim an exclusive lease over a project and/or task."""

        result = locks.claim(
            project,
            task,
            owner=owner,
            ttl_minutes=ttl_minutes,
            session=session_id,
            no_checkout=no_checkout,
        )
        return _respond(context, result, "Claim requested", project=project, task_id=task)

    def _release(
        lock_id: str | None = None,
        *,
        release_all: bool = False,
        owner: str | None = None,
        session_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        result = locks.release(lock_id, release_all=release_all, owner=owner, session=session_id)
        return _respond(context, result, "Release requested", lock_id=lock_id)

    def _heartbeat(
        *,
        owner: str | None = None,
        lock_id: str | None = None,
        session_id: str | None = None,
        ttl_minutes: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        result = locks.heartbeat(owner=owner, lock_id=lock_id, session=session_id, ttl_minutes=ttl_minutes)
        return _respond(context, result, "Heartbeat", lock_id=lock_id)

    def _cleanup_locks(force: bool = False, context: Context | None = None) -> dict[str, Any]:
        return _respond(context, locks.cleanup_locks(force=force), "Lock cleanup", force=force)

    tool_claim = server.tool(
        name="claim",
        description=(
            "Claim a lock on a project and/or task for the current session. When a task "
            "of a registered project is given, an isolated git worktree is provisioned. "
            "Returns LOCKED with the conflicting lock when another owner holds it."
        ),
    )(_claim)

    tool_release = server.tool(
        name="release",
        description="Release one lock by id, or all locks of the owner with release_all=true.",
    )(_release)

    tool_heartbeat = server.tool(
        name="heartbeat",
        description="Extend the expiry of the owner's active locks and bump session activity.",
    )(_heartbeat)

    tool_cleanup_locks = server.tool(
        name="cleanup_locks",
        description=(
            "Mark lapsed locks as expired. With force=true, also expire locks acquired "
            f"more than {settings.force_expire_hours:g} hours ago."
        ),
    )(_cleanup_locks)

    # Cleanup and checkouts ------------------------------------------------

    def _cleanup(
        session_ttl_hours: float | None = None,
        dry_run: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        result = cleanup_service.cleanup(session_ttl_hours=session_ttl_hours, dry_run=dry_run)
        return _respond(context, result, "Cleanup", dry_run=dry_run)

    def _prune_checkouts(dry_run: bool = False, context: Context | None = None) -> dict[str, Any]:
        return _respond(context, cleanup_service.prune_checkouts(dry_run=dry_run), "Prune checkouts")

    def _remove_checkout(
        project: str,
        task_id: str,
        force: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        result = cleanup_service.remove_task_checkout(project, task_id, force=force)
        return _respond(context, result, "Remove checkout", project=project, task_id=task_id)

    tool_cleanup = server.tool(
        name="cleanup",
        description=(
            "End sessions idle longer than session_ttl_hours, release their locks, expire "
            "lapsed locks and report orphaned worktrees. Use dry_run=true to preview."
        ),
    )(_cleanup)

    tool_prune = server.tool(
        name="prune_checkouts",
        description="Remove worktrees not referenced by any active session.",
    )(_prune_checkouts)

    tool_remove_checkout = server.tool(
        name="remove_checkout",
        description="Remove the worktree of a task. Refuses when it has uncommitted changes unless force=true.",
    )(_remove_checkout)

    # Projects -------------------------------------------------------------

    def _add_project(
        path: str,
        name: str | None = None,
        remote: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        return _respond(context, projects.add_project(name, path, remote), "Add project", path=path)

    def _list_projects(context: Context | None = None) -> dict[str, Any]:
        catalog = projects.list_projects()
        _emit_log(context, "debug", "Listing projects", extra={"count": len(catalog)})
        return CoordinatorResult.ok(f"Found {len(catalog)} project(s)", projects=catalog).to_dict()

    tool_add_project = server.tool(
        name="add_project",
        description="Register a project (git repository path) so tasks can get isolated worktrees.",
    )(_add_project)

    tool_list_projects = server.tool(
        name="list_projects",
        description="List registered projects.",
    )(_list_projects)

    # Queues and pipeline -----------------------------------------------------

    def _enqueue_task(
        role: str,
        task_id: str,
        *,
        project_id: str = "",
        title: str | None = None,
        priority: int = 0,
        workflow: str = "default",
        description: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Append a task to one worker's queue directly."""

        if not is_valid_task_id(task_id):
            failure = CoordinatorResult.fail(ErrorCode.INVALID_ARGS, f"Invalid task id: {task_id!r}")
            return _respond(context, failure, "Enqueue", role=role, task_id=task_id)
        item = QueueItem(
            task_id=task_id,
            project_id=project_id,
            title=title or task_id,
            priority=priority,
            workflow=workflow,
            description=description,
        )
        return _respond(context, queues.enqueue(role, item), "Enqueue", role=role, task_id=task_id)

    def _queue_status(role: str | None = None, context: Context | None = None) -> dict[str, Any]:
        roles = [_resolve(role)] if role else list(CORE_ROLES)
        snapshot = {
            queue_role.value: {
                "length": queues.length(queue_role),
                "max_length": queues.max_length,
                "items": [entry.model_dump(mode="json") for entry in queues.snapshot(queue_role)],
                "by_priority": [entry.task_id for entry in queues.pick_by_priority(queue_role)],
            }
            for queue_role in roles
        }
        _emit_log(context, "debug", "Queue status", extra={"roles": list(snapshot)})
        return {"success": True, "queues": snapshot}

    def _submit_task(
        task_id: str,
        *,
        description: str | None = None,
        workflow: str | None = None,
        plan_path: str | None = None,
        project_id: str = "",
        priority: int = 0,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Queue a new task for the first stage of its workflow."""

        result = router.submit(
            task_id,
            description=description,
            workflow=workflow,
            plan_path=plan_path,
            project_id=project_id,
            priority=priority,
        )
        return _respond(context, result, "Submit task", task_id=task_id)

    def _advance_task(
        task_id: str,
        stage: str,
        *,
        workflow: str | None = None,
        status: str = "COMPLETE",
        confidence: float | None = None,
        summary: str | None = None,
        files_changed: list[str] | None = None,
        learnings: list[str] | None = None,
        blockers: str | None = None,
        recommendations: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Move a task past ``stage`` and hand it to the next worker."""

        try:
            result = StageResult(
                workflow=workflow,
                status=status,
                confidence=confidence,
                summary=summary,
                files_changed=files_changed or [],
                learnings=learnings or [],
                blockers=blockers,
                recommendations=recommendations or [],
            )
        except ValidationError as exc:
            raise ValueError(f"Invalid stage result: {exc}") from exc
        outcome = router.advance(task_id, stage, result)
        return _respond(context, outcome, "Advance task", task_id=task_id, stage=stage)

    def _stage_info(stage: str, workflow: str | None = None, context: Context | None = None) -> dict[str, Any]:
        try:
            info = router.get_stage_info(stage, workflow)
            needs_review = router.needs_review_before_advance(stage, workflow)
        except WorkflowLoadError as exc:
            failure = CoordinatorResult.fail(ErrorCode.WORKFLOW_INVALID, str(exc))
            return _respond(context, failure, "Stage info", stage=stage)
        return {
            "success": True,
            "agent": info.agent,
            "index": info.index,
            "total": info.total,
            "is_first": info.is_first,
            "is_last": info.is_last,
            "previous": info.previous.value if info.previous else None,
            "next": info.next.value if info.next else None,
            "needs_review_before_advance": needs_review,
        }

    def _list_handoffs(task_id: str, context: Context | None = None) -> dict[str, Any]:
        records = router.list_handoffs(task_id)
        _emit_log(context, "debug", "Listing handoffs", extra={"task_id": task_id, "count": len(records)})
        return CoordinatorResult.ok(f"Found {len(records)} handoff(s)", handoffs=records).to_dict()

    tool_enqueue = server.tool(
        name="enqueue_task",
        description=(
            f"Append a task to a worker queue (max {queues.max_length} items). "
            "Returns the position and estimated wait, or QUEUE_FULL."
        ),
    )(_enqueue_task)

    tool_queue_status = server.tool(
        name="queue_status",
        description="Show the pending items of one worker queue, or of every queue.",
    )(_queue_status)

    tool_submit = server.tool(
        name="submit_task",
        description="Submit a task to the entry stage of a workflow (default: backend → review → frontend → qa).",
    )(_submit_task)

    tool_advance = server.tool(
        name="advance_task",
        description=(
            "Report the result of a stage and advance the task. Leaving the review stage "
            "with a confidence below the workflow threshold returns CONFIDENCE_BELOW_THRESHOLD."
        ),
    )(_advance_task)

    tool_stage_info = server.tool(
        name="stage_info",
        description="Describe where a stage sits in a workflow pipeline.",
    )(_stage_info)

    tool_list_handoffs = server.tool(
        name="list_handoffs",
        description="List the handoff documents written for a task, oldest first.",
    )(_list_handoffs)

    # Orchestrator -------------------------------------------------------------

    def _report_progress(
        task_id: str,
        *,
        status: str | None = None,
        log: str | None = None,
        confidence: float | None = None,
        summary: str | None = None,
        files_changed: list[str] | None = None,
        learnings: list[str] | None = None,
        blockers: str | None = None,
        recommendations: list[str] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Update the progress record a worker keeps for its current stage."""

        if not is_valid_task_id(task_id):
            raise ValueError(f"Invalid task id: {task_id!r}")
        try:
            record = progress.update(
                task_id,
                status=status.upper() if status else None,
                log=log,
                confidence=confidence,
                summary=summary,
                files_changed=files_changed,
                learnings=learnings,
                blockers=blockers,
                recommendations=recommendations,
            )
        except ValidationError as exc:
            raise ValueError(f"Invalid progress update: {exc}") from exc
        if record is None:
            raise ValueError(f"Task '{task_id}' has no progress record")

        _emit_log(context, "info", "Progress reported", extra={"task_id": task_id, "status": record.status})
        return CoordinatorResult.ok(f"Progress updated for {task_id}", progress=record).to_dict()

    async def _orchestrator_status(context: Context | None = None) -> dict[str, Any]:
        assignments = services.assignments.load()
        workers: list[str] = []
        if services.supervisor is not None:
            workers = [role.value for role in await services.supervisor.list_running()]
        return {
            "success": True,
            "assignments": {task: item.model_dump(mode="json") for task, item in assignments.items()},
            "queues": queues.lengths(),
            "workers": workers,
            "supervisor_available": services.supervisor is not None,
        }

    tool_report_progress = server.tool(
        name="report_progress",
        description=(
            "Update a task's progress record. Set status=COMPLETE with a confidence and "
            "summary to let the orchestrator advance the task."
        ),
    )(_report_progress)

    tool_orchestrator_status = server.tool(
        name="orchestrator_status",
        description="Summarize active assignments, queue lengths and running workers.",
    )(_orchestrator_status)

    return ToolHandles(
        create_session=tool_create_session,
        list_sessions=tool_list_sessions,
        end_session=tool_end_session,
        claim=tool_claim,
        release=tool_release,
        heartbeat=tool_heartbeat,
        cleanup_locks=tool_cleanup_locks,
        cleanup=tool_cleanup,
        prune_checkouts=tool_prune,
        add_project=tool_add_project,
        list_projects=tool_list_projects,
        remove_checkout=tool_remove_checkout,
        enqueue_task=tool_enqueue,
        queue_status=tool_queue_status,
        submit_task=tool_submit,
        advance_task=tool_advance,
        stage_info=tool_stage_info,
        list_handoffs=tool_list_handoffs,
        report_progress=tool_report_progress,
        orchestrator_status=tool_orchestrator_status,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["register_tools", "ToolHandles"]
