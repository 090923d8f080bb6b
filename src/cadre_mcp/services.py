"""Wire the coordinator components together from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from .checkouts import CheckoutProvider, GitCheckoutProvider
from .config import CadreSettings
from .coordination import CleanupService, LockCoordinator, ProjectRegistry, QueueManager, SessionManager
from .orchestrator import (
    AssignmentStore,
    InboxEntryPoint,
    LoggingNotifier,
    Notifier,
    Orchestrator,
    ProgressStore,
)
from .pipeline import HandoffStore, PipelineRouter
from .storage import ChromaStore, ChromaUnavailableError, RecordStore
from .workers import TmuxNotFoundError, TmuxWorkerSupervisor, WorkerConfig, WorkerSupervisor
from .workflows import WorkflowLoader

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CadreServices:
    settings: CadreSettings
    store: RecordStore
    audit: ChromaStore | None
    projects: ProjectRegistry
    sessions: SessionManager
    locks: LockCoordinator
    cleanup: CleanupService
    queues: QueueManager
    workflows: WorkflowLoader
    router: PipelineRouter
    progress: ProgressStore
    assignments: AssignmentStore
    supervisor: WorkerSupervisor | None
    orchestrator: Orchestrator | None


def open_audit_store(settings: CadreSettings) -> ChromaStore | None:
    """Return a ready audit store, or ``None`` when chromadb is unavailable."""

    try:
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
    except ChromaUnavailableError as exc:
        logger.info("Audit trail disabled", extra={"reason": str(exc)})
        return None
    return store


def build_services(
    settings: CadreSettings,
    *,
    supervisor: WorkerSupervisor | None = None,
    checkouts: CheckoutProvider | None = None,
    audit: ChromaStore | None = None,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] | None = None,
    use_default_supervisor: bool = True,
    use_default_checkouts: bool = True,
) -> CadreServices:
    store = RecordStore(Path(settings.state_dir))

    if checkouts is None and use_default_checkouts:
        checkouts = GitCheckoutProvider(Path(settings.checkout_root))

    if supervisor is None and use_default_supervisor:
        try:
            supervisor = TmuxWorkerSupervisor(
                Path(settings.tmux_path) if settings.tmux_path else None,
                worker_command=settings.worker_command,
            )
        except TmuxNotFoundError as exc:
            logger.warning("Worker supervision unavailable", extra={"reason": str(exc)})
            supervisor = None

    projects = ProjectRegistry(store, audit=audit, clock=clock)
    sessions = SessionManager(store, audit=audit, clock=clock, ttl_hours=settings.session_ttl_hours)
    locks = LockCoordinator(
        store,
        sessions,
        projects,
        checkouts=checkouts,
        audit=audit,
        default_ttl_minutes=settings.lock_ttl_minutes,
        force_expire_hours=settings.force_expire_hours,
    )
    cleanup = CleanupService(sessions, locks, projects, checkouts=checkouts, audit=audit)
    queues = QueueManager(
        store,
        max_length=settings.max_queue_length,
        task_duration_ms=settings.task_duration_ms,
        clock=clock,
    )
    workflows = WorkflowLoader(settings.workflow_paths)
    router = PipelineRouter(
        workflows,
        queues,
        HandoffStore(store),
        default_confidence=settings.default_confidence,
        audit=audit,
        clock=clock,
    )
    progress = ProgressStore(store, clock=clock)
    assignments = AssignmentStore(store)

    orchestrator: Orchestrator | None = None
    if supervisor is not None:
        orchestrator = Orchestrator(
            router,
            queues,
            progress,
            assignments,
            supervisor,
            notifier=notifier or LoggingNotifier(audit),
            entry_points=[InboxEntryPoint(store)],
            audit=audit,
            interval_seconds=settings.loop_interval_seconds,
            worker_config=WorkerConfig(command=settings.worker_command),
            clock=clock,
        )

    return CadreServices(
        settings=settings,
        store=store,
        audit=audit,
        projects=projects,
        sessions=sessions,
        locks=locks,
        cleanup=cleanup,
        queues=queues,
        workflows=workflows,
        router=router,
        progress=progress,
        assignments=assignments,
        supervisor=supervisor,
        orchestrator=orchestrator,
    )


__all__ = ["CadreServices", "build_services", "open_audit_store"]
