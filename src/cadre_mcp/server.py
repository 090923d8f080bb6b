"""FastMCP server bootstrap and orchestrator entry point for Cadre."""

import asyncio
import json
import logging
import signal
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import CadreSettings, get_settings
from .services import CadreServices, build_services, open_audit_store
from .tools import register_tools
from .workflows import WorkflowLoadError


def configure_logging(level: str) -> None:
    """Configure root logging for Cadre processes."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def build_status_payload(
    settings: CadreSettings,
    services: CadreServices,
    chroma_metadata: dict[str, Any],
    *,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Summarize sessions, locks, queues and assignments for the status resource."""

    try:
        workflow_names = sorted(services.workflows.load_all())
        workflow_error: str | None = None
    except WorkflowLoadError as exc:
        workflow_names = []
        workflow_error = str(exc)

    active_sessions = services.sessions.active_sessions()
    active_locks = services.locks.active_locks()
    assignments = services.assignments.load()

    status_counts: dict[str, int] = {}
    for assignment in assignments.values():
        status_counts[assignment.status] = status_counts.get(assignment.status, 0) + 1

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server_version": __version__,
        "log_level": settings.log_level,
        "state_dir": str(settings.state_dir),
        "workflows": {"names": workflow_names, "error": workflow_error},
        "sessions": {
            "active": len(active_sessions),
            "old": sum(1 for entry in active_sessions if services.sessions.is_old(entry)),
        },
        "locks": {
            "active": len(active_locks),
            "preview": [lock.model_dump(mode="json") for lock in active_locks[-5:]],
        },
        "queues": services.queues.lengths(),
        "assignments": {"count": len(assignments), "status_counts": status_counts},
        "projects": len(services.projects.list_projects()),
        "storage": {"chroma": chroma_metadata},
        "supervisor_available": services.supervisor is not None,
        "request_id": request_id,
    }


def create_server(
    settings: Optional[CadreSettings] = None,
    services: CadreServices | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the coordinator tools and status resource."""

    settings = settings or get_settings()
    if services is None:
        services = build_services(settings, audit=open_audit_store(settings))

    chroma_metadata = {
        "available": services.audit is not None,
        "path": str(settings.chroma_persist_path),
        "collection": "cadre_audit",
    }

    server = FastMCP(
        name="Cadre MCP",
        version=__version__,
        instructions=(
            "Cadre coordinates a fleet of worker agents. Use the session and lock tools "
            "before touching a project, and the queue and pipeline tools to move tasks "
            "through backend, review, frontend and qa stages."
        ),
    )

    handles = register_tools(server, services=services, settings=settings)

    @server.resource(
        "resource://cadre/status",
        name="cadre_status",
        title="Cadre MCP Status",
        description="Provides the current coordination state: sessions, locks, queues and assignments.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing coordination state."""

        payload = build_status_payload(
            settings,
            services,
            chroma_metadata,
            request_id=getattr(context, "request_id", None),
        )
        return json.dumps(payload)

    setattr(server, "services", services)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Cadre MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Cadre MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    server.run()


async def _run_orchestrator(services: CadreServices) -> None:
    orchestrator = services.orchestrator
    if orchestrator is None:
        raise SystemExit("tmux is required to run the orchestrator (set CADRE_TMUX_PATH)")

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, orchestrator.stop)
    await orchestrator.run()


def orchestrator_main() -> None:
    """Entry point for running the orchestrator loop until interrupted."""

    settings = get_settings()
    configure_logging(settings.log_level)

    services = build_services(settings, audit=open_audit_store(settings))
    logging.getLogger(__name__).info(
        "Launching Cadre orchestrator",
        extra={
            "version": __version__,
            "state_dir": str(settings.state_dir),
            "interval_seconds": settings.loop_interval_seconds,
        },
    )
    asyncio.run(_run_orchestrator(services))


if __name__ == "__main__":
    main()
