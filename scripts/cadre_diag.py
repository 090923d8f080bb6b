"""Cadre MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from cadre_mcp.config import CadreSettings
from cadre_mcp.coordination import LOCKS_DOCUMENT, REGISTRY_DOCUMENT, queue_document
from cadre_mcp.orchestrator import ASSIGNMENTS_DOCUMENT
from cadre_mcp.roles import CORE_ROLES
from cadre_mcp.storage import (
    AssignmentTable,
    ChromaStore,
    ChromaUnavailableError,
    LockTable,
    QueueDocument,
    RecordStore,
    SessionRegistry,
)


def load_state(settings: CadreSettings) -> RecordStore:
    return RecordStore(Path(settings.state_dir).expanduser())


def load_store(settings: CadreSettings) -> ChromaStore:
    try:
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
        return store
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def cmd_locks(args: argparse.Namespace) -> None:
    state = load_state(CadreSettings())
    table = state.read(LOCKS_DOCUMENT, LockTable, LockTable)
    locks = table.locks
    if not args.all:
        locks = [lock for lock in locks if lock.status == "active"]
    print(json.dumps([lock.model_dump(mode="json") for lock in locks], indent=2))


def cmd_sessions(args: argparse.Namespace) -> None:
    state = load_state(CadreSettings())
    registry = state.read(REGISTRY_DOCUMENT, SessionRegistry, SessionRegistry)
    entries = registry.sessions
    if not args.all:
        entries = [entry for entry in entries if entry.status == "active"]
    print(json.dumps([entry.model_dump(mode="json") for entry in entries], indent=2))


def cmd_queues(args: argparse.Namespace) -> None:
    settings = CadreSettings()
    state = load_state(settings)
    payload = {}
    for role in CORE_ROLES:
        document = state.read(
            queue_document(role),
            QueueDocument,
            lambda role=role: QueueDocument(role=role, max_length=settings.max_queue_length),
        )
        payload[role.value] = {
            "length": len(document.items),
            "max_length": settings.max_queue_length,
            "tasks": [item.task_id for item in document.items],
        }
    assignments = state.read(ASSIGNMENTS_DOCUMENT, AssignmentTable, AssignmentTable).assignments
    payload["assignments"] = {
        task_id: {"role": item.role.value, "status": item.status} for task_id, item in assignments.items()
    }
    print(json.dumps(payload, indent=2))


def cmd_metrics(args: argparse.Namespace) -> None:
    settings = CadreSettings()
    store = load_store(settings)
    try:
        events = store.search_events()
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    counts: dict[str, int] = {}
    for event in events:
        counts[event.event_type] = counts.get(event.event_type, 0) + 1
    print(json.dumps({"events_total": len(events), "event_counts": counts}, indent=2))


def cmd_alerts(args: argparse.Namespace) -> None:
    settings = CadreSettings()
    store = load_store(settings)
    try:
        alerts = store.search_events(filters={"event_type": "escalation"})
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    task_id = args.task_id
    if task_id:
        alerts = [event for event in alerts if event.actor == task_id]

    alerts.sort(key=lambda event: event.timestamp)
    if args.limit is not None and args.limit > 0:
        alerts = alerts[-args.limit :]

    payload = [
        {
            "event_id": getattr(event, "id", None),
            "task_id": event.actor,
            "kind": event.metadata.get("kind"),
            "role": event.metadata.get("role"),
            "timestamp": event.timestamp.isoformat(),
        }
        for event in alerts
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cadre MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_locks = sub.add_parser("locks", help="List locks (active only unless --all)")
    p_locks.add_argument("--all", action="store_true", help="Include expired and released locks")
    p_locks.set_defaults(func=cmd_locks)

    p_sessions = sub.add_parser("sessions", help="List sessions from the registry index")
    p_sessions.add_argument("--all", action="store_true", help="Include ended sessions")
    p_sessions.set_defaults(func=cmd_sessions)

    p_queues = sub.add_parser("queues", help="Show queue lengths and active assignments")
    p_queues.set_defaults(func=cmd_queues)

    p_metrics = sub.add_parser("metrics", help="Count audit events by type")
    p_metrics.set_defaults(func=cmd_metrics)

    p_alerts = sub.add_parser("alerts", help="List escalation events")
    p_alerts.add_argument("--task-id")
    p_alerts.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N alerts",
    )
    p_alerts.set_defaults(func=cmd_alerts)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
