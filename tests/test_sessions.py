from __future__ import annotations

import json
from pathlib import Path

from cadre_mcp.coordination import LockCoordinator, ProjectRegistry, SessionManager
from cadre_mcp.results import ErrorCode
from cadre_mcp.storage import RecordStore


def _build(tmp_path: Path, clock) -> tuple[SessionManager, LockCoordinator]:
    store = RecordStore(tmp_path)
    sessions = SessionManager(store, clock=clock, ttl_hours=24)
    projects = ProjectRegistry(store, clock=clock)
    return sessions, LockCoordinator(store, sessions, projects)


def test_create_session_persists_record_and_registry(tmp_path: Path, clock) -> None:
    sessions, _ = _build(tmp_path, clock)

    session = sessions.create_session()

    assert session.id.startswith("SESS-")
    assert session.status == "active"
    assert session.locks == []
    assert (tmp_path / "sessions" / f"{session.id}.json").exists()
    registry = json.loads((tmp_path / "sessions.json").read_text(encoding="utf-8"))
    assert [entry["id"] for entry in registry["sessions"]] == [session.id]


def test_current_session_is_most_recently_active(tmp_path: Path, clock) -> None:
    sessions, _ = _build(tmp_path, clock)
    first = sessions.create_session("first")
    clock.advance(minutes=5)
    sessions.create_session("second")
    clock.advance(minutes=5)
    sessions.touch(first.id)

    assert sessions.current_session_id() == "first"


def test_update_session_syncs_registry_entry(tmp_path: Path, clock) -> None:
    sessions, _ = _build(tmp_path, clock)
    sessions.create_session("sess")
    clock.advance(minutes=1)

    sessions.update_session("sess", current_task="T-1")

    entry = sessions.list_sessions()[0]
    assert entry.task_id == "T-1"
    assert entry.last_activity == clock.now


def test_end_session_requires_id_and_known_session(tmp_path: Path, clock) -> None:
    sessions, _ = _build(tmp_path, clock)

    assert sessions.end_session(None).error is ErrorCode.SESSION_REQUIRED
    assert sessions.end_session("ghost").error is ErrorCode.SESSION_NOT_FOUND


def test_end_session_refuses_with_active_locks_unless_forced(tmp_path: Path, clock) -> None:
    sessions, locks = _build(tmp_path, clock)
    sessions.create_session("sess")
    assert locks.claim("proj", session="sess").success

    refused = sessions.end_session("sess")
    assert refused.error is ErrorCode.ACTIVE_LOCKS
    assert len(refused.get("locks")) == 1

    forced = sessions.end_session("sess", force=True)
    assert forced.success
    assert sessions.get_session("sess").status == "ended"
    assert sessions.active_sessions() == []


def test_session_age_is_strictly_greater_than_ttl(tmp_path: Path, clock) -> None:
    sessions, _ = _build(tmp_path, clock)
    session = sessions.create_session("sess")

    clock.advance(hours=24)
    assert not sessions.is_old(session)

    clock.advance(seconds=1)
    assert sessions.is_old(session)


def test_list_sessions_summary_flags_old_sessions(tmp_path: Path, clock) -> None:
    sessions, _ = _build(tmp_path, clock)
    sessions.create_session("stale")
    clock.advance(hours=30)
    sessions.create_session("fresh")
    sessions.end_session("fresh")

    active = sessions.list_sessions_summary().get("sessions")
    assert [(entry["id"], entry["is_old"]) for entry in active] == [("stale", True)]

    everything = sessions.list_sessions_summary(show_all=True).get("sessions")
    assert {entry["id"] for entry in everything} == {"stale", "fresh"}
