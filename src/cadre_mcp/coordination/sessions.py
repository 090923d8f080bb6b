"""Session lifecycle and the session registry index."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from ..results import CoordinatorResult, ErrorCode, coordinator_operation
from ..storage import (
    ChromaStore,
    RecordStore,
    SessionRecord,
    SessionRegistry,
    SessionRegistryEntry,
    generate_id,
    record_audit,
)

logger = logging.getLogger(__name__)

REGISTRY_DOCUMENT = "sessions.json"


def session_document(session_id: str) -> str:
    return f"sessions/{session_id}.json"


def is_session_old(entry: SessionRegistryEntry | SessionRecord, ttl_hours: float, now: datetime) -> bool:
    """A session is old once more than ``ttl_hours`` have passed since its last activity."""

    elapsed = (now - entry.last_activity).total_seconds() / 3600
    return elapsed > ttl_hours


class SessionManager:
    """Create, update and end sessions while keeping ``sessions.json`` in sync."""

    def __init__(
        self,
        store: RecordStore,
        *,
        audit: ChromaStore | None = None,
        clock: Callable[[], datetime] | None = None,
        ttl_hours: float = 24.0,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ttl_hours = ttl_hours

    @property
    def ttl_hours(self) -> float:
        return self._ttl_hours

    def now(self) -> datetime:
        return self._clock()

    def _load_registry(self) -> SessionRegistry:
        return self._store.read(REGISTRY_DOCUMENT, SessionRegistry, SessionRegistry)

    def _sync_registry(self, session: SessionRecord) -> None:
        registry = self._load_registry()
        entry = SessionRegistryEntry.from_session(session)
        for index, existing in enumerate(registry.sessions):
            if existing.id == session.id:
                registry.sessions[index] = entry
                break
        else:
            registry.sessions.append(entry)
        self._store.write(REGISTRY_DOCUMENT, registry)

    def _save(self, session: SessionRecord) -> SessionRecord:
        self._store.write(session_document(session.id), session)
        self._sync_registry(session)
        return session

    def create_session(self, session_id: str | None = None) -> SessionRecord:
        now = self._clock()
        session = SessionRecord(
            id=session_id or generate_id("sess", clock=self._clock),
            created_at=now,
            last_activity=now,
        )
        self._save(session)
        logger.info("Session created", extra={"session_id": session.id})
        record_audit(self._audit, "session_created", actor=session.id, data={"session_id": session.id})
        return session

    def get_session(self, session_id: str) -> SessionRecord | None:
        if not self._store.exists(session_document(session_id)):
            return None
        return self._store.read(session_document(session_id), SessionRecord, lambda: None)

    def update_session(self, session_id: str, **updates: Any) -> SessionRecord | None:
        """Apply field updates, bump ``last_activity`` and mirror the change into the index."""

        session = self.get_session(session_id)
        if session is None:
            return None
        for key, value in updates.items():
            setattr(session, key, value)
        session.last_activity = self._clock()
        return self._save(session)

    def touch(self, session_id: str) -> SessionRecord | None:
        return self.update_session(session_id)

    def end_session_record(self, session_id: str) -> SessionRecord | None:
        session = self.update_session(session_id, status="ended")
        if session is not None:
            record_audit(self._audit, "session_ended", actor=session_id, data={"session_id": session_id})
        return session

    def list_sessions(self) -> list[SessionRegistryEntry]:
        return list(self._load_registry().sessions)

    def active_sessions(self) -> list[SessionRegistryEntry]:
        return [entry for entry in self.list_sessions() if entry.status == "active"]

    def current_session_id(self) -> str | None:
        """Return the most recently active session, if any."""

        active = self.active_sessions()
        if not active:
            return None
        return max(active, key=lambda entry: entry.last_activity).id

    def resolve(self, session_id: str | None) -> SessionRecord | CoordinatorResult:
        """Return the acting session, or the failure explaining why there is none."""

        if session_id is None:
            session_id = self.current_session_id()
            if session_id is None:
                return CoordinatorResult.fail(ErrorCode.NO_SESSION, "No active session. Create one first.")
        session = self.get_session(session_id)
        if session is None:
            return CoordinatorResult.fail(ErrorCode.SESSION_NOT_FOUND, f"Session not found: {session_id}")
        return session

    def is_old(self, entry: SessionRegistryEntry | SessionRecord, ttl_hours: float | None = None) -> bool:
        return is_session_old(entry, self._ttl_hours if ttl_hours is None else ttl_hours, self._clock())

    @coordinator_operation
    def end_session(self, session_id: str | None, *, force: bool = False) -> CoordinatorResult:
        if not session_id:
            return CoordinatorResult.fail(ErrorCode.SESSION_REQUIRED, "Session id is required")

        session = self.get_session(session_id)
        if session is None:
            return CoordinatorResult.fail(
                ErrorCode.SESSION_NOT_FOUND, f"Session not found: {session_id}"
            )
        if session.locks and not force:
            return CoordinatorResult.fail(
                ErrorCode.ACTIVE_LOCKS,
                f"Session has {len(session.locks)} active lock(s). Release them or use force.",
                locks=list(session.locks),
            )

        ended = self.end_session_record(session_id)
        logger.info("Session ended", extra={"session_id": session_id, "forced": force})
        return CoordinatorResult.ok(f"Session ended: {session_id}", session=ended)

    @coordinator_operation
    def list_sessions_summary(self, *, show_all: bool = False) -> CoordinatorResult:
        entries = self.list_sessions() if show_all else self.active_sessions()
        sessions = [
            {**entry.model_dump(mode="json"), "is_old": self.is_old(entry)} for entry in entries
        ]
        return CoordinatorResult.ok(f"Found {len(sessions)} session(s)", sessions=sessions)


__all__ = ["REGISTRY_DOCUMENT", "SessionManager", "is_session_old", "session_document"]
