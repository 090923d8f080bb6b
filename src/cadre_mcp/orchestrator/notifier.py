"""Human escalation channel."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from ..storage import ChromaStore, record_audit

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, kind: str, task_id: str, detail: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Escalate by logging a warning and recording an ``escalation`` audit event."""

    def __init__(self, audit: ChromaStore | None = None) -> None:
        self._audit = audit

    def notify(self, kind: str, task_id: str, detail: dict[str, Any]) -> None:
        logger.warning("Escalation: %s", kind, extra={"task_id": task_id, "detail": detail})
        record_audit(self._audit, "escalation", actor=task_id, data={"kind": kind, **detail})


__all__ = ["LoggingNotifier", "Notifier"]
