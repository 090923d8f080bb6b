"""Chroma-backed audit trail for coordinator events."""

from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

logger = logging.getLogger(__name__)


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by Cadre."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by Cadre."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class AuditEvent:
    """Represents a stored audit event."""

    id: str
    actor: str
    event_type: str
    document: str
    metadata: dict[str, Any]
    timestamp: datetime


def _scalar_metadata(values: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata only accepts str/int/float/bool values.
    cleaned: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            cleaned[key] = value
        else:
            cleaned[key] = json.dumps(value, default=str)
    return cleaned


class ChromaStore:
    """Persist coordinator audit events via ChromaDB."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "cadre_audit",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install cadre with persistence extras"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[AuditEvent]:
        events: list[AuditEvent] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            events.append(
                AuditEvent(
                    id=event_id,
                    actor=metadata.get("actor", ""),
                    event_type=metadata.get("event_type", ""),
                    document=document,
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        events.sort(key=lambda event: (event.timestamp, event.metadata.get("sequence", 0)))
        return events

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(
        self,
        *,
        actor: str,
        event_type: str,
        body: Any,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one event; ``actor`` is a session id, a task id or ``SYSTEM``."""

        collection = self._ensure_collection()
        counter = self._counters[actor] = self._counters[actor] + 1
        event_id = f"{actor}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        document = body if isinstance(body, str) else json.dumps(body, default=str)
        record_metadata: dict[str, Any] = {
            "actor": actor,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if metadata:
            record_metadata.update(_scalar_metadata(metadata))

        collection.add(
            documents=[document],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return AuditEvent(
            id=event_id,
            actor=actor,
            event_type=event_type,
            document=document,
            metadata=record_metadata,
            timestamp=timestamp,
        )

    def fetch_actor_events(self, actor: str, *, limit: int | None = None) -> list[AuditEvent]:
        return self.search_events(filters={"actor": actor}, limit=limit)

    def search_events(
        self,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[AuditEvent]:
        """Return events matching the metadata ``filters``, oldest first."""

        collection = self._ensure_collection()
        return self._convert_result(collection.get(where=filters, limit=limit))


def record_audit(
    audit: ChromaStore | None,
    event_type: str,
    *,
    actor: str,
    data: dict[str, Any],
) -> None:
    """Record ``data`` on the audit trail when one is configured.

    The audit trail never fails the operation being audited: backend errors
    are logged and dropped.
    """

    if audit is None:
        return
    try:
        audit.record_event(actor=actor, event_type=event_type, body=data, metadata=data)
    except Exception as exc:
        logger.warning(
            "Audit event not recorded",
            extra={"event_type": event_type, "actor": actor, "error": str(exc)},
        )


__all__ = ["AuditEvent", "ChromaStore", "ChromaUnavailableError", "record_audit"]
