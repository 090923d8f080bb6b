"""Write-once handoff documents passed between pipeline stages."""

from __future__ import annotations

import logging
from pathlib import Path

from ..roles import WorkerRole, resolve_role
from ..storage import HandoffRecord, RecordStore

logger = logging.getLogger(__name__)

HANDOFF_DIR = "handoffs"


def handoff_stem(task_id: str, from_stage: WorkerRole, to_stage: WorkerRole) -> str:
    return f"HANDOFF_{task_id}_{from_stage.value}_to_{to_stage.value}"


def _bullets(values: list[str]) -> str:
    return "\n".join(f"- {value}" for value in values) if values else "- None"


def render_markdown(record: HandoffRecord) -> str:
    """Render the handoff in the layout workers read."""

    return (
        f"# HANDOFF: {record.from_stage.value} → {record.to_stage.value}\n"
        "\n"
        f"## Task: {record.task_id}\n"
        f"## Status: {record.status}\n"
        f"## Confidence: {record.confidence}\n"
        "\n"
        "## Summary\n"
        f"{record.summary}\n"
        "\n"
        "## Files Changed\n"
        f"{_bullets(record.files_changed)}\n"
        "\n"
        "## Learnings for Next Agent\n"
        f"{_bullets(record.learnings)}\n"
        "\n"
        "## Blockers (if any)\n"
        f"{record.blockers}\n"
        "\n"
        "## Recommendations for Next Agent\n"
        f"{_bullets(record.recommendations)}\n"
        "\n"
        "---\n"
        f"*Generated at: {record.created_at.isoformat()}*\n"
    )


class HandoffStore:
    """Persist handoffs as JSON plus a Markdown rendering under ``handoffs/``.

    A handoff is never overwritten. Repeating a transition for the same task
    and stage pair writes ``<stem>.1``, ``<stem>.2`` and so on.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def _next_stem(self, stem: str) -> str:
        candidate = stem
        counter = 0
        while self._store.exists(f"{HANDOFF_DIR}/{candidate}.json"):
            counter += 1
            candidate = f"{stem}.{counter}"
        return candidate

    def save(self, record: HandoffRecord) -> Path:
        """Write ``record`` and return the path of its Markdown rendering."""

        stem = self._next_stem(handoff_stem(record.task_id, record.from_stage, record.to_stage))
        self._store.write(f"{HANDOFF_DIR}/{stem}.json", record)
        markdown = self._store.write_text(f"{HANDOFF_DIR}/{stem}.md", render_markdown(record))
        logger.info(
            "Handoff written",
            extra={"task_id": record.task_id, "from": record.from_stage.value, "to": record.to_stage.value},
        )
        return markdown

    def _versions(self, task_id: str, from_stage: WorkerRole, to_stage: WorkerRole) -> list[Path]:
        stem = handoff_stem(task_id, from_stage, to_stage)
        paths = self._store.list_documents(HANDOFF_DIR, f"{stem}*.json")

        def version(path: Path) -> int:
            suffix = path.name[len(stem):-len(".json")]
            if not suffix:
                return 0
            if suffix.startswith(".") and suffix[1:].isdigit():
                return int(suffix[1:])
            return -1

        return sorted((path for path in paths if version(path) >= 0), key=version)

    def read(
        self,
        task_id: str,
        from_stage: str | WorkerRole,
        to_stage: str | WorkerRole,
    ) -> HandoffRecord | None:
        """Return the most recent handoff for the transition, if any."""

        versions = self._versions(task_id, resolve_role(from_stage), resolve_role(to_stage))
        if not versions:
            return None
        relative = versions[-1].relative_to(self._store.root)
        return self._store.read(relative, HandoffRecord, lambda: None)

    def list_handoffs(self, task_id: str) -> list[HandoffRecord]:
        records: list[HandoffRecord] = []
        for path in self._store.list_documents(HANDOFF_DIR, f"HANDOFF_{task_id}_*.json"):
            record = self._store.read(path.relative_to(self._store.root), HandoffRecord, lambda: None)
            if record is not None and record.task_id == task_id:
                records.append(record)
        records.sort(key=lambda record: record.created_at)
        return records


__all__ = ["HANDOFF_DIR", "HandoffStore", "handoff_stem", "render_markdown"]
